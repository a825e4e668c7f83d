"""
Keystroke timing feature extraction.

This module turns the key events of one typed passphrase into a fixed-length
feature vector:
- Hold times (key press to key release)
- Down-down times between consecutive presses
- Up-down (flight) times between a release and the next press
- Four summary scalars: typing speed, mean flight time, backspace count and
  hold-time standard deviation ("press pressure")

It also provides the min-max scaling used by the autoencoder path.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from schemas import KeyEvent


DEFAULT_PASSPHRASE_LENGTH = 19  # len("MySecretPassword123")
NUM_SCALAR_FEATURES = 4
MIN_DURATION_MS = 0.001  # Floor for total typing duration

EventLike = Union[KeyEvent, Dict[str, Any]]


@dataclass
class KeystrokeFeatures:
    """Timing series, summary scalars and the fixed-length vector."""
    hold_times: List[float]
    dd_times: List[float]
    ud_times: List[float]
    typing_speed: float
    flight_time: float
    error_rate: int
    press_pressure: float
    features: np.ndarray = field(repr=False)


def feature_vector_length(passphrase_length: int = DEFAULT_PASSPHRASE_LENGTH) -> int:
    """
    Fixed feature vector length for a passphrase of the given length.

    The time series offer L hold slots plus (L-1) down-down and (L-1)
    up-down slots, which together with the scalars is one more than the
    vector holds. The series block is capped at 3L-3 slots, so a complete
    attempt drops its final up-down time and the scalars are always kept.
    """
    return 3 * passphrase_length + 1


def _coerce_event(event: EventLike) -> KeyEvent:
    if isinstance(event, KeyEvent):
        return event
    return KeyEvent.model_validate(event)


def extract_keystroke_features(
    events: Optional[Sequence[EventLike]],
    passphrase_length: int = DEFAULT_PASSPHRASE_LENGTH,
) -> KeystrokeFeatures:
    """
    Extract keystroke timing features from an ordered event stream.

    Args:
        events: Key events in arrival order (KeyEvent models or dicts with
            key/type/timestamp)
        passphrase_length: Expected passphrase length L

    Returns:
        KeystrokeFeatures whose ``features`` vector has shape (3L+1,)
    """
    parsed = [_coerce_event(e) for e in (events or [])]
    keydowns = [(e.key, e.timestamp_ms) for e in parsed if e.type == "keydown"]
    keyups = [(e.key, e.timestamp_ms) for e in parsed if e.type == "keyup"]

    def matching_release(key: str, down_ts: float) -> Optional[float]:
        # Earliest release of the same key after the press
        for up_key, up_ts in keyups:
            if up_key == key and up_ts > down_ts:
                return up_ts
        return None

    releases = [matching_release(key, ts) for key, ts in keydowns]

    hold_times = [up - down for (_, down), up in zip(keydowns, releases) if up is not None]

    dd_times = []
    ud_times = []
    for i in range(len(keydowns) - 1):
        current_down = keydowns[i][1]
        next_down = keydowns[i + 1][1]
        dd_times.append(next_down - current_down)
        if releases[i] is not None:
            ud_times.append(next_down - releases[i])
        else:
            # No release seen for this key: fall back to the down-down interval
            ud_times.append(next_down - current_down)

    total_ms = max(sum(hold_times), sum(dd_times), sum(ud_times))
    if total_ms <= 0:
        total_ms = MIN_DURATION_MS

    typing_speed = len(keydowns) / (total_ms / 1000.0)
    flight_time = float(np.mean(ud_times)) if ud_times else 0.0
    error_rate = sum(1 for e in parsed if e.key == "Backspace")
    press_pressure = float(np.std(hold_times)) if hold_times else 0.0

    total_length = feature_vector_length(passphrase_length)
    series = (
        hold_times[:passphrase_length]
        + dd_times[:passphrase_length - 1]
        + ud_times[:passphrase_length - 1]
    )
    series = series[:total_length - NUM_SCALAR_FEATURES]

    vector = np.zeros(total_length, dtype=np.float64)
    values = series + [typing_speed, flight_time, float(error_rate), press_pressure]
    vector[:len(values)] = values

    return KeystrokeFeatures(
        hold_times=hold_times,
        dd_times=dd_times,
        ud_times=ud_times,
        typing_speed=typing_speed,
        flight_time=flight_time,
        error_rate=error_rate,
        press_pressure=press_pressure,
        features=vector,
    )


def extract_features(
    events: Optional[Sequence[EventLike]],
    passphrase_length: int = DEFAULT_PASSPHRASE_LENGTH,
) -> np.ndarray:
    """Convenience wrapper returning only the feature vector."""
    return extract_keystroke_features(events, passphrase_length).features


def normalize_features(samples: Sequence[Sequence[float]]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Min-max scale every feature column to [0, 1].

    A column with zero range maps to 0.

    Args:
        samples: Matrix-like of shape (n_samples, n_features)

    Returns:
        Tuple of (normalized, min, max)
    """
    data = np.asarray(samples, dtype=np.float64)
    if data.ndim != 2 or data.shape[0] == 0:
        raise ValueError("normalize_features expects a non-empty 2-D sample matrix")

    col_min = data.min(axis=0)
    col_max = data.max(axis=0)
    return scale_min_max(data, col_min, col_max), col_min, col_max


def scale_min_max(data: np.ndarray, col_min: np.ndarray, col_max: np.ndarray) -> np.ndarray:
    """Scale rows of ``data`` with known per-column min/max."""
    value_range = col_max - col_min
    safe_range = np.where(value_range == 0, 1.0, value_range)
    scaled = (data - col_min) / safe_range
    return np.where(value_range == 0, 0.0, scaled)


def apply_min_max(
    vector: Sequence[float],
    col_min: Sequence[float],
    col_max: Sequence[float],
) -> np.ndarray:
    """
    Normalize one attempt with stored min/max parameters.

    The output has the attempt's length; indices with no stored parameters
    map to 0.
    """
    values = np.asarray(vector, dtype=np.float64)
    col_min = np.asarray(col_min, dtype=np.float64)
    col_max = np.asarray(col_max, dtype=np.float64)

    n = min(len(values), len(col_min), len(col_max))
    result = np.zeros(len(values), dtype=np.float64)
    if n:
        result[:n] = scale_min_max(values[:n], col_min[:n], col_max[:n])
    return result
