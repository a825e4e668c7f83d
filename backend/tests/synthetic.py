"""
Synthetic keystroke and audio data for tests.
"""
import io
from typing import Dict, List, Optional

import numpy as np
import soundfile as sf

PASSPHRASE = "MySecretPassword123"


def make_events(
    holds: List[float],
    intervals: List[float],
    text: str = PASSPHRASE,
    start: float = 1000.0,
) -> List[Dict]:
    """
    Key events for typing ``text`` with the given hold and down-down times.

    Returns events sorted by timestamp, as the UI layer records them.
    """
    events = []
    t = start
    for i, ch in enumerate(text):
        events.append({"key": ch, "type": "keydown", "timestamp": t})
        events.append({"key": ch, "type": "keyup", "timestamp": t + holds[i]})
        if i < len(text) - 1:
            t += intervals[i]
    return sorted(events, key=lambda e: e["timestamp"])


def typing_attempt(
    rng: np.random.Generator,
    hold_mean: float = 80.0,
    hold_std: float = 5.0,
    interval_mean: float = 150.0,
    interval_std: float = 5.0,
    text: str = PASSPHRASE,
) -> List[Dict]:
    """One attempt with normally distributed hold and down-down times."""
    holds = rng.normal(hold_mean, hold_std, size=len(text)).tolist()
    intervals = rng.normal(interval_mean, interval_std, size=len(text) - 1).tolist()
    return make_events(holds, intervals, text)


def voiced_signal(
    f0: float = 150.0,
    duration: float = 1.0,
    sample_rate: int = 16000,
    amplitude: float = 0.5,
    seed: Optional[int] = 0,
) -> np.ndarray:
    """Harmonic tone with a little noise, roughly voice-like."""
    t = np.arange(int(duration * sample_rate)) / sample_rate
    signal = (
        amplitude * np.sin(2 * np.pi * f0 * t)
        + 0.5 * amplitude * np.sin(2 * np.pi * 2 * f0 * t)
        + 0.25 * amplitude * np.sin(2 * np.pi * 3 * f0 * t)
    )
    rng = np.random.default_rng(seed)
    signal += 0.01 * rng.standard_normal(len(t))
    return signal.astype(np.float32)


def wav_bytes(signal: np.ndarray, sample_rate: int = 16000) -> bytes:
    """Encode a mono signal as a WAV container."""
    buffer = io.BytesIO()
    sf.write(buffer, signal, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()
