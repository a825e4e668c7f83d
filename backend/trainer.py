"""
Keystroke profile training.

Builds a user's keystroke profile from enrollment feature vectors:
1. Augment the enrollment set with noisy copies of every sample
2. Min-max normalize over the augmented set
3. Train the autoencoder on the normalized data
4. Calibrate the decision threshold on the original samples

A mean/std statistical profile can be built from the same samples for the
legacy authentication path.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

import numpy as np

from autoencoder import SimpleAutoencoder
from config import AuthConfig, get_default_config
from errors import InsufficientDataError, ShapeMismatchError
from keystroke_features import normalize_features, scale_min_max
from schemas import (
    AutoencoderProfile,
    MeanStdParams,
    MinMaxParams,
    MseStats,
    StatisticalProfile,
    TrainingStats,
)

logger = logging.getLogger(__name__)


THRESHOLD_PERCENTILE = 0.95
THRESHOLD_MARGIN = 1.2


def _as_matrix(samples: Sequence[Sequence[float]], required: int) -> np.ndarray:
    """Stack enrollment samples, checking count and a common length."""
    if len(samples) < required:
        raise InsufficientDataError(len(samples), required)

    lengths = {len(s) for s in samples}
    if len(lengths) != 1:
        expected = len(samples[0])
        actual = next(n for n in (len(s) for s in samples) if n != expected)
        raise ShapeMismatchError(expected, actual)

    return np.asarray(samples, dtype=np.float64)


def augment_samples(
    samples: np.ndarray,
    augmentation_factor: int = 3,
    noise_level: float = 0.1,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Add noisy copies of each sample.

    Every original is kept, followed by ``augmentation_factor`` copies whose
    values are perturbed by up to +/- noise_level * value and floored at 0.

    Args:
        samples: Matrix of shape (n, d)
        augmentation_factor: Noisy copies per sample
        noise_level: Relative perturbation size
        rng: Random generator

    Returns:
        Matrix of shape (n * (1 + augmentation_factor), d)
    """
    rng = rng if rng is not None else np.random.default_rng()
    rows = []
    for sample in samples:
        rows.append(sample)
        for _ in range(augmentation_factor):
            noise = (rng.random(sample.shape) - 0.5) * 2.0 * noise_level * sample
            rows.append(np.maximum(0.0, sample + noise))
    return np.vstack(rows)


def percentile_threshold(
    errors: Sequence[float],
    percentile: float = THRESHOLD_PERCENTILE,
    margin: float = THRESHOLD_MARGIN,
    floor: float = 0.0,
) -> float:
    """
    Decision threshold from calibration errors.

    Takes the error at index floor(percentile * n) of the sorted errors,
    scales it by ``margin`` and floors the result.
    """
    ordered = sorted(errors)
    index = min(int(np.floor(percentile * len(ordered))), len(ordered) - 1)
    return max(floor, ordered[index] * margin)


def train_autoencoder(
    samples: Sequence[Sequence[float]],
    config: Optional[AuthConfig] = None,
    seed: Optional[int] = None,
) -> AutoencoderProfile:
    """
    Train an autoencoder profile from enrollment feature vectors.

    Args:
        samples: Raw (unnormalized) keystroke feature vectors
        config: Training and threshold settings (defaults if None)
        seed: Seed for weight initialization and augmentation noise

    Returns:
        AutoencoderProfile with weights, min/max params, threshold and stats

    Raises:
        InsufficientDataError: Fewer than ``samples_required`` samples
        ShapeMismatchError: Samples of different lengths
    """
    config = config or get_default_config()
    originals = _as_matrix(samples, config.samples_required)
    rng = np.random.default_rng(seed)

    augmented = augment_samples(originals, config.augmentation_factor, config.noise_level, rng)
    normalized, col_min, col_max = normalize_features(augmented)

    autoencoder = SimpleAutoencoder(
        input_size=normalized.shape[1],
        hidden_size=config.hidden_size,
        bottleneck_size=config.bottleneck_size,
        rng=rng,
    )
    losses = autoencoder.train(
        normalized,
        epochs=config.epochs,
        learning_rate=config.learning_rate,
        full_backprop=config.full_backprop,
    )

    # Calibrate on the originals only
    original_normalized = scale_min_max(originals, col_min, col_max)
    errors = [autoencoder.reconstruction_error(row) for row in original_normalized]
    threshold = percentile_threshold(errors, floor=config.autoencoder_threshold)

    stats = TrainingStats(
        samples=originals.shape[0],
        augmented_samples=augmented.shape[0],
        reconstruction_errors=errors,
        mean_error=float(np.mean(errors)),
        max_error=float(np.max(errors)),
        min_error=float(np.min(errors)),
        final_loss=losses[-1],
    )
    logger.info(
        f"Trained autoencoder on {stats.samples} samples ({stats.augmented_samples} augmented): "
        f"final_loss={stats.final_loss:.5f}, mean_error={stats.mean_error:.5f}, threshold={threshold:.5f}"
    )

    now = datetime.now(timezone.utc)
    return AutoencoderProfile(
        normalization_params=MinMaxParams(min=col_min.tolist(), max=col_max.tolist()),
        threshold=threshold,
        autoencoder=autoencoder.serialize(),
        training_stats=stats,
        created_at=now,
        last_updated=now,
    )


def build_statistical_profile(
    samples: Sequence[Sequence[float]],
    config: Optional[AuthConfig] = None,
) -> StatisticalProfile:
    """
    Build a mean/std profile for the statistical authenticator.

    The decision threshold is the larger of ``statistical_threshold`` and the
    calibrated 95th-percentile z-score MSE of the enrollment samples.
    """
    config = config or get_default_config()
    data = _as_matrix(samples, config.samples_required)

    means = data.mean(axis=0)
    stds = data.std(axis=0)
    divisors = np.where(stds == 0, 1.0, stds)
    sample_mse = np.mean(((data - means) / divisors) ** 2, axis=1)

    threshold = percentile_threshold(sample_mse.tolist(), floor=config.statistical_threshold)
    logger.info(f"Built statistical profile from {data.shape[0]} samples: threshold={threshold:.5f}")

    now = datetime.now(timezone.utc)
    return StatisticalProfile(
        normalization_params=MeanStdParams(means=means.tolist(), stds=stds.tolist()),
        threshold=threshold,
        mse_stats=MseStats(percentile_threshold=threshold, mean_mse=float(sample_mse.mean())),
        created_at=now,
        last_updated=now,
    )


def train_profile(
    samples: Sequence[Sequence[float]],
    model_type: str = "autoencoder",
    config: Optional[AuthConfig] = None,
    seed: Optional[int] = None,
) -> Union[AutoencoderProfile, StatisticalProfile]:
    """Build a profile of the requested kind."""
    if model_type == "statistical":
        return build_statistical_profile(samples, config)
    if model_type == "autoencoder":
        return train_autoencoder(samples, config, seed)
    raise ValueError(f"Unknown model type: {model_type}")
