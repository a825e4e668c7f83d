"""
Keystroke authentication against an enrolled profile.

Two decision functions, selected by profile type:
- Autoencoder: min-max normalize the attempt, reconstruct it, accept iff the
  mean squared reconstruction error is at most the profile threshold
- Statistical: z-score every feature against the enrolled mean/std, accept
  iff the mean squared z-score is at most the percentile threshold

Any failure while scoring becomes a rejected verdict carrying the reason.
"""
import logging
from functools import singledispatch
from typing import Any, Dict, Sequence, Union

import numpy as np

from autoencoder import SimpleAutoencoder
from errors import ComputationError
from keystroke_features import apply_min_max
from schemas import AuthVerdict, AutoencoderProfile, StatisticalProfile, parse_profile

logger = logging.getLogger(__name__)


DEFAULT_STATISTICAL_THRESHOLD = 0.1
SUCCESS_REASON = "Authentication successful"

ProfileLike = Union[AutoencoderProfile, StatisticalProfile, Dict[str, Any]]


def _check_finite(value: float, label: str) -> float:
    if not np.isfinite(value):
        raise ComputationError(f"{label} is not finite")
    return float(value)


@singledispatch
def _score(profile, features: np.ndarray) -> AuthVerdict:
    raise TypeError(f"Unsupported profile type: {type(profile).__name__}")


@_score.register
def _(profile: AutoencoderProfile, features: np.ndarray) -> AuthVerdict:
    params = profile.normalization_params
    normalized = apply_min_max(features, params.min, params.max)

    model = SimpleAutoencoder.from_weights(profile.autoencoder)
    error = _check_finite(model.reconstruction_error(normalized), "Reconstruction error")

    threshold = profile.threshold
    authenticated = error <= threshold
    logger.debug(f"Autoencoder check: error={error:.6f}, threshold={threshold:.6f}")

    return AuthVerdict(
        authenticated=authenticated,
        method="autoencoder",
        mse=error,
        reconstruction_error=error,
        threshold=threshold,
        reason=SUCCESS_REASON if authenticated
        else f"Reconstruction error too high: {error:.6f} > {threshold:.6f}",
    )


@_score.register
def _(profile: StatisticalProfile, features: np.ndarray) -> AuthVerdict:
    if features.size == 0:
        raise ComputationError("Empty feature vector")

    means = np.asarray(profile.normalization_params.means, dtype=np.float64)
    stds = np.asarray(profile.normalization_params.stds, dtype=np.float64)

    n = min(features.size, means.size)
    divisors = np.ones(n, dtype=np.float64)
    m = min(n, stds.size)
    divisors[:m] = np.where(stds[:m] == 0, 1.0, stds[:m])

    z = (features[:n] - means[:n]) / divisors
    mse = _check_finite(np.sum(z * z) / features.size, "MSE")

    threshold = DEFAULT_STATISTICAL_THRESHOLD
    if profile.mse_stats is not None and profile.mse_stats.percentile_threshold:
        threshold = profile.mse_stats.percentile_threshold

    authenticated = mse <= threshold
    logger.debug(f"Statistical check: mse={mse:.6f}, threshold={threshold:.6f}")

    return AuthVerdict(
        authenticated=authenticated,
        method="statistical",
        mse=mse,
        reconstruction_error=mse,
        threshold=threshold,
        reason=SUCCESS_REASON if authenticated
        else f"MSE ({mse:.5f}) exceeds threshold ({threshold:.5f})",
    )


def authenticate(profile: ProfileLike, attempt_features: Sequence[float]) -> AuthVerdict:
    """
    Decide whether an attempt matches an enrolled keystroke profile.

    Never raises: malformed profiles, shape problems and numerical failures
    produce a rejected verdict whose reason describes the failure.

    Args:
        profile: Profile model or its stored dict form
        attempt_features: Raw keystroke feature vector of the attempt

    Returns:
        AuthVerdict
    """
    method = None
    try:
        if isinstance(profile, dict):
            profile = parse_profile(profile)
        method = profile.model_type
        features = np.asarray(attempt_features, dtype=np.float64).ravel()
        return _score(profile, features)
    except Exception as e:
        label = method.capitalize() if method else "Profile"
        logger.error(f"{label} authentication failed: {e}")
        return AuthVerdict(
            authenticated=False,
            method=method,
            reason=f"{label} authentication failed: {e}",
        )
