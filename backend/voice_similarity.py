"""
Robust similarity scoring for aggregated voice features.

Compares two recordings family by family:
- MFCC (RMS distance of the mean coefficient vectors)
- Spectral (centroid, flatness, rolloff)
- Voice quality (perceptual spread and sharpness)
- Temporal (zero-crossing rate, energy)
- Pitch (log-scale mean pitch, when both recordings have one)

Each family distance maps to a bounded [0, 1] similarity and the families
are blended with fixed weights. Agreement between the families gives a
confidence estimate.
"""
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from errors import ComputationError
from schemas import AggregatedVoiceFeatures, AuthVerdict, DetailedMetrics, RobustSimilarityResult

logger = logging.getLogger(__name__)


MFCC_SCALE = 5.0
PITCH_SCALE = 1.5
DEFAULT_PITCH_SIMILARITY = 0.7  # Used when either recording lacks pitch

OVERALL_WEIGHTS = {
    "mfcc": 0.5,
    "spectral": 0.25,
    "voice_quality": 0.15,
    "temporal": 0.05,
    "pitch": 0.05,
}
PITCH_NORMALIZED_WEIGHTS = {"mfcc": 0.7, "spectral": 0.2, "pitch": 0.1}
TEMPO_NORMALIZED_WEIGHTS = {"mfcc": 0.6, "spectral": 0.3, "temporal": 0.1}


def normalize_pitch_features(features: AggregatedVoiceFeatures) -> AggregatedVoiceFeatures:
    """Log-scale the mean pitch."""
    if features.pitch_mean and features.pitch_mean > 0:
        return features.model_copy(update={"pitch_mean": math.log(features.pitch_mean)})
    return features


def normalize_tempo_features(features: AggregatedVoiceFeatures) -> AggregatedVoiceFeatures:
    """Log-scale speaking rate and zero-crossing rate."""
    update = {}
    if features.speaking_rate and features.speaking_rate > 0:
        update["speaking_rate"] = math.log(features.speaking_rate)
    if features.zcr_mean > 0:
        update["zcr_mean"] = math.log(features.zcr_mean + 1)
    return features.model_copy(update=update)


def normalize_spectral_features(features: AggregatedVoiceFeatures) -> AggregatedVoiceFeatures:
    """Log-scale energy, RMS and spectral centroid means."""
    update = {}
    if features.energy_mean > 0:
        update["energy_mean"] = math.log(features.energy_mean + 1)
    if features.rms_mean > 0:
        update["rms_mean"] = math.log(features.rms_mean + 1)
    if features.spectral_centroid_mean > 0:
        update["spectral_centroid_mean"] = math.log(features.spectral_centroid_mean)
    return features.model_copy(update=update)


def mfcc_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """RMS distance over the shared prefix of two MFCC mean vectors."""
    n = min(len(a), len(b))
    if n == 0:
        raise ComputationError("No MFCC coefficients to compare")
    diff = np.asarray(a[:n], dtype=np.float64) - np.asarray(b[:n], dtype=np.float64)
    return float(np.sqrt(np.sum(diff * diff) / n))


def bounded_similarity(distance: float) -> float:
    """Map a scale-normalized distance to [0, 1]."""
    return max(0.0, 1.0 - distance)


def _blend(scores: Dict[str, float], weights: Dict[str, float]) -> float:
    return sum(scores[name] * weight for name, weight in weights.items())


def calculate_robust_similarity_score(
    features1: AggregatedVoiceFeatures,
    features2: AggregatedVoiceFeatures,
) -> RobustSimilarityResult:
    """
    Compare two recordings.

    Args:
        features1: Aggregated features of the first recording
        features2: Aggregated features of the second recording

    Returns:
        RobustSimilarityResult with the overall and alternate blends, the
        confidence score and the raw distances

    Raises:
        ComputationError: If either recording has no MFCC coefficients
    """
    pitch1, pitch2 = normalize_pitch_features(features1), normalize_pitch_features(features2)
    tempo1, tempo2 = normalize_tempo_features(features1), normalize_tempo_features(features2)
    spectral1, spectral2 = normalize_spectral_features(features1), normalize_spectral_features(features2)

    mfcc_dist = mfcc_distance(features1.mfcc_mean, features2.mfcc_mean)

    centroid_diff = abs(spectral1.spectral_centroid_mean - spectral2.spectral_centroid_mean)
    flatness_diff = abs(features1.spectral_flatness_mean - features2.spectral_flatness_mean)
    rolloff_diff = abs(features1.spectral_rolloff_mean - features2.spectral_rolloff_mean)

    zcr_diff = abs(tempo1.zcr_mean - tempo2.zcr_mean)
    energy_diff = abs(spectral1.energy_mean - spectral2.energy_mean)

    pitch_diff: Optional[float] = None
    if pitch1.pitch_mean and pitch2.pitch_mean:
        pitch_diff = abs(pitch1.pitch_mean - pitch2.pitch_mean)

    spread_diff = abs(features1.perceptual_spread_mean - features2.perceptual_spread_mean)
    sharpness_diff = abs(features1.perceptual_sharpness_mean - features2.perceptual_sharpness_mean)

    scores = {
        "mfcc": bounded_similarity(mfcc_dist / MFCC_SCALE),
        "spectral": bounded_similarity(
            0.4 * centroid_diff / 2.0 + 0.3 * flatness_diff / 0.5 + 0.3 * rolloff_diff / 2.0
        ),
        "voice_quality": bounded_similarity(0.5 * spread_diff / 0.5 + 0.5 * sharpness_diff / 0.5),
        "temporal": bounded_similarity(0.6 * zcr_diff / 1.0 + 0.4 * energy_diff / 2.0),
        "pitch": bounded_similarity(pitch_diff / PITCH_SCALE) if pitch_diff is not None
        else DEFAULT_PITCH_SIMILARITY,
    }

    # Tight agreement between families -> high confidence
    components = np.array([scores[name] for name in OVERALL_WEIGHTS])
    confidence = max(0.0, 1.0 - float(components.var()))

    return RobustSimilarityResult(
        overall_similarity=_blend(scores, OVERALL_WEIGHTS),
        pitch_normalized_similarity=_blend(scores, PITCH_NORMALIZED_WEIGHTS),
        tempo_normalized_similarity=_blend(scores, TEMPO_NORMALIZED_WEIGHTS),
        spectral_similarity=scores["spectral"],
        voice_quality_similarity=scores["voice_quality"],
        confidence_score=confidence,
        detailed_metrics=DetailedMetrics(
            mfcc_distance=mfcc_dist,
            spectral_centroid_diff=centroid_diff,
            zcr_diff=zcr_diff,
            pitch_diff=pitch_diff,
            energy_diff=energy_diff,
        ),
    )


def calculate_similarity_score(
    features1: AggregatedVoiceFeatures,
    features2: AggregatedVoiceFeatures,
) -> float:
    """Legacy wrapper returning only the overall similarity."""
    return calculate_robust_similarity_score(features1, features2).overall_similarity


def verify_voice(
    enrolled: List[AggregatedVoiceFeatures],
    candidate: AggregatedVoiceFeatures,
    threshold: float = 0.75,
) -> Tuple[AuthVerdict, Optional[RobustSimilarityResult]]:
    """
    Verify a recording against a user's enrolled voice samples.

    The candidate is scored against every enrolled sample; the best overall
    similarity decides. Scoring failures produce a rejected verdict.

    Returns:
        Tuple of (verdict, best similarity result or None)
    """
    if not enrolled:
        return AuthVerdict(authenticated=False, method="voice", reason="No voice samples enrolled"), None

    try:
        results = [calculate_robust_similarity_score(sample, candidate) for sample in enrolled]
    except Exception as e:
        logger.error(f"Voice similarity failed: {e}")
        return AuthVerdict(authenticated=False, method="voice", reason=f"Voice authentication failed: {e}"), None

    best = max(results, key=lambda r: r.overall_similarity)
    similarity = best.overall_similarity
    authenticated = similarity >= threshold
    logger.debug(
        f"Voice check: best similarity={similarity:.4f} over {len(results)} samples, "
        f"confidence={best.confidence_score:.4f}, threshold={threshold:.4f}"
    )

    verdict = AuthVerdict(
        authenticated=authenticated,
        method="voice",
        mse=1.0 - similarity,
        threshold=threshold,
        reason="Voice authentication successful" if authenticated
        else f"Voice similarity too low: {similarity:.4f} < {threshold:.4f}",
    )
    return verdict, best
