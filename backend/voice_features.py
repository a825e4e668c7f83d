"""
Voice feature extraction and aggregation.

This module handles:
- Decoding recorded audio into a mono sample buffer
- Per-frame spectral/temporal descriptors (MFCC, spectral centroid and
  flatness, zero-crossing rate, RMS, energy) computed with librosa
- One pitch/jitter/shimmer estimate per recording
- Aggregation of frames into mean/variance features per recording
- A permissive quick validity check used before enrollment
"""
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import librosa
import numpy as np

from errors import VoiceProcessingError
from schemas import AggregatedVoiceFeatures

logger = logging.getLogger(__name__)


FRAME_SIZE = 512
HOP_SIZE = 256
MAX_FRAMES = 50  # Bounds extraction latency
N_MFCC = 13
N_MELS = 40

# Pitch tracking
PITCH_FMIN = 65.0
PITCH_FMAX = 400.0
PITCH_FRAME_LENGTH = 2048
# Same span as the capped frame analysis
PITCH_WINDOW_SAMPLES = (MAX_FRAMES - 1) * HOP_SIZE + FRAME_SIZE
VOICED_RMS_RATIO = 0.1

# Quick check limits
MIN_BLOB_BYTES = 1000
MAX_BLOB_BYTES = 50 * 1024 * 1024
MIN_DURATION_S = 0.5
MIN_SAMPLES = 512
QUICK_RMS_WINDOW = 2048
MIN_RMS = 1e-4

SCALAR_FIELDS = (
    "spectral_centroid",
    "spectral_flatness",
    "spectral_rolloff",
    "spectral_flux",
    "perceptual_spread",
    "perceptual_sharpness",
    "spectral_kurtosis",
    "zcr",
    "rms",
    "energy",
)


@dataclass
class PitchStats:
    """Fundamental frequency summary of a recording."""
    mean: float
    variance: float
    range: float


@dataclass
class VoiceFeatureFrame:
    """Descriptors of one analysis window."""
    mfcc: List[float]
    spectral_centroid: float = 0.0
    spectral_flatness: float = 0.0
    # Not computed by the fast extractor
    spectral_rolloff: float = 0.0
    spectral_flux: float = 0.0
    perceptual_spread: float = 0.0
    perceptual_sharpness: float = 0.0
    spectral_kurtosis: float = 0.0
    zcr: float = 0.0
    rms: float = 0.0
    energy: float = 0.0
    pitch: Optional[PitchStats] = field(default=None)
    jitter: Optional[float] = None
    shimmer: Optional[float] = None


# (voiced f0 values, voiced frame amplitudes)
VoicedTrack = Tuple[np.ndarray, np.ndarray]


def decode_audio(blob: bytes) -> Tuple[np.ndarray, int]:
    """
    Decode an audio container into a mono float buffer.

    Decoding goes through libsndfile, so only the containers it reads are
    accepted (WAV, FLAC, OGG/Vorbis, AIFF and the like). Browser
    MediaRecorder output (WebM/Opus) must be converted by the client first;
    it fails here with an exception.

    Returns:
        Tuple of (samples, sample_rate)
    """
    signal, sample_rate = librosa.load(io.BytesIO(blob), sr=None, mono=True)
    return np.asarray(signal, dtype=np.float32), int(sample_rate)


def _clean(values: np.ndarray) -> np.ndarray:
    return np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)


def extract_frames(
    signal: np.ndarray,
    sample_rate: int,
    frame_size: int = FRAME_SIZE,
    hop_size: int = HOP_SIZE,
    max_frames: int = MAX_FRAMES,
) -> List[VoiceFeatureFrame]:
    """
    Extract per-frame descriptors from a mono signal.

    At most ``max_frames`` windows are analysed, starting at the beginning of
    the signal. Descriptors that cannot be computed default to zero.

    Args:
        signal: Mono samples
        sample_rate: Sampling rate in Hz
        frame_size: Window length in samples
        hop_size: Step between windows in samples
        max_frames: Frame cap

    Returns:
        List of VoiceFeatureFrame (empty if the signal is too short)
    """
    signal = np.asarray(signal, dtype=np.float32).ravel()
    n_frames = min(max_frames, (len(signal) - frame_size) // hop_size)
    if n_frames <= 0:
        return []

    segment = signal[:(n_frames - 1) * hop_size + frame_size]
    windows = librosa.util.frame(segment, frame_length=frame_size, hop_length=hop_size)
    spectrum = np.abs(librosa.stft(segment, n_fft=frame_size, hop_length=hop_size, center=False))

    mfcc = _clean(librosa.feature.mfcc(
        y=segment, sr=sample_rate, n_mfcc=N_MFCC, n_fft=frame_size,
        hop_length=hop_size, n_mels=N_MELS, center=False,
    ))
    centroid = _clean(librosa.feature.spectral_centroid(S=spectrum, sr=sample_rate, n_fft=frame_size)[0])
    flatness = _clean(librosa.feature.spectral_flatness(S=spectrum)[0])
    zcr = _clean(librosa.feature.zero_crossing_rate(
        segment, frame_length=frame_size, hop_length=hop_size, center=False,
    )[0])
    rms = _clean(librosa.feature.rms(y=segment, frame_length=frame_size, hop_length=hop_size, center=False)[0])
    energy = _clean(np.sum(windows.astype(np.float64) ** 2, axis=0))

    count = min(n_frames, mfcc.shape[1], len(centroid), len(flatness), len(zcr), len(rms), len(energy))
    return [
        VoiceFeatureFrame(
            mfcc=mfcc[:, i].tolist(),
            spectral_centroid=float(centroid[i]),
            spectral_flatness=float(flatness[i]),
            zcr=float(zcr[i]),
            rms=float(rms[i]),
            energy=float(energy[i]),
        )
        for i in range(count)
    ]


def voiced_track(signal: np.ndarray, sample_rate: int) -> VoicedTrack:
    """
    F0 and amplitude of the voiced analysis frames.

    Only the first ``PITCH_WINDOW_SAMPLES`` samples are tracked, the same
    span the frame extractor analyses.
    """
    signal = np.asarray(signal, dtype=np.float32).ravel()[:PITCH_WINDOW_SAMPLES]
    if len(signal) < PITCH_FRAME_LENGTH:
        return np.array([]), np.array([])

    f0 = librosa.yin(
        signal, fmin=PITCH_FMIN, fmax=PITCH_FMAX, sr=sample_rate, frame_length=PITCH_FRAME_LENGTH,
    )
    amplitude = librosa.feature.rms(
        y=signal, frame_length=PITCH_FRAME_LENGTH, hop_length=PITCH_FRAME_LENGTH // 4,
    )[0]

    n = min(len(f0), len(amplitude))
    f0, amplitude = _clean(f0[:n]), _clean(amplitude[:n])
    if n == 0 or amplitude.max() <= 0:
        return np.array([]), np.array([])

    voiced = (amplitude > max(MIN_RMS, VOICED_RMS_RATIO * amplitude.max())) & (f0 > 0)
    return f0[voiced], amplitude[voiced]


def calculate_pitch_statistics(
    signal: np.ndarray,
    sample_rate: int,
    track: Optional[VoicedTrack] = None,
) -> Optional[PitchStats]:
    """
    Estimate pitch mean/variance/range with YIN over voiced frames.

    Args:
        signal: Mono samples
        sample_rate: Sampling rate in Hz
        track: Precomputed ``voiced_track`` result, reused instead of re-tracking

    Returns:
        PitchStats, or None if no voiced frame was found
    """
    f0, _ = track if track is not None else voiced_track(signal, sample_rate)
    if f0.size == 0:
        return None
    return PitchStats(
        mean=float(f0.mean()),
        variance=float(f0.var()),
        range=float(f0.max() - f0.min()),
    )


def calculate_jitter_and_shimmer(
    signal: np.ndarray,
    sample_rate: int,
    track: Optional[VoicedTrack] = None,
) -> Tuple[float, float]:
    """
    Frame-level jitter and shimmer.

    Jitter is the mean absolute change of consecutive pitch periods relative
    to the mean period; shimmer is the same measure on frame amplitudes.
    """
    f0, amplitude = track if track is not None else voiced_track(signal, sample_rate)
    if f0.size < 2:
        return 0.0, 0.0

    periods = 1.0 / f0
    jitter = float(np.mean(np.abs(np.diff(periods))) / periods.mean())
    shimmer = float(np.mean(np.abs(np.diff(amplitude))) / amplitude.mean())
    return jitter, shimmer


def aggregate_features(frames: List[VoiceFeatureFrame]) -> AggregatedVoiceFeatures:
    """
    Aggregate frames into per-recording mean and variance.

    Variances are population variances, E[x^2] - E[x]^2. Pitch, jitter and
    shimmer are taken from the last frame when present.

    Raises:
        ValueError: If there are no frames
    """
    if not frames:
        raise ValueError("No features to aggregate")

    n_coeffs = len(frames[0].mfcc)
    mfcc = np.array([f.mfcc[:n_coeffs] for f in frames], dtype=np.float64)
    values = {}
    mfcc_mean = mfcc.mean(axis=0)
    values["mfcc_mean"] = mfcc_mean.tolist()
    values["mfcc_variance"] = np.maximum(0.0, (mfcc ** 2).mean(axis=0) - mfcc_mean ** 2).tolist()

    for name in SCALAR_FIELDS:
        column = np.array([getattr(f, name) for f in frames], dtype=np.float64)
        mean = float(column.mean())
        values[f"{name}_mean"] = mean
        values[f"{name}_variance"] = max(0.0, float((column ** 2).mean()) - mean * mean)

    last = frames[-1]
    if last.pitch is not None:
        values["pitch_mean"] = last.pitch.mean
        values["pitch_variance"] = last.pitch.variance
        values["pitch_range"] = last.pitch.range
    values["jitter"] = last.jitter
    values["shimmer"] = last.shimmer

    return AggregatedVoiceFeatures(**values)


def process_signal(
    signal: np.ndarray,
    sample_rate: int,
) -> Tuple[AggregatedVoiceFeatures, List[VoiceFeatureFrame]]:
    """
    Extract and aggregate the features of a decoded recording.

    Returns:
        Tuple of (aggregated features, raw frames)
    """
    frames = extract_frames(signal, sample_rate)
    logger.debug(f"Extracted {len(frames)} feature frames")

    if frames:
        track = voiced_track(signal, sample_rate)
        jitter, shimmer = calculate_jitter_and_shimmer(signal, sample_rate, track)
        frames[-1].pitch = calculate_pitch_statistics(signal, sample_rate, track)
        frames[-1].jitter = jitter
        frames[-1].shimmer = shimmer

    aggregated = aggregate_features(frames)
    logger.info(
        f"Voice features: mfcc_len={len(aggregated.mfcc_mean)}, "
        f"centroid={aggregated.spectral_centroid_mean:.1f}, pitch={aggregated.pitch_mean}"
    )
    return aggregated, frames


def process_voice_audio(blob: bytes) -> Tuple[AggregatedVoiceFeatures, List[VoiceFeatureFrame]]:
    """
    Decode a recording and extract all voice features.

    See ``decode_audio`` for the accepted containers.

    Raises:
        VoiceProcessingError: On any decoding or extraction failure
    """
    try:
        signal, sample_rate = decode_audio(blob)
        logger.debug(f"Decoded audio: {len(signal) / sample_rate:.2f}s at {sample_rate} Hz")
        return process_signal(signal, sample_rate)
    except Exception as e:
        logger.error(f"Error processing voice audio: {e}")
        raise VoiceProcessingError(str(e)) from e


def quick_process_voice_audio(blob: Optional[bytes], fail_open: bool = True) -> bool:
    """
    Cheap gate deciding whether a recording is worth processing.

    Rejects blobs under 1KB or over 50MB, audio shorter than 0.5s and
    near-silent audio. With ``fail_open`` (the default), a recording that
    cannot be decoded is accepted so that transient decode errors do not
    block enrollment; full extraction still fails hard on such input.

    Returns:
        True if the recording should be processed
    """
    if not blob or len(blob) < MIN_BLOB_BYTES:
        logger.info(f"Blob too small: {len(blob) if blob else 0} bytes")
        return False
    if len(blob) > MAX_BLOB_BYTES:
        logger.info(f"Blob too large: {len(blob)} bytes")
        return False

    try:
        signal, sample_rate = decode_audio(blob)

        duration = len(signal) / sample_rate
        if duration < MIN_DURATION_S:
            logger.info(f"Audio too short: {duration:.2f}s")
            return False
        if len(signal) < MIN_SAMPLES:
            logger.info(f"Audio data too short: {len(signal)} samples")
            return False

        window = signal[:QUICK_RMS_WINDOW].astype(np.float64)
        rms = float(np.sqrt(np.mean(window * window)))
        logger.debug(f"Quick check RMS level: {rms:.6f}")
        return rms > MIN_RMS
    except Exception as e:
        logger.warning(f"Quick voice check failed (fail_open={fail_open}): {e}")
        return fail_open
