"""
Pydantic schemas for profiles, verdicts, voice features and API payloads.

Stored objects serialize with camelCase keys (``modelType``,
``normalizationParams``, ...) so profiles persisted by the settings layer
round-trip unchanged.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> Dict[str, Any]:
        """JSON-safe dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Keystroke data
# ---------------------------------------------------------------------------

class KeyEvent(CamelModel):
    """A single key press or release."""
    key: str
    type: Literal["keydown", "keyup"]
    timestamp_ms: float = Field(
        ...,
        validation_alias=AliasChoices("timestampMs", "timestamp_ms", "timestamp"),
    )


class AutoencoderWeights(CamelModel):
    """Serialized autoencoder: three weight matrices and three bias vectors."""
    weights1: List[List[float]]
    weights2: List[List[float]]
    weights3: List[List[float]]
    biases1: List[float]
    biases2: List[float]
    biases3: List[float]
    input_size: int
    hidden_size: int
    bottleneck_size: int


class MinMaxParams(BaseModel):
    """Per-feature min/max used for min-max scaling."""
    min: List[float]
    max: List[float]


class MeanStdParams(BaseModel):
    """Per-feature mean/std used for z-scoring."""
    means: List[float]
    stds: List[float]


class TrainingStats(CamelModel):
    """Summary of an autoencoder training run."""
    samples: int
    augmented_samples: int
    reconstruction_errors: List[float]
    mean_error: float
    max_error: float
    min_error: float
    final_loss: float


class MseStats(CamelModel):
    """Decision statistics for the statistical authenticator."""
    percentile_threshold: Optional[float] = None
    mean_mse: Optional[float] = None


class AutoencoderProfile(CamelModel):
    """Keystroke profile backed by a trained autoencoder."""
    model_type: Literal["autoencoder"] = "autoencoder"
    normalization_params: MinMaxParams
    threshold: float
    autoencoder: AutoencoderWeights
    training_stats: Optional[TrainingStats] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class StatisticalProfile(CamelModel):
    """Keystroke profile backed by per-feature mean/std (legacy path)."""
    model_type: Literal["statistical"] = "statistical"
    normalization_params: MeanStdParams
    threshold: Optional[float] = None
    mse_stats: Optional[MseStats] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None


KeystrokeProfile = Annotated[
    Union[AutoencoderProfile, StatisticalProfile],
    Field(discriminator="model_type"),
]

_profile_adapter = TypeAdapter(KeystrokeProfile)


def parse_profile(data: Dict[str, Any]) -> Union[AutoencoderProfile, StatisticalProfile]:
    """Parse a stored profile dict into the matching profile type."""
    return _profile_adapter.validate_python(data)


class AuthVerdict(CamelModel):
    """Outcome of one authentication attempt."""
    authenticated: bool
    method: Optional[Literal["autoencoder", "statistical", "voice"]] = None
    mse: Optional[float] = None
    reconstruction_error: Optional[float] = None
    threshold: Optional[float] = None
    reason: str
    step_up_required: bool = False


# ---------------------------------------------------------------------------
# Voice data
# ---------------------------------------------------------------------------

class AggregatedVoiceFeatures(CamelModel):
    """Mean/variance of every frame descriptor over one recording."""
    mfcc_mean: List[float]
    mfcc_variance: List[float]
    spectral_centroid_mean: float = 0.0
    spectral_centroid_variance: float = 0.0
    spectral_flatness_mean: float = 0.0
    spectral_flatness_variance: float = 0.0
    spectral_rolloff_mean: float = 0.0
    spectral_rolloff_variance: float = 0.0
    spectral_flux_mean: float = 0.0
    spectral_flux_variance: float = 0.0
    perceptual_spread_mean: float = 0.0
    perceptual_spread_variance: float = 0.0
    perceptual_sharpness_mean: float = 0.0
    perceptual_sharpness_variance: float = 0.0
    spectral_kurtosis_mean: float = 0.0
    spectral_kurtosis_variance: float = 0.0
    zcr_mean: float = 0.0
    zcr_variance: float = 0.0
    rms_mean: float = 0.0
    rms_variance: float = 0.0
    energy_mean: float = 0.0
    energy_variance: float = 0.0
    pitch_mean: Optional[float] = None
    pitch_variance: Optional[float] = None
    pitch_range: Optional[float] = None
    jitter: Optional[float] = None
    shimmer: Optional[float] = None
    speaking_rate: Optional[float] = None


class DetailedMetrics(CamelModel):
    """Raw distances behind a similarity result."""
    mfcc_distance: float
    spectral_centroid_diff: float
    zcr_diff: float
    pitch_diff: Optional[float]
    energy_diff: float


class RobustSimilarityResult(CamelModel):
    """Similarity between two recordings."""
    overall_similarity: float
    pitch_normalized_similarity: float
    tempo_normalized_similarity: float
    spectral_similarity: float
    voice_quality_similarity: float
    confidence_score: float
    detailed_metrics: DetailedMetrics


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class TrainingSampleRequest(CamelModel):
    """Request payload for /keystroke/samples."""
    username: str = Field(..., min_length=1, max_length=255)
    events: List[KeyEvent]
    typed_text: Optional[str] = None

    @field_validator("events")
    @classmethod
    def events_not_empty(cls, v):
        if not v:
            raise ValueError("events cannot be empty")
        return v


class TrainingSampleResponse(CamelModel):
    """Response payload for /keystroke/samples."""
    accepted: bool
    count: int
    remaining: int
    training_in_progress: bool
    reasons: List[str] = Field(default_factory=list)


class EnrollRequest(CamelModel):
    """Request payload for /keystroke/enroll."""
    username: str = Field(..., min_length=1, max_length=255)
    model_type: Literal["autoencoder", "statistical"] = "autoencoder"
    seed: Optional[int] = None


class EnrollResponse(CamelModel):
    """Response payload for /keystroke/enroll."""
    username: str
    model_type: str
    threshold: float
    training_stats: Optional[TrainingStats] = None


class AuthenticateRequest(CamelModel):
    """Request payload for /keystroke/authenticate."""
    username: str = Field(..., min_length=1, max_length=255)
    events: Optional[List[KeyEvent]] = None
    features: Optional[List[float]] = None


class VoiceSampleResponse(CamelModel):
    """Response payload for /voice/{username}/samples."""
    accepted: bool
    count: int
    remaining: int
    reason: Optional[str] = None


class VoiceVerifyResponse(CamelModel):
    """Response payload for /voice/{username}/verify."""
    verdict: AuthVerdict
    similarity: Optional[RobustSimilarityResult] = None


class AttemptRecord(CamelModel):
    """One entry in the attempt log."""
    username: str
    success: bool
    method: Optional[str] = None
    mse: float = 0.0
    reason: Optional[str] = None
    timestamp: datetime


class AttemptStats(CamelModel):
    """Summary of the attempt log."""
    total_attempts: int
    successful_attempts: int
    success_rate: float
    last_attempt: Optional[datetime] = None
