"""
Authentication configuration.

Holds the tunable options shared by enrollment and verification:
- Sample counts for keystroke and voice enrollment
- Decision thresholds (autoencoder, statistical, voice similarity)
- Augmentation and training hyper-parameters

Options are serialized under their upper-case names (the names stored by the
settings layer) and are also available as snake_case attributes.
"""
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


ENV_PREFIX = "GHOSTKEY_"
DEFAULT_PASSPHRASE = "MySecretPassword123"


class AuthConfig(BaseModel):
    """Threshold, augmentation and training settings."""

    model_config = ConfigDict(populate_by_name=True)

    samples_required: int = Field(10, alias="SAMPLES_REQUIRED", ge=2)
    autoencoder_threshold: float = Field(0.03, alias="AUTOENCODER_THRESHOLD", gt=0.0)
    voice_similarity_threshold: float = Field(0.75, alias="VOICE_SIMILARITY_THRESHOLD", ge=0.0, le=1.0)
    noise_level: float = Field(0.1, alias="NOISE_LEVEL", ge=0.0)
    augmentation_factor: int = Field(3, alias="AUGMENTATION_FACTOR", ge=0)

    passphrase: str = Field(DEFAULT_PASSPHRASE, alias="PASSPHRASE", min_length=2)
    voice_samples_required: int = Field(5, alias="VOICE_SAMPLES_REQUIRED", ge=1)
    max_failed_attempts: int = Field(2, alias="MAX_FAILED_ATTEMPTS", ge=1)
    max_attempt_log: int = Field(100, alias="MAX_ATTEMPT_LOG", ge=1)

    epochs: int = Field(100, alias="EPOCHS", ge=1)
    learning_rate: float = Field(0.01, alias="LEARNING_RATE", gt=0.0)
    hidden_size: int = Field(16, alias="HIDDEN_SIZE", ge=1)
    bottleneck_size: int = Field(8, alias="BOTTLENECK_SIZE", ge=1)
    full_backprop: bool = Field(False, alias="FULL_BACKPROP")
    statistical_threshold: float = Field(0.1, alias="STATISTICAL_THRESHOLD", gt=0.0)

    # Treat decode errors in the quick voice check as a pass
    voice_fail_open: bool = Field(True, alias="VOICE_FAIL_OPEN")

    @property
    def passphrase_length(self) -> int:
        return len(self.passphrase)

    def to_settings(self) -> Dict[str, Any]:
        """Serialize under the upper-case option names."""
        return self.model_dump(by_alias=True)


def get_default_config() -> AuthConfig:
    """Get the built-in defaults."""
    return AuthConfig()


def merge_config(stored: Optional[Dict[str, Any]], base: Optional[AuthConfig] = None) -> AuthConfig:
    """
    Overlay a stored (possibly partial) settings dict on a base config.

    Keys missing from ``stored`` keep the base value. Both upper-case option
    names and attribute names are accepted.

    Args:
        stored: Settings as persisted by the settings layer
        base: Config to start from (defaults if None)

    Returns:
        New validated AuthConfig
    """
    base = base or get_default_config()
    values = base.to_settings()
    if stored:
        aliases = {name: field.alias for name, field in AuthConfig.model_fields.items()}
        for key, value in stored.items():
            if value is None:
                continue
            values[aliases.get(key, key)] = value
    return AuthConfig.model_validate(values)


def load_config(env_file: Optional[str] = None) -> AuthConfig:
    """
    Load configuration from the environment.

    Every option can be overridden with ``GHOSTKEY_<OPTION>``, e.g.
    ``GHOSTKEY_SAMPLES_REQUIRED=12``. A ``.env`` file is read first.
    """
    load_dotenv(env_file)

    overrides: Dict[str, Any] = {}
    for field in AuthConfig.model_fields.values():
        value = os.getenv(f"{ENV_PREFIX}{field.alias}")
        if value is not None:
            overrides[field.alias] = value

    return merge_config(overrides)
