"""
Exceptions raised by the biometric engine.
"""


class BiometricError(Exception):
    """Base class for engine errors."""


class InsufficientDataError(BiometricError):
    """Not enough enrollment samples to build a profile."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(f"Need at least {required} samples, got {available}")


class ShapeMismatchError(BiometricError):
    """Feature vector length does not match what a model expects."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} features, got {actual}")


class ComputationError(BiometricError):
    """Numerical failure while scoring an attempt."""


class VoiceProcessingError(BiometricError):
    """Full voice feature extraction failed."""

    def __init__(self, cause: str):
        super().__init__(f"Failed to process voice audio: {cause}")


class ProfileNotFoundError(BiometricError):
    """No stored profile for the requested user."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"No profile found for user {username!r}")
