"""
Enrollment and verification flows over an injected profile store.

Keystroke flow:
1. Collect training samples of the passphrase (``submit_training_sample``)
2. Train a profile once enough samples exist (``enroll``)
3. Authenticate attempts against the stored profile (``authenticate``)

After ``MAX_FAILED_ATTEMPTS`` consecutive keystroke failures the verdict asks
for voice step-up; a successful keystroke or voice check resets the count.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from authenticator import authenticate
from config import AuthConfig, get_default_config, merge_config
from errors import ProfileNotFoundError
from keystroke_features import EventLike, extract_features
from profile_store import Profile, ProfileStore
from schemas import (
    AttemptRecord,
    AttemptStats,
    AuthVerdict,
    AutoencoderProfile,
    AutoencoderWeights,
    RobustSimilarityResult,
    TrainingSampleResponse,
    VoiceSampleResponse,
)
from trainer import train_profile
from voice_features import process_voice_audio, quick_process_voice_audio
from voice_similarity import verify_voice

logger = logging.getLogger(__name__)


class BiometricAuthService:
    """Keystroke and voice enrollment/verification for many users."""

    def __init__(self, store: ProfileStore, config: Optional[AuthConfig] = None):
        self.store = store
        self.base_config = config or get_default_config()

    async def get_config(self) -> AuthConfig:
        """Effective config: stored settings over the base config."""
        return merge_config(await self.store.get_settings(), base=self.base_config)

    async def update_settings(self, settings: Dict[str, Any]) -> AuthConfig:
        """Merge a partial settings update and persist it."""
        config = merge_config(settings, base=await self.get_config())
        await self.store.put_settings(config.to_settings())
        logger.info(f"Settings updated: {sorted(settings)}")
        return config

    async def submit_training_sample(
        self,
        username: str,
        events: Sequence[EventLike],
        typed_text: Optional[str] = None,
    ) -> TrainingSampleResponse:
        """
        Store one typed passphrase as a training sample.

        A sample whose typed text differs from the passphrase is rejected.
        """
        config = await self.get_config()

        if typed_text is not None and typed_text != config.passphrase:
            count = len(await self.store.get_training_samples(username))
            return TrainingSampleResponse(
                accepted=False,
                count=count,
                remaining=max(0, config.samples_required - count),
                training_in_progress=count < config.samples_required,
                reasons=["PASSPHRASE_MISMATCH"],
            )

        features = extract_features(events, config.passphrase_length)
        async with self.store.lock(username):
            count = await self.store.add_training_sample(username, features.tolist())

        logger.debug(f"Training sample {count}/{config.samples_required} stored for {username}")
        return TrainingSampleResponse(
            accepted=True,
            count=count,
            remaining=max(0, config.samples_required - count),
            training_in_progress=count < config.samples_required,
        )

    async def enroll(
        self,
        username: str,
        model_type: str = "autoencoder",
        seed: Optional[int] = None,
    ) -> Profile:
        """
        Train a profile from the stored samples and replace the user's profile.

        Raises:
            InsufficientDataError: Fewer than ``SAMPLES_REQUIRED`` samples stored
        """
        config = await self.get_config()
        async with self.store.lock(username):
            samples = await self.store.get_training_samples(username)
            profile = await asyncio.to_thread(train_profile, samples, model_type, config, seed)
            await self.store.put_profile(username, profile)
            await self.store.clear_training_samples(username)
            await self.store.reset_failures(username)

        logger.info(f"Enrolled {username} with {model_type} profile from {len(samples)} samples")
        return profile

    async def _log(self, username: str, verdict: AuthVerdict, config: AuthConfig):
        record = AttemptRecord(
            username=username,
            success=verdict.authenticated,
            method=verdict.method,
            mse=verdict.reconstruction_error if verdict.reconstruction_error is not None else (verdict.mse or 0.0),
            reason=verdict.reason,
            timestamp=datetime.now(timezone.utc),
        )
        await self.store.log_attempt(record, config.max_attempt_log)

    async def authenticate(
        self,
        username: str,
        events: Optional[Sequence[EventLike]] = None,
        features: Optional[Sequence[float]] = None,
    ) -> AuthVerdict:
        """
        Authenticate a keystroke attempt given raw events or a feature vector.
        """
        config = await self.get_config()
        if features is None:
            features = extract_features(events, config.passphrase_length)

        async with self.store.lock(username):
            profile = await self.store.get_profile(username)
            if profile is None:
                verdict = AuthVerdict(authenticated=False, reason="No profile found for user")
            else:
                verdict = authenticate(profile, features)

            if verdict.authenticated:
                await self.store.reset_failures(username)
            elif profile is not None:
                failures = await self.store.record_failure(username)
                if failures >= config.max_failed_attempts:
                    verdict = verdict.model_copy(update={"step_up_required": True})
                    logger.info(f"{username} reached {failures} failed attempts; voice step-up required")

        await self._log(username, verdict, config)
        return verdict

    async def add_voice_sample(self, username: str, blob: bytes) -> VoiceSampleResponse:
        """
        Validate, process and store one voice enrollment recording.

        Raises:
            VoiceProcessingError: If full feature extraction fails
        """
        config = await self.get_config()
        if not quick_process_voice_audio(blob, fail_open=config.voice_fail_open):
            count = len(await self.store.get_voice_samples(username))
            return VoiceSampleResponse(
                accepted=False,
                count=count,
                remaining=max(0, config.voice_samples_required - count),
                reason="Recording rejected by quick validation",
            )

        features, _ = await asyncio.to_thread(process_voice_audio, blob)
        async with self.store.lock(username):
            count = await self.store.add_voice_sample(username, features)

        return VoiceSampleResponse(
            accepted=True,
            count=count,
            remaining=max(0, config.voice_samples_required - count),
        )

    async def verify_voice(
        self,
        username: str,
        blob: bytes,
    ) -> Tuple[AuthVerdict, Optional[RobustSimilarityResult]]:
        """
        Verify a recording against the user's enrolled voice samples.

        Raises:
            VoiceProcessingError: If full feature extraction fails
        """
        config = await self.get_config()
        features, _ = await asyncio.to_thread(process_voice_audio, blob)

        async with self.store.lock(username):
            enrolled = await self.store.get_voice_samples(username)
            verdict, similarity = verify_voice(enrolled, features, config.voice_similarity_threshold)
            if verdict.authenticated:
                await self.store.reset_failures(username)

        await self._log(username, verdict, config)
        return verdict, similarity

    async def get_profile(self, username: str) -> Profile:
        """
        Raises:
            ProfileNotFoundError: If the user has no profile
        """
        profile = await self.store.get_profile(username)
        if profile is None:
            raise ProfileNotFoundError(username)
        return profile

    async def get_model(self, username: str) -> AutoencoderWeights:
        """
        Serialized autoencoder of the user's profile.

        Raises:
            ProfileNotFoundError: If there is no autoencoder profile
        """
        profile = await self.store.get_profile(username)
        if not isinstance(profile, AutoencoderProfile):
            raise ProfileNotFoundError(username)
        return profile.autoencoder

    async def attempt_stats(self, username: Optional[str] = None) -> AttemptStats:
        """Totals and success rate of the attempt log."""
        attempts: List[AttemptRecord] = await self.store.get_attempts(username)
        successes = sum(1 for a in attempts if a.success)
        return AttemptStats(
            total_attempts=len(attempts),
            successful_attempts=successes,
            success_rate=successes / len(attempts) if attempts else 0.0,
            last_attempt=attempts[-1].timestamp if attempts else None,
        )
