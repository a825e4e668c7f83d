"""
Profile repository for keystroke and voice enrollment data.

This module provides storage for:
- Keystroke profiles (replaced wholesale on re-enrollment)
- Pending keystroke training samples and enrolled voice samples
- Consecutive failure counters for voice step-up
- The authentication attempt log and stored settings

Two backends share one async interface: an in-process dict store and a
Redis store. Callers serialize read-modify-write sequences for a user with
``store.lock(username)``.
"""
import asyncio
import json
import logging
import os
import weakref
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

import redis.asyncio as redis

from schemas import (
    AggregatedVoiceFeatures,
    AttemptRecord,
    AutoencoderProfile,
    StatisticalProfile,
    parse_profile,
)

logger = logging.getLogger(__name__)


Profile = Union[AutoencoderProfile, StatisticalProfile]


class ProfileStore(ABC):
    """Async repository interface."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock(self, username: str) -> asyncio.Lock:
        """
        Per-user lock for read-modify-write sequences.

        Entries are weak: a lock is dropped once no caller holds or waits on it.
        """
        lock = self._locks.get(username)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[username] = lock
        return lock

    async def connect(self):
        """Open backend resources."""

    async def disconnect(self):
        """Release backend resources."""

    @abstractmethod
    async def get_profile(self, username: str) -> Optional[Profile]:
        ...

    @abstractmethod
    async def put_profile(self, username: str, profile: Profile):
        ...

    @abstractmethod
    async def delete_profile(self, username: str):
        ...

    @abstractmethod
    async def add_training_sample(self, username: str, features: List[float]) -> int:
        """Append a sample and return the new sample count."""

    @abstractmethod
    async def get_training_samples(self, username: str) -> List[List[float]]:
        ...

    @abstractmethod
    async def clear_training_samples(self, username: str):
        ...

    @abstractmethod
    async def add_voice_sample(self, username: str, features: AggregatedVoiceFeatures) -> int:
        """Append a voice sample and return the new sample count."""

    @abstractmethod
    async def get_voice_samples(self, username: str) -> List[AggregatedVoiceFeatures]:
        ...

    @abstractmethod
    async def record_failure(self, username: str) -> int:
        """Increment and return the consecutive failure count."""

    @abstractmethod
    async def reset_failures(self, username: str):
        ...

    @abstractmethod
    async def log_attempt(self, record: AttemptRecord, max_entries: int = 100):
        """Append to the attempt log, keeping the newest ``max_entries``."""

    @abstractmethod
    async def get_attempts(self, username: Optional[str] = None) -> List[AttemptRecord]:
        ...

    @abstractmethod
    async def get_settings(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def put_settings(self, settings: Dict[str, Any]):
        ...


class InMemoryProfileStore(ProfileStore):
    """Dict-backed store for a single process."""

    def __init__(self):
        super().__init__()
        self._profiles: Dict[str, Dict[str, Any]] = {}
        self._training: Dict[str, List[List[float]]] = {}
        self._voice: Dict[str, List[Dict[str, Any]]] = {}
        self._failures: Dict[str, int] = {}
        self._attempts: List[Dict[str, Any]] = []
        self._settings: Dict[str, Any] = {}

    async def get_profile(self, username: str) -> Optional[Profile]:
        data = self._profiles.get(username)
        return parse_profile(data) if data is not None else None

    async def put_profile(self, username: str, profile: Profile):
        self._profiles[username] = profile.to_storage()

    async def delete_profile(self, username: str):
        self._profiles.pop(username, None)

    async def add_training_sample(self, username: str, features: List[float]) -> int:
        samples = self._training.setdefault(username, [])
        samples.append([float(v) for v in features])
        return len(samples)

    async def get_training_samples(self, username: str) -> List[List[float]]:
        return [list(s) for s in self._training.get(username, [])]

    async def clear_training_samples(self, username: str):
        self._training.pop(username, None)

    async def add_voice_sample(self, username: str, features: AggregatedVoiceFeatures) -> int:
        samples = self._voice.setdefault(username, [])
        samples.append(features.to_storage())
        return len(samples)

    async def get_voice_samples(self, username: str) -> List[AggregatedVoiceFeatures]:
        return [AggregatedVoiceFeatures.model_validate(s) for s in self._voice.get(username, [])]

    async def record_failure(self, username: str) -> int:
        self._failures[username] = self._failures.get(username, 0) + 1
        return self._failures[username]

    async def reset_failures(self, username: str):
        self._failures.pop(username, None)

    async def log_attempt(self, record: AttemptRecord, max_entries: int = 100):
        self._attempts.append(record.to_storage())
        if len(self._attempts) > max_entries:
            del self._attempts[:len(self._attempts) - max_entries]

    async def get_attempts(self, username: Optional[str] = None) -> List[AttemptRecord]:
        records = [AttemptRecord.model_validate(a) for a in self._attempts]
        if username is not None:
            records = [r for r in records if r.username == username]
        return records

    async def get_settings(self) -> Dict[str, Any]:
        return dict(self._settings)

    async def put_settings(self, settings: Dict[str, Any]):
        self._settings = dict(settings)


class RedisProfileStore(ProfileStore):
    """Redis-backed store; values are JSON documents."""

    ATTEMPTS_KEY = "attempts"
    SETTINGS_KEY = "settings"

    def __init__(self, client: Optional[redis.Redis] = None):
        super().__init__()
        self.redis: Optional[redis.Redis] = client

    async def connect(self):
        """Initialize Redis connection."""
        if self.redis is None:
            self.redis = redis.Redis(
                host=os.getenv("REDIS_HOST", "localhost"),
                port=int(os.getenv("REDIS_PORT", "6379")),
                password=os.getenv("REDIS_PASSWORD", None),
                db=int(os.getenv("REDIS_DB", "0")),
                decode_responses=False,  # We'll handle encoding manually
            )
            logger.info("Connected profile store to Redis")

    async def disconnect(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.close()

    @staticmethod
    def _profile_key(username: str) -> str:
        return f"profile:{username}"

    @staticmethod
    def _training_key(username: str) -> str:
        return f"training:{username}"

    @staticmethod
    def _voice_key(username: str) -> str:
        return f"voice:{username}"

    @staticmethod
    def _failures_key(username: str) -> str:
        return f"failures:{username}"

    @staticmethod
    def _encode(value: Any) -> bytes:
        return json.dumps(value).encode("utf-8")

    @staticmethod
    def _decode(data: Union[bytes, str]) -> Any:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    async def get_profile(self, username: str) -> Optional[Profile]:
        data = await self.redis.get(self._profile_key(username))
        if not data:
            return None
        return parse_profile(self._decode(data))

    async def put_profile(self, username: str, profile: Profile):
        await self.redis.set(self._profile_key(username), self._encode(profile.to_storage()))

    async def delete_profile(self, username: str):
        await self.redis.delete(self._profile_key(username))

    async def add_training_sample(self, username: str, features: List[float]) -> int:
        return int(await self.redis.rpush(self._training_key(username), self._encode([float(v) for v in features])))

    async def get_training_samples(self, username: str) -> List[List[float]]:
        return [self._decode(item) for item in await self.redis.lrange(self._training_key(username), 0, -1)]

    async def clear_training_samples(self, username: str):
        await self.redis.delete(self._training_key(username))

    async def add_voice_sample(self, username: str, features: AggregatedVoiceFeatures) -> int:
        return int(await self.redis.rpush(self._voice_key(username), self._encode(features.to_storage())))

    async def get_voice_samples(self, username: str) -> List[AggregatedVoiceFeatures]:
        items = await self.redis.lrange(self._voice_key(username), 0, -1)
        return [AggregatedVoiceFeatures.model_validate(self._decode(item)) for item in items]

    async def record_failure(self, username: str) -> int:
        return int(await self.redis.incr(self._failures_key(username)))

    async def reset_failures(self, username: str):
        await self.redis.delete(self._failures_key(username))

    async def log_attempt(self, record: AttemptRecord, max_entries: int = 100):
        await self.redis.rpush(self.ATTEMPTS_KEY, self._encode(record.to_storage()))
        await self.redis.ltrim(self.ATTEMPTS_KEY, -max_entries, -1)

    async def get_attempts(self, username: Optional[str] = None) -> List[AttemptRecord]:
        items = await self.redis.lrange(self.ATTEMPTS_KEY, 0, -1)
        records = [AttemptRecord.model_validate(self._decode(item)) for item in items]
        if username is not None:
            records = [r for r in records if r.username == username]
        return records

    async def get_settings(self) -> Dict[str, Any]:
        data = await self.redis.get(self.SETTINGS_KEY)
        return self._decode(data) if data else {}

    async def put_settings(self, settings: Dict[str, Any]):
        await self.redis.set(self.SETTINGS_KEY, self._encode(settings))


def create_store() -> ProfileStore:
    """Redis store when REDIS_HOST is set, in-memory otherwise."""
    if os.getenv("REDIS_HOST"):
        return RedisProfileStore()
    return InMemoryProfileStore()
