"""
Registries of live group sessions and challenges.

Each registry enforces at most one live entity per key: one session per
group, one non-terminal challenge per unordered pair of players.
"""
import logging
import threading
from typing import Dict, Generic, List, Optional, TypeVar

from .errors import ConflictError
from .models import Challenge, GroupSession

T = TypeVar("T")


def pair_key(first_id: str, second_id: str) -> str:
    """Order-independent key for two players."""
    a, b = sorted((str(first_id), str(second_id)))
    return f"{a}:{b}"


class _Reservation:
    """Placeholder held for a key while its entity is being created."""
    __slots__ = ()


class Registry(Generic[T]):
    """Concurrency-safe key -> entity map with a secondary id index."""

    conflict_message = "An active round already exists for {key}"

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._by_key: Dict[str, object] = {}
        self._key_by_id: Dict[str, str] = {}

    def _entity_id(self, entity: T) -> str:
        raise NotImplementedError

    def reserve(self, key: str) -> None:
        """
        Claim ``key`` before an entity exists for it.

        Raises:
            ConflictError: If the key is already reserved or bound
        """
        with self._lock:
            if key in self._by_key:
                raise ConflictError(self.conflict_message.format(key=key))
            self._by_key[key] = _Reservation()

    def bind(self, key: str, entity: T) -> None:
        """Attach the created entity to a key reserved with ``reserve``."""
        with self._lock:
            if not isinstance(self._by_key.get(key), _Reservation):
                raise ConflictError(self.conflict_message.format(key=key))
            self._by_key[key] = entity
            self._key_by_id[self._entity_id(entity)] = key

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entity = self._by_key.get(key)
            return None if isinstance(entity, _Reservation) else entity

    def get_by_id(self, entity_id: str) -> Optional[T]:
        with self._lock:
            key = self._key_by_id.get(entity_id)
            return self.get(key) if key is not None else None

    def is_taken(self, key: str) -> bool:
        with self._lock:
            return key in self._by_key

    def release(self, key: str) -> None:
        """Drop a reservation or entity. Called by the engines only."""
        with self._lock:
            entity = self._by_key.pop(key, None)
            if entity is not None and not isinstance(entity, _Reservation):
                self._key_by_id.pop(self._entity_id(entity), None)
            self.logger.debug(f"Released registry key {key}")

    def active(self) -> List[T]:
        with self._lock:
            return [e for e in self._by_key.values() if not isinstance(e, _Reservation)]

    def active_count(self) -> int:
        return len(self.active())


class SessionRegistry(Registry[GroupSession]):
    """Live group sessions keyed by group id."""

    conflict_message = "A quiz is already active in group {key}"

    def _entity_id(self, entity: GroupSession) -> str:
        return entity.session_id


class ChallengeRegistry(Registry[Challenge]):
    """Non-terminal challenges keyed by unordered player pair."""

    conflict_message = "There is already a pending challenge between {key}"

    def _entity_id(self, entity: Challenge) -> str:
        return entity.challenge_id
