"""
Persistence collaborators: the Store contract, an in-memory store and a
JSON file store.
"""
import dataclasses
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .models import PlayerProfile, RankBand, RoundResult, StatsDelta
from .scoring import RANK_TABLE

GROUP_KIND = "group"
CHALLENGE_KIND = "challenge"


class Store(ABC):
    """Persistence used for terminal records, player stats and pre-flight checks."""

    @abstractmethod
    async def open_round(self, kind: str, round_id: str, key: str) -> None:
        """Record that a session or challenge is live for ``key``."""

    @abstractmethod
    async def save_round_result(self, result: RoundResult) -> None:
        """Persist the terminal record of a round and close it."""

    @abstractmethod
    async def update_participant_stats(self, user_id: str, delta: StatsDelta) -> PlayerProfile:
        """Apply one participant's stats delta as a single update."""

    @abstractmethod
    async def find_active_session(self, group_id: str) -> Optional[str]:
        """Id of the live session of a group, if any."""

    @abstractmethod
    async def find_non_terminal_challenge(self, pair_key: str) -> Optional[str]:
        """Id of the non-terminal challenge of a player pair, if any."""

    @abstractmethod
    async def is_blocked(self, user_id: str) -> bool:
        """Whether the user may not be challenged."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[PlayerProfile]:
        """Persisted profile of a user."""

    @abstractmethod
    async def top_profiles(self, limit: int = 10) -> List[PlayerProfile]:
        """Profiles ordered by points, highest first."""


def round_result_to_dict(result: RoundResult) -> dict:
    data = dataclasses.asdict(result)
    for key in ("started_at", "ended_at"):
        if isinstance(data.get(key), datetime):
            data[key] = data[key].isoformat()
    return data


class MemoryStore(Store):
    """Dict-backed store."""

    def __init__(self, blocked_users: Sequence[str] = (), rank_table: Sequence[RankBand] = RANK_TABLE):
        self.logger = logging.getLogger(__name__)
        self.rank_table = rank_table
        self.profiles: Dict[str, PlayerProfile] = {}
        self.rounds: List[dict] = []
        self.open_rounds: Dict[Tuple[str, str], str] = {}
        self.blocked: Set[str] = set(blocked_users)

    async def open_round(self, kind: str, round_id: str, key: str) -> None:
        self.open_rounds[(kind, key)] = round_id
        self._flush()

    async def save_round_result(self, result: RoundResult) -> None:
        self.rounds.append(round_result_to_dict(result))
        if self.open_rounds.get((result.kind, result.key)) == result.round_id:
            del self.open_rounds[(result.kind, result.key)]
        self._flush()

    async def update_participant_stats(self, user_id: str, delta: StatsDelta) -> PlayerProfile:
        profile = self.profiles.get(user_id)
        if profile is None:
            profile = PlayerProfile(user_id=user_id, name=delta.name)
            self.profiles[user_id] = profile
        profile.apply(delta, self.rank_table)
        self._flush()
        return profile

    async def find_active_session(self, group_id: str) -> Optional[str]:
        return self.open_rounds.get((GROUP_KIND, group_id))

    async def find_non_terminal_challenge(self, pair_key: str) -> Optional[str]:
        return self.open_rounds.get((CHALLENGE_KIND, pair_key))

    async def is_blocked(self, user_id: str) -> bool:
        if user_id in self.blocked:
            return True
        profile = self.profiles.get(user_id)
        return bool(profile and profile.is_blocked)

    async def get_profile(self, user_id: str) -> Optional[PlayerProfile]:
        return self.profiles.get(user_id)

    async def top_profiles(self, limit: int = 10) -> List[PlayerProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.points, reverse=True)[:limit]

    def block_user(self, user_id: str) -> None:
        self.blocked.add(user_id)
        self._flush()

    def _flush(self) -> None:
        pass


class JsonFileStore(MemoryStore):
    """
    MemoryStore persisted as JSON files in a data directory:
    ``profiles.json``, ``rounds.json`` and ``open_rounds.json``.
    """

    def __init__(self, data_directory: str = "./data/", blocked_users: Sequence[str] = (),
                 rank_table: Sequence[RankBand] = RANK_TABLE):
        super().__init__(blocked_users=blocked_users, rank_table=rank_table)
        self.data_directory = Path(data_directory)
        self.load_errors: List[str] = []
        self._load()

    def _path(self, name: str) -> Path:
        return self.data_directory / name

    def _read_json(self, name: str, default):
        path = self._path(name)
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            self.load_errors.append(f"{name}: invalid JSON: {e}")
            self.logger.error(f"Invalid JSON in {path}: {e}; starting with empty data")
            return default
        except OSError as e:
            self.load_errors.append(f"{name}: {e}")
            self.logger.error(f"Failed to read {path}: {e}")
            return default

    def _load(self) -> None:
        profiles = self._read_json("profiles.json", {})
        field_names = {f.name for f in dataclasses.fields(PlayerProfile)}
        for user_id, data in profiles.items():
            try:
                self.profiles[user_id] = PlayerProfile(**{k: v for k, v in data.items() if k in field_names})
            except TypeError as e:
                self.load_errors.append(f"profiles.json: bad profile {user_id}: {e}")
                self.logger.error(f"Skipping malformed profile {user_id}: {e}")

        self.rounds = self._read_json("rounds.json", [])
        # Rounds live in memory only, so anything left open died with the last process
        stale_rounds = self._read_json("open_rounds.json", [])
        if stale_rounds:
            self.logger.warning(f"Discarding {len(stale_rounds)} rounds left open by a previous run")
        self.blocked.update(self._read_json("blocked.json", []))

        self.logger.info(
            f"Loaded {len(self.profiles)} profiles and {len(self.rounds)} rounds from {self.data_directory}",
            extra={'event_type': 'store_loaded', 'error_count': len(self.load_errors)}
        )

    def _write_json(self, name: str, data) -> None:
        path = self._path(name)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    def _flush(self) -> None:
        self.data_directory.mkdir(parents=True, exist_ok=True)
        self._write_json("profiles.json", {uid: dataclasses.asdict(p) for uid, p in self.profiles.items()})
        self._write_json("rounds.json", self.rounds)
        self._write_json(
            "open_rounds.json",
            [{"kind": kind, "key": key, "round_id": rid} for (kind, key), rid in self.open_rounds.items()]
        )
        self._write_json("blocked.json", sorted(self.blocked))
