import json
import logging
from typing import Any, Dict, List, Optional

import redis

from .config import settings
from .errors import PersistenceUnavailable
from .models import UserAggregate

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
    socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
)


# --- Remote per-user data service ---
class RemoteUserStore:
    """Per-user data kept in one Redis hash, ``user:<identity>``.

    Every field holds a JSON document; writes are whole-field upserts so
    repeating one is harmless.
    """

    name = "remote"

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client if client is not None else redis_client

    @staticmethod
    def hash_key(identity: str) -> str:
        return f"user:{identity}"

    def get(self, identity: Optional[str], name: str) -> Optional[str]:
        if not identity:
            raise PersistenceUnavailable("remote store needs an identity")
        try:
            return self.client.hget(self.hash_key(identity), name)
        except redis.RedisError as e:
            raise PersistenceUnavailable(f"remote read of {name} failed: {e}") from e

    def put(self, identity: Optional[str], name: str, value: str):
        if not identity:
            raise PersistenceUnavailable("remote store needs an identity")
        try:
            self.client.hset(self.hash_key(identity), name, value)
        except redis.RedisError as e:
            raise PersistenceUnavailable(f"remote write of {name} failed: {e}") from e

    # --- Service-shaped operations ---
    def get_user_aggregate(self, identity: str) -> UserAggregate:
        try:
            fields: Dict[str, str] = self.client.hgetall(self.hash_key(identity))
        except redis.RedisError as e:
            raise PersistenceUnavailable(f"remote read of {identity} failed: {e}") from e

        raw: Dict[str, Any] = {"answers_by_mode": {}}
        for name, value in fields.items():
            try:
                document = json.loads(value)
            except ValueError:
                logger.warning(f"Ignoring malformed field {name} for {identity}")
                continue
            if name.startswith("answers_"):
                raw["answers_by_mode"][name[len("answers_"):]] = document
            elif name == "wrong_questions":
                raw["wrong_ledger"] = document
            elif name in ("stats", "type_states"):
                raw[name] = document
        try:
            return UserAggregate.model_validate(raw)
        except ValueError as e:
            logger.warning(f"Malformed aggregate for {identity}, using defaults: {e}")
            return UserAggregate()

    def put_answers(self, identity: str, mode: str, answers: Dict[int, str]):
        self.put(identity, f"answers_{mode}", json.dumps(answers, ensure_ascii=False))

    def put_wrong_ledger(self, identity: str, questions: List[Dict[str, Any]]):
        self.put(identity, "wrong_questions", json.dumps(questions, ensure_ascii=False))

    def put_stats(self, identity: str, stats: Dict[str, Any]):
        self.put(identity, "stats", json.dumps(stats, ensure_ascii=False))

    def put_type_states(self, identity: str, type_states: Dict[str, Any]):
        self.put(identity, "type_states", json.dumps(type_states, ensure_ascii=False))
