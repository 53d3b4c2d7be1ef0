import asyncio
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future
from typing import Dict, List, Optional, Protocol

from pydantic import TypeAdapter

from .errors import PersistenceUnavailable
from .ledger import WrongLedger
from .models import Mode, Stats, UserAggregate
from .session import TypeStateCache

logger = logging.getLogger(__name__)

STATS = "stats"
WRONG_QUESTIONS = "wrong_questions"
TYPE_STATES = "type_states"

_answers_adapter = TypeAdapter(Dict[int, str])


def answers_name(mode: Mode) -> str:
    return f"answers_{Mode(mode).value}"


class Tier(Protocol):
    name: str

    def get(self, identity: Optional[str], name: str) -> Optional[str]: ...

    def put(self, identity: Optional[str], name: str, value: str): ...


# --- Strategy Pattern: tier selection ---
class FallbackPolicy(ABC):
    """Decides which tiers serve an identity, in the order they are tried."""

    @abstractmethod
    def tiers(self, identity: Optional[str]) -> List[Tier]:
        pass


class RemoteFirstPolicy(FallbackPolicy):
    """Signed-in users go remote first and fall back to this device."""

    def __init__(self, remote: Tier, local: Tier):
        self.remote = remote
        self.local = local

    def tiers(self, identity: Optional[str]) -> List[Tier]:
        if identity:
            return [self.remote, self.local]
        return [self.local]


class LocalOnlyPolicy(FallbackPolicy):
    def __init__(self, local: Tier):
        self.local = local

    def tiers(self, identity: Optional[str]) -> List[Tier]:
        return [self.local]


class TieredStore:
    """One get/put interface over the tiers a policy picks."""

    def __init__(self, policy: FallbackPolicy):
        self.policy = policy

    def get(self, identity: Optional[str], name: str) -> Optional[str]:
        for tier in self.policy.tiers(identity):
            try:
                return tier.get(identity, name)
            except PersistenceUnavailable as e:
                logger.warning(f"Load of {name} from {tier.name} failed, falling back: {e}")
        logger.error(f"Load of {name} failed on every tier")
        return None

    def put(self, identity: Optional[str], name: str, value: str) -> Optional[str]:
        """Write to the first tier that accepts; returns that tier's name."""
        for tier in self.policy.tiers(identity):
            try:
                tier.put(identity, name, value)
                return tier.name
            except PersistenceUnavailable as e:
                logger.warning(f"Save of {name} to {tier.name} failed, falling back: {e}")
        logger.error(f"Save of {name} failed on every tier")
        return None


def _log_failed_write(future: Future):
    error = future.exception()
    if error is not None:
        logger.error(f"Background save failed: {error!r}")


# --- Typed aggregates over the tiered store ---
class PersistenceGateway:
    """Loads and saves the user aggregates.

    Stored documents that fail to parse are treated as absent, so the
    aggregate starts over from its defaults.

    With an executor, saves are queued on it and return at once; give it a
    single worker so writes land in the order they were made. Loads go
    through the same queue so they never read behind a pending write.
    """

    def __init__(self, store: TieredStore, executor: Optional[Executor] = None):
        self.store = store
        self.executor = executor

    def _put_json(self, identity: Optional[str], name: str, document) -> Optional[str]:
        # Encode now: the caller keeps mutating the live objects.
        value = json.dumps(document, ensure_ascii=False)
        if self.executor is None:
            return self.store.put(identity, name, value)
        future = self.executor.submit(self.store.put, identity, name, value)
        future.add_done_callback(_log_failed_write)
        return None

    def save_answers(self, identity: Optional[str], mode: Mode, answers: Dict[int, str]):
        return self._put_json(identity, answers_name(mode), answers)

    def save_wrong_ledger(self, identity: Optional[str], ledger: WrongLedger):
        return self._put_json(identity, WRONG_QUESTIONS, ledger.to_payload())

    def save_stats(self, identity: Optional[str], stats: Stats):
        return self._put_json(identity, STATS, stats.model_dump(mode="json"))

    def save_type_states(self, identity: Optional[str], cache: TypeStateCache):
        return self._put_json(identity, TYPE_STATES, cache.to_payload())

    def load_answers(self, identity: Optional[str], mode: Mode) -> Dict[int, str]:
        raw = self.store.get(identity, answers_name(mode))
        if raw is None:
            return {}
        try:
            return _answers_adapter.validate_json(raw)
        except ValueError:
            logger.warning(f"Malformed stored answers for {mode}, ignoring")
            return {}

    def load_wrong_ledger(self, identity: Optional[str]) -> WrongLedger:
        raw = self.store.get(identity, WRONG_QUESTIONS)
        if raw is None:
            return WrongLedger()
        try:
            return WrongLedger.from_payload(json.loads(raw))
        except (ValueError, TypeError):
            logger.warning("Malformed stored wrong-question ledger, ignoring")
            return WrongLedger()

    def load_stats(self, identity: Optional[str]) -> Stats:
        raw = self.store.get(identity, STATS)
        if raw is None:
            return Stats()
        try:
            return Stats.model_validate_json(raw)
        except ValueError:
            logger.warning("Malformed stored stats, ignoring")
            return Stats()

    def load_type_states(self, identity: Optional[str]) -> TypeStateCache:
        raw = self.store.get(identity, TYPE_STATES)
        if raw is None:
            return TypeStateCache()
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError("type states must be an object")
            return TypeStateCache.from_payload(payload)
        except ValueError:
            logger.warning("Malformed stored type states, ignoring")
            return TypeStateCache()

    def load_all(self, identity: Optional[str]) -> UserAggregate:
        if self.executor is None:
            return self._load_all(identity)
        return self.executor.submit(self._load_all, identity).result()

    async def load_all_async(self, identity: Optional[str]) -> UserAggregate:
        if self.executor is None:
            return await asyncio.to_thread(self.load_all, identity)
        return await asyncio.wrap_future(self.executor.submit(self._load_all, identity))

    def _load_all(self, identity: Optional[str]) -> UserAggregate:
        return UserAggregate(
            answers_by_mode={mode.value: self.load_answers(identity, mode) for mode in Mode},
            wrong_ledger=self.load_wrong_ledger(identity).entries(),
            stats=self.load_stats(identity),
            type_states=self.load_type_states(identity).records(),
        )
