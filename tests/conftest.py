import json
import os
import random
import tempfile
from unittest.mock import MagicMock

import pytest
import redis

SAMPLE_BANK = {
    "单选题": {
        "Q1": {"options": ["A. x", "B. y"], "answer": "A"},
        "Q2": {"options": ["A. x", "B. y", "C. z"], "answer": "C"},
        "Q3": {"options": ["A. x", "B. y"], "answer": "B"},
        "Q4": {"options": ["A. x", "B. y"], "answer": "A"},
    },
    "多选题": {
        "M1": {"options": ["A. x", "B. y", "C. z", "D. w"], "answer": "AC"},
        "M2": {"options": ["A. x", "B. y", "C. z"], "answer": "BC"},
    },
    "判断题": {
        "T1": {"options": [], "answer": "正确"},
        "T2": {"options": [], "answer": "错误"},
    },
}


def write_bank(directory, subject="马原", bank=None):
    path = os.path.join(str(directory), f"{subject}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(bank or SAMPLE_BANK, f, ensure_ascii=False)
    return path


# Settings are read once at import, so point them at scratch space first.
_scratch = tempfile.mkdtemp(prefix="shuati-tests-")
os.environ.setdefault("SHUATI_DB_DIR", os.path.join(_scratch, "db"))
os.environ.setdefault("SHUATI_LOG_DIR", os.path.join(_scratch, "log"))
os.environ.setdefault("SHUATI_LOG_TO_DB", "false")
os.environ.setdefault("SHUATI_BANK_DIR", os.path.join(_scratch, "banks"))
os.makedirs(os.environ["SHUATI_BANK_DIR"], exist_ok=True)
write_bank(os.environ["SHUATI_BANK_DIR"])

from shuati.catalog import QuestionCatalog  # noqa: E402
from shuati.database import LocalStore  # noqa: E402
from shuati.engine import QuizEngine  # noqa: E402
from shuati.redis_session import RemoteUserStore  # noqa: E402
from shuati.storage import (  # noqa: E402
    LocalOnlyPolicy,
    PersistenceGateway,
    RemoteFirstPolicy,
    TieredStore,
)


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Stands in for loop.call_later; timers fire only when told to."""

    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def fire_pending(self):
        for handle in self.pending:
            handle.cancelled = True
            handle.callback()


@pytest.fixture
def bank_dir(tmp_path):
    directory = tmp_path / "banks"
    directory.mkdir()
    write_bank(directory)
    return directory


@pytest.fixture
def catalog(bank_dir):
    return QuestionCatalog(str(bank_dir))


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(str(tmp_path / "local.db"))


@pytest.fixture
def gateway(local_store):
    return PersistenceGateway(TieredStore(LocalOnlyPolicy(local_store)))


@pytest.fixture
def failing_redis():
    client = MagicMock()
    error = redis.ConnectionError("Connection refused")
    client.hget.side_effect = error
    client.hset.side_effect = error
    client.hgetall.side_effect = error
    return client


@pytest.fixture
def remote_first_gateway(failing_redis, local_store):
    policy = RemoteFirstPolicy(RemoteUserStore(failing_redis), local_store)
    return PersistenceGateway(TieredStore(policy))


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def engine(catalog, gateway, scheduler):
    return QuizEngine(
        catalog,
        gateway,
        scheduler=scheduler,
        rng=random.Random(7),
        correct_delay=2.5,
        wrong_delay=3.5,
        autosave_every=10,
    )
