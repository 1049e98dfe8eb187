from __future__ import annotations

import pytest
import redis
from redis.exceptions import LockError, LockNotOwnedError

from receipt_reconciler.modules.pipeline.lock import RedisCycleLock, build_cycle_lock

HOME_DEPOT_TEXT = (
    "Order #: W123456789\nOrder Date: 11/23/2025\nOrder Total: $119.76\nVISA **** 1234"
)
HOME_DEPOT_SENDER = "The Home Depot <order@homedepot.com>"


class FakeRedisLock:
    def __init__(self, server: FakeRedis, name: str, timeout: int) -> None:
        self.server = server
        self.name = name
        self.timeout = timeout
        self.token = object()

    def acquire(self, blocking=None):
        if self.server.error is not None:
            raise self.server.error
        if self.name in self.server.held:
            return False
        self.server.held[self.name] = self.token
        self.server.ttls[self.name] = self.timeout
        return True

    def extend(self, additional_time, replace_ttl=False):
        if self.server.held.get(self.name) is not self.token:
            raise LockNotOwnedError("Cannot extend a lock that's no longer owned")
        self.server.extensions += 1
        self.server.ttls[self.name] = additional_time
        return True

    def release(self):
        if self.server.held.get(self.name) is not self.token:
            raise LockError("Cannot release a lock that's no longer owned")
        del self.server.held[self.name]


class FakeRedis:
    """Keys shared by every lock built from it, like one Redis seen by many processes."""

    def __init__(self) -> None:
        self.held: dict[str, object] = {}
        self.ttls: dict[str, int] = {}
        self.extensions = 0
        self.error: Exception | None = None

    def lock(self, name, timeout=None, blocking=True):
        assert blocking is False
        return FakeRedisLock(self, name, timeout)


@pytest.fixture
def server() -> FakeRedis:
    return FakeRedis()


def _lock(server: FakeRedis) -> RedisCycleLock:
    return RedisCycleLock(server, name="cycle", timeout=60)


@pytest.fixture
def ledger(fake_ledger):
    fake_ledger.rows["Account"] = lambda where: (
        [{"Id": "40", "Name": "Company Card"}]
        if "Credit Card" in where
        else [{"Id": "3", "Name": "Job Supplies"}]
    )
    fake_ledger.rows["Vendor"] = [{"Id": "7", "DisplayName": "The Home Depot"}]
    return fake_ledger


@pytest.fixture
def make_pipeline(ledger, fake_ocr, server):
    from receipt_reconciler.modules.pipeline.service import PipelineOrchestrator

    def _make(source):
        return PipelineOrchestrator(source, ledger, ocr_engine=fake_ocr, cycle_lock=_lock(server))

    return _make


def test_lock_is_exclusive_until_released(server):
    first, second = _lock(server), _lock(server)

    assert first.acquire() is True
    assert second.acquire() is False
    assert server.ttls["cycle"] == 60

    first.release()
    assert second.acquire() is True


def test_unreachable_redis_refuses_the_cycle(server):
    server.error = redis.ConnectionError("connection refused")

    assert _lock(server).acquire() is False


def test_extend_fails_once_the_lock_expired(server):
    lock = _lock(server)
    assert lock.extend() is False

    lock.acquire()
    assert lock.extend() is True
    server.held.clear()

    assert lock.extend() is False
    lock.release()


def test_build_cycle_lock_follows_settings(monkeypatch):
    from receipt_reconciler.core.config import settings

    monkeypatch.setattr(settings, "pipeline_lock_backend", "thread")
    assert build_cycle_lock() is None

    monkeypatch.setattr(settings, "pipeline_lock_backend", "redis")
    assert isinstance(build_cycle_lock(), RedisCycleLock)


def test_orchestrators_sharing_the_lock_run_one_cycle(
    make_pipeline, make_source, make_document, server
):
    doc = make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)
    api_side = make_pipeline(make_source([doc]))
    overlapping: list = []

    class TickDuringListing:
        """Fires the other process's cycle while this one is mid-run."""

        def __init__(self, inner) -> None:
            self.inner = inner

        def list_unprocessed(self):
            overlapping.append(api_side.run_cycle())
            return self.inner.list_unprocessed()

        def fetch(self, ref):
            return self.inner.fetch(ref)

        def mark_processed(self, ref):
            self.inner.mark_processed(ref)

    worker_side = make_pipeline(TickDuringListing(make_source([doc])))

    result = worker_side.run_cycle()

    assert overlapping == [None]
    assert result.synced == 1
    assert server.held == {}
    assert server.extensions == 1
    assert api_side.status()["runs"] == 0

    later = api_side.run_cycle()
    assert later is not None
    assert later.skipped == 1


def test_cycle_aborts_when_the_lock_is_lost(make_pipeline, make_source, make_document, server):
    docs = [
        make_document(doc_id, sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)
        for doc_id in ("m1", "m2")
    ]

    class LoseLockAfterFirst:
        def __init__(self, inner) -> None:
            self.inner = inner

        def list_unprocessed(self):
            return self.inner.list_unprocessed()

        def fetch(self, ref):
            return self.inner.fetch(ref)

        def mark_processed(self, ref):
            self.inner.mark_processed(ref)
            server.held.clear()

    source = make_source(docs)
    result = make_pipeline(LoseLockAfterFirst(source)).run_cycle()

    assert result.aborted is True
    assert result.documents == 1
    assert source.marked == ["m1"]


def test_thread_lock_is_released_when_another_process_holds_the_cycle(
    make_pipeline, make_source, server
):
    pipeline = make_pipeline(make_source([]))
    server.held["cycle"] = object()

    assert pipeline.run_cycle() is None
    assert pipeline.running is False

    server.held.clear()
    assert pipeline.run_cycle() is not None
