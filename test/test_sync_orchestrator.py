import threading
from pathlib import Path

import pytest
import requests

from conftest import RecordingReplay, seed_catalog
from wis.domain.errors import SyncFailureError
from wis.domain.models import SyncAction, SyncActionType, SyncStatus
from wis.repositories.sqlite_store import SqliteStore
from wis.services.connectivity_service import ConnectivityMonitor
from wis.services.ledger_service import InventoryLedger
from wis.services.replay_client import RemoteReplayClient
from wis.services.sync_queue_service import SyncQueueService
from wis.services.sync_service import SyncOrchestrator, SyncOutcome, SyncState


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _queue(tmp_path: Path) -> SyncQueueService:
    store = SqliteStore(tmp_path / "sync.db")
    store.init_db()
    return SyncQueueService(store)


def test_batch_is_replayed_in_enqueue_order(tmp_path: Path):
    queue = _queue(tmp_path)
    a = queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    b = queue.enqueue(SyncActionType.STOCK_OUT, {"id": "B"})
    c = queue.enqueue(SyncActionType.APPROVE, {"tx_id": "A"})
    replay = RecordingReplay()
    sync = SyncOrchestrator(queue, replay)

    report = sync.sync_now()

    assert report.outcome is SyncOutcome.SYNCED
    assert replay.batches == [[a, b, c]]
    assert report.action_ids == (a, b, c)
    assert queue.pending_count() == 0
    assert sync.state is SyncState.IDLE
    assert sync.health.total_synced == 3


def test_empty_queue_is_a_noop(tmp_path: Path):
    queue = _queue(tmp_path)
    replay = RecordingReplay()
    sync = SyncOrchestrator(queue, replay)

    report = sync.sync_now()

    assert report.outcome is SyncOutcome.NOOP
    assert replay.batches == []


def test_reconnect_replays_pending_ledger_actions(tmp_path: Path):
    store = SqliteStore(tmp_path / "reconnect.db")
    store.init_db()
    queue = SyncQueueService(store)
    ledger = InventoryLedger(store, queue)
    _, _, _, _, item = seed_catalog(store)
    ledger.request_stock_in(item, 3)
    ledger.request_stock_out(item, 2)
    assert queue.pending_count() == 2

    replay = RecordingReplay()
    sync = SyncOrchestrator(queue, replay)
    monitor = ConnectivityMonitor(initial_online=False)
    sync.attach(monitor)
    try:
        monitor.report(True).result(timeout=5)
    finally:
        monitor.close()

    assert len(replay.batches) == 1
    assert len(replay.batches[0]) == 2
    assert queue.pending_count() == 0
    assert sync.health.history[-1].trigger == "online"


def test_failed_replay_marks_batch_failed_and_redrains_it(tmp_path: Path):
    queue = _queue(tmp_path)
    a = queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    b = queue.enqueue(SyncActionType.TRANSFER, {"id": "B"})
    replay = RecordingReplay(fail=True)
    sync = SyncOrchestrator(queue, replay, retry_backoff_base=0)

    report = sync.sync_now()

    assert report.outcome is SyncOutcome.FAILED
    assert report.error == "remote unavailable"
    failed = queue.list_actions(SyncStatus.FAILED)
    assert [x.id for x in failed] == [a, b]
    assert all(x.retries == 1 for x in failed)
    assert all(x.last_error == "remote unavailable" for x in failed)
    # failed actions still count as unsynced work
    assert queue.pending_count() == 2

    c = queue.enqueue(SyncActionType.APPROVE, {"tx_id": "A"})
    replay.fail = False
    report = sync.sync_now()

    assert report.outcome is SyncOutcome.SYNCED
    assert replay.batches[-1] == [a, b, c]
    assert queue.pending_count() == 0
    synced = {x.id: x for x in queue.list_actions(SyncStatus.SYNCED)}
    assert synced[a].retries == 1
    assert synced[c].retries == 0


def test_overlapping_trigger_is_coalesced(tmp_path: Path):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow_replay(actions):
        calls.append([a.id for a in actions])
        entered.set()
        assert release.wait(5)

    sync = SyncOrchestrator(queue, slow_replay)
    results = []
    worker = threading.Thread(target=lambda: results.append(sync.sync_now(trigger="online")))
    worker.start()
    try:
        assert entered.wait(5)
        assert sync.is_syncing
        second = sync.sync_now(trigger="manual")
    finally:
        release.set()
        worker.join(5)

    assert second.outcome is SyncOutcome.COALESCED
    assert results[0].outcome is SyncOutcome.SYNCED
    assert len(calls) == 1
    assert queue.pending_count() == 0


class ManualTimer:
    """Stands in for threading.Timer; tests fire it by hand."""

    created = []

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        ManualTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


@pytest.fixture
def timers():
    ManualTimer.created = []
    yield ManualTimer.created


def test_external_triggers_ignore_the_backoff(tmp_path: Path, timers):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    clock = FakeClock()
    replay = RecordingReplay(fail=True)
    sync = SyncOrchestrator(
        queue, replay, retry_backoff_base=2, retry_backoff_max=60, clock=clock, timer_factory=ManualTimer
    )

    assert sync.sync_now().outcome is SyncOutcome.FAILED
    assert sync.backoff_remaining() == pytest.approx(2.0)

    # a wake inside the window runs like a manual sync
    assert sync.handle_wake().outcome is SyncOutcome.FAILED
    assert sync.backoff_remaining() == pytest.approx(4.0)
    assert len(replay.batches) == 2

    replay.fail = False
    assert sync.sync_now(trigger="online").outcome is SyncOutcome.SYNCED
    assert sync.backoff_remaining() == 0.0
    assert sync.health.consecutive_failures == 0
    assert queue.pending_count() == 0


def test_reconnect_inside_backoff_window_still_replays(tmp_path: Path, timers):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    replay = RecordingReplay(fail=True)
    sync = SyncOrchestrator(queue, replay, clock=FakeClock(), timer_factory=ManualTimer)
    monitor = ConnectivityMonitor(initial_online=False)
    sync.attach(monitor)
    try:
        assert sync.sync_now(trigger="startup").outcome is SyncOutcome.FAILED
        assert sync.backoff_remaining() > 0

        replay.fail = False
        monitor.report(True).result(timeout=5)
    finally:
        sync.detach()
        monitor.close()

    assert len(replay.batches) == 2
    assert queue.pending_count() == 0
    assert sync.health.history[-1].trigger == "online"
    assert sync.health.history[-1].outcome is SyncOutcome.SYNCED
    assert timers[0].cancelled
    assert not sync.retry_scheduled


def test_failure_schedules_retry_until_a_cycle_succeeds(tmp_path: Path, timers):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    replay = RecordingReplay(fail=True)
    sync = SyncOrchestrator(queue, replay, retry_backoff_base=2, clock=FakeClock(), timer_factory=ManualTimer)

    sync.sync_now()

    [first] = timers
    assert first.started and first.daemon
    assert first.interval == pytest.approx(2.0)
    assert sync.retry_scheduled

    first.fire()

    assert sync.health.history[-1].trigger == "retry"
    assert sync.health.history[-1].outcome is SyncOutcome.FAILED
    second = timers[-1]
    assert second is not first
    assert second.interval == pytest.approx(4.0)

    replay.fail = False
    second.fire()

    assert sync.health.history[-1].outcome is SyncOutcome.SYNCED
    assert queue.pending_count() == 0
    assert not sync.retry_scheduled
    assert len(timers) == 2


def test_retry_waits_for_reconnect_while_offline(tmp_path: Path, timers):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    replay = RecordingReplay(fail=True)
    sync = SyncOrchestrator(queue, replay, clock=FakeClock(), timer_factory=ManualTimer)
    monitor = ConnectivityMonitor(initial_online=False)
    sync.attach(monitor)
    try:
        sync.sync_now()
        timers[0].fire()
        assert len(replay.batches) == 1

        replay.fail = False
        monitor.report(True).result(timeout=5)
    finally:
        sync.detach()
        monitor.close()

    assert len(replay.batches) == 2
    assert queue.pending_count() == 0


def test_detach_cancels_pending_retry(tmp_path: Path, timers):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    replay = RecordingReplay(fail=True)
    sync = SyncOrchestrator(queue, replay, clock=FakeClock(), timer_factory=ManualTimer)
    monitor = ConnectivityMonitor(initial_online=True)
    sync.attach(monitor)

    sync.sync_now()
    sync.detach()
    monitor.close()
    timers[0].fire()

    assert timers[0].cancelled
    assert len(replay.batches) == 1
    assert not sync.retry_scheduled


def test_backoff_is_capped(tmp_path: Path, timers):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    clock = FakeClock()
    sync = SyncOrchestrator(
        queue, RecordingReplay(fail=True), retry_backoff_base=10, retry_backoff_max=30, clock=clock, timer_factory=ManualTimer
    )

    sync.sync_now()
    sync.sync_now()

    assert sync.backoff_remaining() == pytest.approx(30.0)
    assert [t.interval for t in timers] == [pytest.approx(10.0), pytest.approx(30.0)]
    assert timers[0].cancelled


def test_listener_errors_do_not_break_sync(tmp_path: Path):
    queue = _queue(tmp_path)
    queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    seen = []

    def broken(report):
        raise RuntimeError("listener bug")

    sync = SyncOrchestrator(queue, RecordingReplay())
    sync.add_listener(broken)
    sync.add_listener(seen.append)

    report = sync.sync_now()

    assert report.outcome is SyncOutcome.SYNCED
    assert [r.outcome for r in seen] == [SyncOutcome.SYNCED]


def test_remote_client_failure_leaves_actions_for_retry(tmp_path: Path):
    queue = _queue(tmp_path)
    aid = queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})

    class DownClient(RemoteReplayClient):
        def _post_json(self, body, headers):
            raise requests.ConnectionError("connection refused")

    sync = SyncOrchestrator(queue, DownClient("https://sync.example.test/replay"), retry_backoff_base=0)
    report = sync.sync_now()

    assert report.outcome is SyncOutcome.FAILED
    assert "connection refused" in report.error
    assert queue.list_actions(SyncStatus.FAILED)[0].id == aid


def test_remote_client_posts_wire_batch(tmp_path: Path):
    queue = _queue(tmp_path)
    a = queue.enqueue(SyncActionType.STOCK_IN, {"id": "A"})
    b = queue.enqueue(SyncActionType.REJECT, {"tx_id": "A", "reason": "Damaged"})
    sent = []

    class CapturingClient(RemoteReplayClient):
        def _post_json(self, body, headers):
            sent.append((body, headers))
            return {"status": "ok"}

    SyncOrchestrator(queue, CapturingClient("https://sync.example.test/replay")).sync_now()

    [(body, headers)] = sent
    assert [x["id"] for x in body["actions"]] == [a, b]
    assert body["actions"][1]["payload"] == {"tx_id": "A", "reason": "Damaged"}
    assert body["actions"][0]["type"] == "STOCK_IN"
    assert headers["Idempotency-Key"] == f"{a},{b}"


def test_remote_client_requires_url_and_honours_rejection():
    class RejectingClient(RemoteReplayClient):
        def _post_json(self, body, headers):
            return {"status": "rejected", "reason": "schema mismatch"}

    action = SyncAction(id=1, type=SyncActionType.STOCK_IN, payload={}, status=SyncStatus.PENDING, timestamp="t")

    with pytest.raises(SyncFailureError, match="No remote"):
        RemoteReplayClient("")([action])
    with pytest.raises(SyncFailureError, match="schema mismatch"):
        RejectingClient("https://sync.example.test/replay")([action])
