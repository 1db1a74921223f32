from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from wis.domain.errors import StorageError
from wis.domain.models import SyncAction, now_iso

log = logging.getLogger("wis.sync")

ReplayCallback = Callable[[list[SyncAction]], None]


class SyncState(str, Enum):
    IDLE = "IDLE"
    DRAINING = "DRAINING"
    REPLAYING = "REPLAYING"
    RECONCILING = "RECONCILING"


class SyncOutcome(str, Enum):
    NOOP = "noop"
    SYNCED = "synced"
    FAILED = "failed"
    COALESCED = "coalesced"
    ERROR = "error"


@dataclass(frozen=True)
class SyncReport:
    trigger: str
    outcome: SyncOutcome
    action_ids: tuple[int, ...] = ()
    error: Optional[str] = None


@dataclass
class SyncHealth:
    cycles: int = 0
    total_synced: int = 0
    total_failed: int = 0
    consecutive_failures: int = 0
    last_sync_at: str = ""
    last_error: str = ""
    history: list[SyncReport] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "cycles": self.cycles,
            "total_synced": self.total_synced,
            "total_failed": self.total_failed,
            "consecutive_failures": self.consecutive_failures,
            "last_sync_at": self.last_sync_at,
            "last_error": self.last_error,
        }


class SyncOrchestrator:
    """Drains the sync queue and replays it against the remote authority.

    One cycle runs at a time. The whole batch goes to ``replay`` in FIFO
    order; it either returns (every action SYNCED) or raises (every action
    FAILED, picked up again by the next drain).

    Online edges, wakes and manual calls always run a cycle. After a failed
    cycle the orchestrator schedules its own retry once the exponential
    backoff has elapsed, and keeps doing so until a cycle succeeds or it is
    detached. ``retry_backoff_base <= 0`` turns the self-scheduled retry off.
    """

    def __init__(
        self,
        queue,
        replay: ReplayCallback,
        retry_backoff_base: float = 2.0,
        retry_backoff_max: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        history_size: int = 20,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.queue = queue
        self.replay = replay
        self.retry_backoff_base = float(retry_backoff_base)
        self.retry_backoff_max = float(retry_backoff_max)
        self.clock = clock
        self.history_size = int(history_size)
        self.timer_factory = timer_factory

        self.health = SyncHealth()
        self._state = SyncState.IDLE
        self._cycle_lock = threading.Lock()
        self._backoff_until = 0.0
        self._listeners: list[Callable[[SyncReport], None]] = []
        self._detach: Optional[Callable[[], None]] = None
        self._monitor = None
        self._retry_lock = threading.Lock()
        self._retry_timer: Optional[threading.Timer] = None
        self._retry_token: Optional[object] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._state is not SyncState.IDLE

    def pending_count(self) -> int:
        return self.queue.pending_count()

    def add_listener(self, listener: Callable[[SyncReport], None]) -> None:
        self._listeners.append(listener)

    # ---------- Triggers ----------
    def attach(self, monitor) -> None:
        """Subscribe to the monitor's offline->online edge."""
        self.detach()
        self._monitor = monitor
        self._detach = monitor.on_became_online(self._on_became_online)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
        self._monitor = None
        self._cancel_retry()

    def _on_became_online(self) -> None:
        self.sync_now(trigger="online")

    def handle_wake(self) -> SyncReport:
        """Background wake from the asset cache agent; same as a manual sync."""
        return self.sync_now(trigger="wake")

    def backoff_remaining(self) -> float:
        return max(0.0, self._backoff_until - self.clock())

    @property
    def retry_scheduled(self) -> bool:
        with self._retry_lock:
            return self._retry_token is not None

    def sync_now(self, trigger: str = "manual") -> SyncReport:
        if not self._cycle_lock.acquire(blocking=False):
            log.info("sync_coalesced trigger=%s state=%s", trigger, self._state.value)
            return self._publish(SyncReport(trigger, SyncOutcome.COALESCED))

        try:
            report = self._run_cycle(trigger)
        finally:
            self._state = SyncState.IDLE
            self._cycle_lock.release()

        if report.outcome is SyncOutcome.FAILED:
            self._schedule_retry()
        elif report.outcome in (SyncOutcome.SYNCED, SyncOutcome.NOOP):
            self._cancel_retry()
        return self._publish(report)

    # ---------- Self-scheduled retry ----------
    def _schedule_retry(self) -> None:
        if self.retry_backoff_base <= 0:
            return
        delay = self.backoff_remaining()
        token = object()
        timer = self.timer_factory(delay, self._fire_retry, args=(token,))
        timer.daemon = True
        with self._retry_lock:
            previous = self._retry_timer
            self._retry_timer = timer
            self._retry_token = token
        if previous is not None:
            previous.cancel()
        timer.start()
        log.info("sync_retry_scheduled delay=%.1fs failures=%s", delay, self.health.consecutive_failures)

    def _cancel_retry(self) -> None:
        with self._retry_lock:
            timer = self._retry_timer
            self._retry_timer = None
            self._retry_token = None
        if timer is not None:
            timer.cancel()
            log.debug("sync_retry_cancelled")

    def _fire_retry(self, token: object) -> None:
        with self._retry_lock:
            if token is not self._retry_token:
                return
            self._retry_timer = None
            self._retry_token = None

        monitor = self._monitor
        if monitor is not None and not monitor.is_online:
            # The next online edge replays the queue.
            log.info("sync_retry_skipped reason=offline")
            return
        self.sync_now(trigger="retry")

    # ---------- Cycle ----------
    def _run_cycle(self, trigger: str) -> SyncReport:
        self.health.cycles += 1
        self._state = SyncState.DRAINING
        try:
            batch = self.queue.drain()
        except StorageError as e:
            log.error("sync_drain_failed trigger=%s error=%s", trigger, e)
            self.health.last_error = str(e)
            return SyncReport(trigger, SyncOutcome.ERROR, error=str(e))

        if not batch:
            log.debug("sync_noop trigger=%s", trigger)
            return SyncReport(trigger, SyncOutcome.NOOP)

        ids = tuple(a.id for a in batch)
        self._state = SyncState.REPLAYING
        log.info("sync_replay_started trigger=%s count=%s first_id=%s last_id=%s", trigger, len(ids), ids[0], ids[-1])
        try:
            self.replay(list(batch))
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            log.warning("sync_replay_failed trigger=%s count=%s error=%s", trigger, len(ids), error)
            self._state = SyncState.RECONCILING
            try:
                self.queue.mark_failed(batch, error)
            except StorageError as store_exc:
                log.error("sync_mark_failed_error ids=%s error=%s", ids, store_exc)
            self._register_failure(len(ids), error)
            return SyncReport(trigger, SyncOutcome.FAILED, ids, error)

        self._state = SyncState.RECONCILING
        try:
            self.queue.mark_synced(batch)
        except StorageError as e:
            # Actions stay PENDING and are replayed again; the remote dedupes by id.
            log.error("sync_mark_synced_error ids=%s error=%s", ids, e)
            self.health.last_error = str(e)
            return SyncReport(trigger, SyncOutcome.ERROR, ids, str(e))

        self._register_success(len(ids))
        log.info("sync_replay_succeeded trigger=%s count=%s", trigger, len(ids))
        return SyncReport(trigger, SyncOutcome.SYNCED, ids)

    def _register_success(self, count: int) -> None:
        self.health.total_synced += count
        self.health.consecutive_failures = 0
        self.health.last_sync_at = now_iso()
        self._backoff_until = 0.0

    def _register_failure(self, count: int, error: str) -> None:
        self.health.total_failed += count
        self.health.consecutive_failures += 1
        self.health.last_error = error
        if self.retry_backoff_base > 0:
            delay = min(self.retry_backoff_max, self.retry_backoff_base ** self.health.consecutive_failures)
            self._backoff_until = self.clock() + delay
            log.info("sync_backoff delay=%.1fs failures=%s", delay, self.health.consecutive_failures)

    def _publish(self, report: SyncReport) -> SyncReport:
        self.health.history.append(report)
        del self.health.history[: -self.history_size]
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception:
                log.exception("sync_listener_failed outcome=%s", report.outcome.value)
        return report
