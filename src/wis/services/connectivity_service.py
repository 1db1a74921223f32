from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import requests

log = logging.getLogger("wis.sync")

Listener = Callable[[], None]


class HttpProbe:
    """Reachability check against an HTTP endpoint."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = float(timeout)

    def _head(self) -> int:
        r = requests.head(self.url, timeout=self.timeout, allow_redirects=True)
        return int(r.status_code)

    def __call__(self) -> bool:
        try:
            status = self._head()
        except requests.RequestException as e:
            log.debug("connectivity_probe_failed url=%s error=%s", self.url, e)
            return False
        return status < 500


class ConnectivityMonitor:
    """Tracks online/offline state and fires edge-triggered notifications.

    State can be fed by a platform signal through :meth:`report` or by the
    polling thread started with :meth:`start`. Listeners run on a single
    worker thread, in transition order, never on the reporting thread.
    """

    def __init__(
        self,
        probe: Optional[Callable[[], bool]] = None,
        check_interval: float = 30.0,
        initial_online: bool = False,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.probe = probe
        self.check_interval = float(check_interval)
        self._online = bool(initial_online)
        self._lock = threading.Lock()
        self._online_listeners: list[Listener] = []
        self._offline_listeners: list[Listener] = []
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="connectivity-events")
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def on_became_online(self, listener: Listener) -> Callable[[], None]:
        return self._subscribe(self._online_listeners, listener)

    def on_became_offline(self, listener: Listener) -> Callable[[], None]:
        return self._subscribe(self._offline_listeners, listener)

    def _subscribe(self, listeners: list[Listener], listener: Listener) -> Callable[[], None]:
        with self._lock:
            listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def report(self, online: bool) -> Future | None:
        """Record an observation; dispatches listeners only on a transition."""
        online = bool(online)
        with self._lock:
            if online == self._online:
                return None
            self._online = online
            listeners = list(self._online_listeners if online else self._offline_listeners)

        log.info("connectivity_changed online=%s", online)
        return self._executor.submit(self._dispatch, "online" if online else "offline", listeners)

    def _dispatch(self, edge: str, listeners: list[Listener]) -> None:
        for listener in listeners:
            try:
                listener()
            except Exception:
                log.exception("connectivity_listener_failed edge=%s", edge)

    def poll_once(self) -> Future | None:
        if self.probe is None:
            return None
        return self.report(self.probe())

    # ---------- Background polling ----------
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="connectivity-monitor")
        self._thread.start()
        log.info("connectivity_monitor_started interval=%.0fs", self.check_interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=True)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                log.exception("connectivity_probe_crashed")
            self._stop.wait(self.check_interval)
