from __future__ import annotations

import logging

import requests

from wis.domain.errors import SyncFailureError
from wis.domain.models import SyncAction

log = logging.getLogger("wis.sync")


class RemoteReplayClient:
    """Replay target that posts a drained batch to the remote endpoint.

    The endpoint receives the actions in queue order and must treat an
    action id it has already applied as a no-op; a failed batch is sent
    again, whole, on a later cycle.
    """

    def __init__(self, url: str, timeout: float = 30.0, session: requests.Session | None = None):
        self.url = url
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    def _post_json(self, body: dict, headers: dict) -> dict:
        r = self.session.post(self.url, json=body, headers=headers, timeout=self.timeout)
        r.raise_for_status()
        if not r.content:
            return {}
        return r.json()

    def __call__(self, actions: list[SyncAction]) -> None:
        if not actions:
            return
        if not self.url:
            raise SyncFailureError("No remote sync endpoint configured.")

        body = {"actions": [a.to_wire() for a in actions]}
        headers = {"Idempotency-Key": ",".join(str(a.id) for a in actions)}
        try:
            data = self._post_json(body, headers)
        except (requests.RequestException, ValueError) as e:
            log.warning("replay_post_failed url=%s count=%s error=%s", self.url, len(actions), e)
            raise SyncFailureError(f"Replay to {self.url} failed: {e}") from e

        if isinstance(data, dict) and data.get("status") == "rejected":
            raise SyncFailureError(f"Remote rejected batch: {data.get('reason', 'no reason given')}")
        log.info("replay_post_ok url=%s count=%s", self.url, len(actions))
