from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from wis.domain.errors import ValidationError
from wis.domain.models import SyncAction, SyncActionType, SyncStatus
from wis.repositories.unit_of_work import StoreUnitOfWork

log = logging.getLogger("wis.sync")


class SyncQueueService:
    def __init__(self, store):
        self.store = store

    def enqueue(self, action_type: SyncActionType | str, payload: Any, uow: Optional[StoreUnitOfWork] = None) -> int:
        """Append a PENDING action; durable once the owning transaction commits.

        Pass ``uow`` to commit the queue entry together with the state
        mutation it describes.
        """
        try:
            kind = SyncActionType(action_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown sync action type: {action_type}") from exc

        if uow is not None:
            action_id = uow.enqueue(kind, payload)
        else:
            action_id = self.store.enqueue(kind, payload)
        log.info("sync_action_enqueued id=%s type=%s", action_id, kind.value)
        return action_id

    def pending_count(self) -> int:
        return self.store.count_actions(SyncStatus.PENDING, SyncStatus.FAILED)

    def failed_count(self) -> int:
        return self.store.count_actions(SyncStatus.FAILED)

    def drain(self) -> list[SyncAction]:
        """Return every unconfirmed action in enqueue order.

        FAILED actions from earlier cycles are put back to PENDING first so
        they ride along in their original position. Nothing is marked here.
        """
        with self.store.transaction() as uow:
            requeued = uow.requeue_failed()
            actions = uow.list_actions(SyncStatus.PENDING)
        if requeued:
            log.info("sync_actions_requeued count=%s", requeued)
        return actions

    def mark_synced(self, actions: Iterable[SyncAction]) -> int:
        changed = 0
        with self.store.transaction() as uow:
            for action in actions:
                if uow.mark_synced(action.id):
                    changed += 1
        return changed

    def mark_failed(self, actions: Iterable[SyncAction], error: str | None = None) -> int:
        changed = 0
        with self.store.transaction() as uow:
            for action in actions:
                if uow.mark_failed(action.id, error):
                    changed += 1
        return changed

    def list_actions(self, status: SyncStatus | str | None = None) -> list[SyncAction]:
        return self.store.list_actions(status)
