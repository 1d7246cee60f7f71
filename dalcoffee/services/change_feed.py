"""In-process change feed.

Subscribers register per table and receive every insert/update event for it.
Events carry only the table, the event kind and the row id: consumers refetch
their own query instead of patching local state. Services queue events with
publish_on_commit so nothing is announced before the row is visible.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({'orders', 'direct_supply_contracts', 'sent_reports', 'shipment_tracking'})


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    row_id: str | None

    def as_dict(self) -> dict:
        return {'table': self.table, 'event': self.event, 'id': self.row_id}


Listener = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, dict[int, Listener]] = {}
        self._next_token = 0

    def subscribe(self, table: str, listener: Listener) -> int:
        if table not in WATCHED_TABLES:
            raise ValueError(f'Table {table} is not published on the change feed')
        with self._lock:
            self._next_token += 1
            token = self._next_token
            self._listeners.setdefault(table, {})[token] = listener
        return token

    def unsubscribe(self, table: str, token: int) -> None:
        with self._lock:
            self._listeners.get(table, {}).pop(token, None)

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._listeners.get(table, {}))

    def publish(self, table: str, event: str, row_id: uuid.UUID | str | None = None) -> int:
        change = ChangeEvent(table=table, event=event, row_id=str(row_id) if row_id is not None else None)
        with self._lock:
            listeners = list(self._listeners.get(table, {}).values())
        delivered = 0
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                # A broken subscriber must not block the publisher or its peers.
                logger.exception('Change feed listener failed for %s', table)
                continue
            delivered += 1
        return delivered


change_feed = ChangeFeed()

PENDING_CHANGES_KEY = 'pending_changes'


def publish_on_commit(db: Session, table: str, event: str, row_id: uuid.UUID | str | None = None) -> None:
    """Queue a change on the session; it reaches subscribers only once the transaction commits."""
    if not db.in_transaction():
        # Pending changes live and die with a transaction.
        db.begin()
    db.info.setdefault(PENDING_CHANGES_KEY, []).append((table, event, row_id))


@sa_event.listens_for(Session, 'after_commit')
def _publish_pending_changes(session: Session) -> None:
    for table, kind, row_id in session.info.pop(PENDING_CHANGES_KEY, []):
        change_feed.publish(table, kind, row_id)


@sa_event.listens_for(Session, 'after_transaction_end')
def _discard_pending_changes(session: Session, transaction) -> None:
    # Runs after after_commit, so anything left here belongs to a rollback or a close.
    if transaction.parent is None:
        session.info.pop(PENDING_CHANGES_KEY, None)
