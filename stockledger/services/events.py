"""
Événements d'inventaire pour le service de notification.

L'operator met les événements en file sur la session pendant qu'il écrit.
Ils ne partent vers les abonnés qu'au commit de la transaction externe;
ceux mis en file dans un savepoint annulé disparaissent avec lui.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from stockledger.app.db.models.core_types import EventKind
from stockledger.app.db.models.models_v1 import utcnow

log = logging.getLogger(__name__)

_PENDING_KEY = "stockledger.pending_events"


@dataclass(frozen=True)
class InventoryEvent:
    kind: EventKind
    inventory_id: int
    product_id: int
    location_id: int
    quantity_before: int
    quantity_after: int
    reference_type: str
    reference_id: str | None = None
    correlation_id: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[InventoryEvent], None]

_handlers: list[Handler] = []


def subscribe(handler: Handler) -> None:
    if handler not in _handlers:
        _handlers.append(handler)


def unsubscribe(handler: Handler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def queue(db: Session, evt: InventoryEvent) -> None:
    """Rattache un événement à la transaction ouverte la plus interne de la session."""
    trans = db.get_nested_transaction() or db.get_transaction()
    db.info.setdefault(_PENDING_KEY, []).append((trans, evt))


def pending(db: Session) -> list[InventoryEvent]:
    return [evt for _, evt in db.info.get(_PENDING_KEY, [])]


def _belongs_to(trans: SessionTransaction | None, rolled_back: SessionTransaction) -> bool:
    while trans is not None:
        if trans is rolled_back:
            return True
        trans = trans.parent
    return False


@event.listens_for(Session, "after_soft_rollback")
def _drop_rolled_back(session: Session, previous_transaction: SessionTransaction) -> None:
    queued = session.info.get(_PENDING_KEY)
    if not queued:
        return
    session.info[_PENDING_KEY] = [
        (trans, evt) for trans, evt in queued if not _belongs_to(trans, previous_transaction)
    ]


@event.listens_for(Session, "after_commit")
def _publish(session: Session) -> None:
    # les RELEASE de savepoint déclenchent aussi after_commit
    if session.in_nested_transaction():
        return
    queued = session.info.pop(_PENDING_KEY, [])
    for _, evt in queued:
        for handler in list(_handlers):
            try:
                handler(evt)
            except Exception:
                log.exception("event handler %r failed for %s", handler, evt.kind)


@event.listens_for(Session, "after_transaction_end")
def _clear_on_root_end(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
