# Overview: Append-only sale event log (lifecycle audit and emission follow-up).

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import Sale, SaleEvent

"""
Sale event log invariants

- Append-only; rows are never updated or deleted.
- No business logic: callers decide what to record.
- Lifecycle events share the transaction of the change they describe; the
  caller commits.
"""

UNKNOWN_OUTCOME_EVENT = "document.unknown_outcome"


def append_sale_event(
    *,
    sale: Sale,
    event_type: str,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> SaleEvent:
    ev = SaleEvent(
        sale_id=sale.id,
        branch_id=sale.branch_id,
        event_type=event_type,
        note=note[:255] if note else None,
        payload=json.dumps(payload, default=str) if payload is not None else None,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    return ev


def list_sale_events(sale_id: int) -> list[SaleEvent]:
    return (
        db.session.query(SaleEvent)
        .filter_by(sale_id=sale_id)
        .order_by(SaleEvent.occurred_at.asc(), SaleEvent.id.asc())
        .all()
    )


def list_events_by_type(event_type: str, branch_id: int | None = None) -> list[SaleEvent]:
    q = db.session.query(SaleEvent).filter_by(event_type=event_type)
    if branch_id is not None:
        q = q.filter_by(branch_id=branch_id)
    return q.order_by(SaleEvent.occurred_at.desc(), SaleEvent.id.desc()).all()
