"""
Store-level change triggers.

Every inserted or modified live SKU gets an outbox event in the same flush,
so the change feed is complete no matter which code path wrote the row.
"""
from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.orm import Session

from .models import SKU, OutboxEvent

SKU_CREATED = "sku.created"
SKU_UPDATED = "sku.updated"


def sku_payload(sku: SKU) -> Dict[str, Any]:
    """Snapshot of a SKU row as carried on its change events."""
    return {
        "id": sku.id,
        "product_id": sku.product_id,
        "provider_id": sku.provider_id,
        "name": sku.name,
        "inventory": sku.inventory,
        "price": sku.price,
        "currency": sku.currency,
        "is_available": bool(sku.is_available),
        "path": sku.path,
        "product_path": sku.product_path,
    }


def _sku_event(sku: SKU, event_type: str) -> OutboxEvent:
    return OutboxEvent(
        aggregate_id=sku.id,
        aggregate_type="sku",
        event_type=event_type,
        payload=sku_payload(sku),
        published=False,
    )


@event.listens_for(Session, "before_flush")
def emit_sku_change_events(session: Session, flush_context: Any, instances: Any) -> None:
    """Queue `sku.created` / `sku.updated` events for pending SKU writes."""
    events = []
    for obj in session.new:
        if isinstance(obj, SKU):
            events.append(_sku_event(obj, SKU_CREATED))
    for obj in session.dirty:
        if isinstance(obj, SKU) and session.is_modified(obj, include_collections=False):
            events.append(_sku_event(obj, SKU_UPDATED))
    session.add_all(events)
