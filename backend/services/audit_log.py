"""
Append-only audit trail for state transitions
Records are written inside the same transaction as the state change they describe
"""
import hashlib
from typing import List, Optional

from models.audit import AuditRecord, EntityType
from models.user import User
from services.store import Store, Transaction

COLLECTION = "audit_log"


def event_audit_id(entity_type: EntityType, entity_id: str, event_id: str) -> str:
    """Deterministic id so a redelivered event collides on insert instead of applying twice"""
    digest = hashlib.sha256(f"{entity_type.value}:{entity_id}:{event_id}".encode()).hexdigest()[:24]
    return f"audit_evt_{digest}"


class AuditLog:
    def __init__(self, store: Store):
        self.store = store

    def append(
        self,
        tx: Transaction,
        entity_type: EntityType,
        entity_id: str,
        previous_state: Optional[str],
        new_state: str,
        actor: User,
        event_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AuditRecord:
        record = AuditRecord(
            entity_type=entity_type,
            entity_id=entity_id,
            previous_state=previous_state,
            new_state=new_state,
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            event_id=event_id,
            reason=reason,
        )
        if event_id:
            record.audit_id = event_audit_id(entity_type, entity_id, event_id)
        tx.insert(COLLECTION, record.model_dump(mode="json"))
        return record

    async def find_event(self, entity_type: EntityType, entity_id: str, event_id: str) -> Optional[AuditRecord]:
        doc = await self.store.find_one(COLLECTION, {"audit_id": event_audit_id(entity_type, entity_id, event_id)})
        return AuditRecord(**doc) if doc else None

    async def history(self, entity_type: EntityType, entity_id: str) -> List[AuditRecord]:
        docs = await self.store.find(
            COLLECTION,
            {"entity_type": entity_type.value, "entity_id": entity_id},
            sort=[("created_at", 1)],
        )
        return [AuditRecord(**d) for d in docs]
