"""
Capacity ledger - per supplier, per date manufacturing capacity

The ledger is the single source of truth for committed capacity. Utilization
only changes through stage_commit/stage_release, which add compare-and-set
writes to the caller's transaction so the capacity change and the supplier
order change land together or not at all.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

from pydantic import TypeAdapter

import config
from models.audit import DomainEvent, EventType
from models.capacity import CapacityLog, CapacityRecord, CapacityUpdate
from services.errors import CapacityExhaustedError, ValidationError
from services.store import Store, Transaction, run_with_retry

logger = logging.getLogger(__name__)

# Timestamps serialised the way stored documents are
_timestamp = TypeAdapter(datetime)

COLLECTION = "factory_capacity"
LOG_COLLECTION = "capacity_logs"


def capacity_id_for(supplier_id: str, day: date) -> str:
    # One record per (supplier, date); a deterministic id makes concurrent creates collide
    return f"cap_{supplier_id}_{day.isoformat()}"


class CapacityLedger:
    def __init__(self, store: Store, max_attempts: int = config.MAX_COMMIT_ATTEMPTS):
        self.store = store
        self.max_attempts = max_attempts

    async def get(self, supplier_id: str, day: date) -> Optional[CapacityRecord]:
        doc = await self.store.find_one(COLLECTION, {"capacity_id": capacity_id_for(supplier_id, day)})
        return CapacityRecord(**doc) if doc else None

    async def list_for_date(self, day: date) -> List[CapacityRecord]:
        docs = await self.store.find(COLLECTION, {"date": day.isoformat()}, sort=[("supplier_id", 1)])
        return [CapacityRecord(**d) for d in docs]

    async def list_for_supplier(
        self,
        supplier_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CapacityRecord]:
        query = {"supplier_id": supplier_id}
        date_range = {}
        if start:
            date_range["$gte"] = start.isoformat()
        if end:
            date_range["$lte"] = end.isoformat()
        if date_range:
            query["date"] = date_range
        docs = await self.store.find(COLLECTION, query, sort=[("date", 1)])
        return [CapacityRecord(**d) for d in docs]

    async def set_capacity(self, update: CapacityUpdate) -> CapacityRecord:
        """Create or resize a capacity record; total can never drop below what is already committed"""
        if update.total_capacity < 0:
            raise ValidationError("total_capacity cannot be negative")

        async def attempt() -> CapacityRecord:
            now = datetime.now(timezone.utc)
            existing = await self.get(update.supplier_id, update.date)
            tx = self.store.transaction()

            if existing is None:
                record = CapacityRecord(
                    capacity_id=capacity_id_for(update.supplier_id, update.date),
                    supplier_id=update.supplier_id,
                    date=update.date,
                    total_capacity=update.total_capacity,
                    machines_count=update.machines_count,
                    workers_count=update.workers_count,
                    shift_hours=update.shift_hours,
                    updated_at=now,
                )
                tx.insert(COLLECTION, record.to_doc())
                await tx.commit()
                return record

            if update.total_capacity < existing.current_utilization:
                raise ValidationError(
                    f"total_capacity {update.total_capacity} is below committed utilization "
                    f"{existing.current_utilization} for {update.supplier_id} on {update.date}"
                )
            changes = {
                "total_capacity": update.total_capacity,
                "machines_count": update.machines_count,
                "workers_count": update.workers_count,
                "shift_hours": update.shift_hours,
                "updated_at": now.isoformat(),
            }
            tx.update(COLLECTION, {"capacity_id": existing.capacity_id}, existing.version, changes)
            await tx.commit()
            return existing.model_copy(update={**changes, "updated_at": now, "version": existing.version + 1})

        return await run_with_retry(attempt, self.max_attempts, "set_capacity")

    def stage_commit(
        self,
        tx: Transaction,
        record: CapacityRecord,
        quantity: int,
        supplier_order_id: Optional[str] = None,
    ) -> Tuple[CapacityRecord, DomainEvent]:
        """Add a utilization increment to `tx`, guarded by the version `record` was read at"""
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        if record.available_capacity < quantity:
            raise CapacityExhaustedError(
                f"Supplier {record.supplier_id} has {record.available_capacity} available on "
                f"{record.date}, {quantity} requested"
            )
        return self._stage_delta(tx, record, quantity, supplier_order_id, EventType.CAPACITY_COMMITTED)

    def stage_release(
        self,
        tx: Transaction,
        record: CapacityRecord,
        quantity: int,
        supplier_order_id: Optional[str] = None,
    ) -> Tuple[CapacityRecord, DomainEvent]:
        if quantity > record.current_utilization:
            logger.warning(
                f"Releasing {quantity} from {record.capacity_id} with only "
                f"{record.current_utilization} committed; clamping to zero"
            )
            quantity = record.current_utilization
        return self._stage_delta(tx, record, -quantity, supplier_order_id, EventType.CAPACITY_RELEASED)

    def _stage_delta(self, tx, record, delta, supplier_order_id, event_type):
        now = datetime.now(timezone.utc)
        utilization = record.current_utilization + delta
        tx.update(
            COLLECTION,
            {"capacity_id": record.capacity_id},
            record.version,
            {"current_utilization": utilization, "updated_at": now.isoformat()},
        )
        log = CapacityLog(
            supplier_id=record.supplier_id,
            date=record.date,
            delta=delta,
            utilization_after=utilization,
            supplier_order_id=supplier_order_id,
            created_at=now,
        )
        tx.insert(LOG_COLLECTION, log.model_dump(mode="json"))

        updated = record.model_copy(update={
            "current_utilization": utilization,
            "updated_at": now,
            "version": record.version + 1,
        })
        event = DomainEvent(
            event_type=event_type,
            entity_id=record.capacity_id,
            payload={
                "supplier_id": record.supplier_id,
                "date": record.date.isoformat(),
                "delta": delta,
                "available_capacity": updated.available_capacity,
                "supplier_order_id": supplier_order_id,
            },
        )
        return updated, event

    async def utilization_logs(self, supplier_id: str, days: int = 30) -> List[CapacityLog]:
        """Commits and releases recorded in the last `days` days, newest first"""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        docs = await self.store.find(
            LOG_COLLECTION,
            {"supplier_id": supplier_id, "created_at": {"$gte": _timestamp.dump_python(since, mode="json")}},
            sort=[("created_at", -1)],
        )
        return [CapacityLog(**d) for d in docs]
