"""
Capacity matcher - ranks suppliers that can take a quantity on a date

Ranking is a plain (non-locking) read of current headroom and reserves nothing;
committing an assignment is done separately by AssignmentService, which
re-validates availability inside a transaction.
"""
import logging
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from pydantic import BaseModel

import config
from models.capacity import CapacityRecord, Supplier, SupplierMatch, VerificationStatus
from services.capacity_ledger import CapacityLedger
from services.errors import CapacityExhaustedError, ValidationError
from services.production_tracker import category_for_product
from services.suppliers import SupplierDirectory

logger = logging.getLogger(__name__)


class MatchWeights(BaseModel):
    performance: float = config.MATCH_WEIGHT_PERFORMANCE
    specialization: float = config.MATCH_WEIGHT_SPECIALIZATION
    leadtime: float = config.MATCH_WEIGHT_LEADTIME
    headroom: float = config.MATCH_WEIGHT_HEADROOM


def specialization_score(specialization: Optional[str], supplier_specializations: Iterable[str]) -> float:
    """100 for an exact match (product type or its category), 50 for a partial match, else 0"""
    if not specialization:
        return 0.0
    wanted = specialization.strip().lower()
    wanted_category = category_for_product(wanted)
    offered = [s.strip().lower() for s in supplier_specializations if s]

    if wanted in offered or wanted_category in offered:
        return 100.0
    if any(wanted in s or s in wanted for s in offered):
        return 50.0
    return 0.0


def leadtime_fit(lead_time_days: int, target_date: date, today: date) -> float:
    if lead_time_days <= 0:
        return 100.0
    days_available = (target_date - today).days
    if days_available <= 0:
        return 0.0
    return min(1.0, days_available / lead_time_days) * 100


def headroom_ratio(record: CapacityRecord, quantity: int) -> float:
    """Share of total capacity still free after this quantity is placed"""
    if record.total_capacity <= 0:
        return 0.0
    ratio = (record.available_capacity - quantity) / record.total_capacity * 100
    return max(0.0, min(100.0, ratio))


class CapacityMatcher:
    def __init__(
        self,
        ledger: CapacityLedger,
        suppliers: SupplierDirectory,
        weights: Optional[MatchWeights] = None,
        clock=None,
    ):
        self.ledger = ledger
        self.suppliers = suppliers
        self.weights = weights or MatchWeights()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def score(self, supplier: Supplier, record: CapacityRecord, quantity: int,
              target_date: date, specialization: Optional[str]) -> SupplierMatch:
        today = self.clock().date()
        spec = specialization_score(specialization, supplier.specializations)
        lead = leadtime_fit(supplier.lead_time_days, target_date, today)
        headroom = headroom_ratio(record, quantity)
        performance = max(0.0, min(100.0, supplier.performance_score))

        total = (
            self.weights.performance * performance
            + self.weights.specialization * spec
            + self.weights.leadtime * lead
            + self.weights.headroom * headroom
        )
        return SupplierMatch(
            supplier_id=supplier.supplier_id,
            company_name=supplier.company_name,
            score=round(total, 2),
            available_capacity=record.available_capacity,
            total_capacity=record.total_capacity,
            performance_score=performance,
            specialization_match=spec,
            leadtime_fit=round(lead, 2),
            capacity_headroom_ratio=round(headroom, 2),
        )

    async def rank(
        self,
        quantity: int,
        target_date: date,
        specialization: Optional[str] = None,
        exclude_supplier_ids: Optional[List[str]] = None,
    ) -> List[SupplierMatch]:
        if quantity is None or quantity <= 0:
            raise ValidationError("quantity must be positive")
        if target_date is None:
            raise ValidationError("target_date is required")

        excluded = set(exclude_supplier_ids or [])
        records = [
            r for r in await self.ledger.list_for_date(target_date)
            if r.supplier_id not in excluded and r.available_capacity >= quantity
        ]
        suppliers = await self.suppliers.get_many([r.supplier_id for r in records])

        matches = []
        for record in records:
            supplier = suppliers.get(record.supplier_id)
            if not supplier:
                continue
            if supplier.verification_status != VerificationStatus.VERIFIED or not supplier.is_active:
                continue
            matches.append(self.score(supplier, record, quantity, target_date, specialization))

        if not matches:
            raise CapacityExhaustedError(f"No verified supplier has {quantity} units available on {target_date}")

        matches.sort(key=lambda m: (-m.score, -m.available_capacity, m.supplier_id))
        logger.info(f"Ranked {len(matches)} suppliers for {quantity} units on {target_date}")
        return matches
