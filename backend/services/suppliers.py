"""
Supplier directory - the reference data the capacity matcher reads
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from models.capacity import Supplier, SupplierCreate
from services.errors import NotFoundError
from services.store import Store

COLLECTION = "suppliers"


class SupplierDirectory:
    def __init__(self, store: Store):
        self.store = store

    async def get(self, supplier_id: str) -> Supplier:
        doc = await self.store.find_one(COLLECTION, {"supplier_id": supplier_id})
        if not doc:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        return Supplier(**doc)

    async def get_many(self, supplier_ids: List[str]) -> Dict[str, Supplier]:
        if not supplier_ids:
            return {}
        docs = await self.store.find(COLLECTION, {"supplier_id": {"$in": list(supplier_ids)}})
        return {d["supplier_id"]: Supplier(**d) for d in docs}

    async def list(self, verified_only: bool = False) -> List[Supplier]:
        query = {"verification_status": "verified"} if verified_only else {}
        docs = await self.store.find(COLLECTION, query, sort=[("company_name", 1)])
        return [Supplier(**d) for d in docs]

    async def save(self, data: SupplierCreate) -> Supplier:
        """Create a supplier, or update it in place when supplier_id already exists"""
        existing: Optional[dict] = None
        if data.supplier_id:
            existing = await self.store.find_one(COLLECTION, {"supplier_id": data.supplier_id})

        fields = data.model_dump(exclude={"supplier_id"}, mode="json")
        tx = self.store.transaction()
        if existing:
            fields["updated_at"] = datetime.now(timezone.utc).isoformat()
            tx.update(COLLECTION, {"supplier_id": data.supplier_id}, existing["version"], fields)
            await tx.commit()
            return Supplier(**{**existing, **fields, "version": existing["version"] + 1})

        supplier = Supplier(**fields) if not data.supplier_id else Supplier(supplier_id=data.supplier_id, **fields)
        tx.insert(COLLECTION, supplier.model_dump(mode="json"))
        await tx.commit()
        return supplier
