"""
Service wiring - builds every domain service over one store and event bus
"""
from typing import Optional

from services.advisory import AdvisoryClient
from services.assignments import AssignmentService
from services.audit_log import AuditLog
from services.batch_aggregator import BatchAggregator
from services.capacity_ledger import CapacityLedger
from services.capacity_matcher import CapacityMatcher
from services.event_bus import EventBus
from services.notifications import NotificationService
from services.order_state_machine import OrderStateMachine
from services.payments import PaymentService
from services.production_tracker import ProductionTracker
from services.store import Store
from services.supplier_order_state_machine import SupplierOrderStateMachine
from services.suppliers import SupplierDirectory
from services.sync_queue import SyncQueue


class Services:
    def __init__(self, store: Store, bus: Optional[EventBus] = None,
                 advisory: Optional[AdvisoryClient] = None, sync_queue: Optional[SyncQueue] = None):
        self.store = store
        self.bus = bus or EventBus()
        self.audit = AuditLog(store)

        self.suppliers = SupplierDirectory(store)
        self.ledger = CapacityLedger(store)
        self.matcher = CapacityMatcher(self.ledger, self.suppliers)
        self.assignments = AssignmentService(store, self.ledger, self.suppliers, self.audit, self.bus)
        self.tracker = ProductionTracker(store, self.audit, self.bus)
        self.orders = OrderStateMachine(store, self.audit, self.bus)
        self.supplier_orders = SupplierOrderStateMachine(
            store, self.audit, self.bus, self.ledger, self.tracker, self.orders
        )
        self.supplier_orders.register(self.bus)
        self.batches = BatchAggregator(store, self.audit, self.bus, self.assignments)
        self.payments = PaymentService(store, self.orders, self.bus)
        self.notifications = NotificationService(store)
        self.notifications.register(self.bus)

        self.advisory = advisory or AdvisoryClient()
        self.sync_queue = sync_queue or SyncQueue(store)
