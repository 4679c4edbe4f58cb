from models.user import User, UserSession, Role
from models.order import Order, OrderCreate, OrderStatus, PaymentStatus
from models.supplier_order import SupplierOrder, AssignmentCreate, AcceptanceStatus, SupplierOrderStatus
from models.capacity import Supplier, SupplierCreate, CapacityRecord, CapacityUpdate, CapacityLog, SupplierMatch
from models.production import ProductionStage, StageTemplate, StageStatus, StageProgress
from models.batch import Batch, BatchContribution, BatchStatus
from models.pricing import PricingRules, PriceBreakdown
from models.audit import AuditRecord, DomainEvent, EventType, PaymentEvent
from models.sync import QueuedSubmission

__all__ = [
    "User", "UserSession", "Role",
    "Order", "OrderCreate", "OrderStatus", "PaymentStatus",
    "SupplierOrder", "AssignmentCreate", "AcceptanceStatus", "SupplierOrderStatus",
    "Supplier", "SupplierCreate", "CapacityRecord", "CapacityUpdate", "CapacityLog", "SupplierMatch",
    "ProductionStage", "StageTemplate", "StageStatus", "StageProgress",
    "Batch", "BatchContribution", "BatchStatus",
    "PricingRules", "PriceBreakdown",
    "AuditRecord", "DomainEvent", "EventType", "PaymentEvent",
    "QueuedSubmission"
]
