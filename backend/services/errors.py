"""
Fulfillment error taxonomy
Routers translate these into HTTP responses (see server.py)
"""


class FulfillmentError(Exception):
    """Base class for all fulfillment errors"""
    status_code = 400
    code = "fulfillment_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(FulfillmentError):
    """Malformed quantity, date, price or style data - rejected before any mutation"""
    status_code = 400
    code = "validation_error"


class NotFoundError(FulfillmentError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(FulfillmentError):
    status_code = 403
    code = "permission_denied"


class StateError(FulfillmentError):
    """Transition attempted from an unexpected current state (usually a stale client view)"""
    status_code = 409
    code = "state_error"


class ConflictError(FulfillmentError):
    """Optimistic-concurrency loss - the stored version changed since it was read"""
    status_code = 409
    code = "conflict"


class CapacityExhaustedError(FulfillmentError):
    """No supplier capacity meets the quantity/date requirement"""
    status_code = 409
    code = "capacity_exhausted"


class ExternalServiceError(FulfillmentError):
    """Advisory or notification collaborator failed"""
    status_code = 502
    code = "external_service_error"
