class DomainException(Exception):
    pass


# Validation: rejected at the boundary, never persisted

class ValidationError(DomainException):
    pass


class InvalidDiscountError(ValidationError):
    def __init__(self, code: str, reason: str, message: str):
        self.code = code
        self.reason = reason
        super().__init__(message)


class InsufficientStockError(ValidationError):
    def __init__(self, product_id: str, available: int, required: int):
        self.product_id = product_id
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient stock for product {product_id}. Available: {available}, required: {required}"
        )


class NotFoundError(DomainException):
    pass


class OrderNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class AccessDeniedError(DomainException):
    pass


# Conflict: the current state forbids the action, nothing is mutated

class ConflictError(DomainException):
    def __init__(self, message: str, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(message)


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str, message: str | None = None):
        self.target = target
        super().__init__(message or f"Cannot move order from '{current}' to '{target}'", current)


class AlreadyShippedError(ConflictError):
    pass


class ConcurrentUpdateError(ConflictError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} was modified concurrently")


class DuplicateOrderNumberError(ConflictError):
    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order number {order_number} is already taken")


class ReturnNotAllowedError(ConflictError):
    pass


class RefundNotAllowedError(ConflictError):
    pass


# Integrity: flagged for manual review, order state left untouched

class IntegrityViolationError(DomainException):
    pass


class AmountInvariantError(IntegrityViolationError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Amount mismatch: expected {expected}, got {actual}")


class CallbackVerificationError(IntegrityViolationError):
    pass


# External dependencies: operation fails without partial commit, safe to retry

class ExternalServiceError(DomainException):
    pass


class PaymentServiceError(ExternalServiceError):
    pass


class ShippingServiceError(ExternalServiceError):
    pass


class RefundRejectedError(ExternalServiceError):
    def __init__(self, message: str, provider_ref: str | None = None):
        self.provider_ref = provider_ref
        super().__init__(message)


class NotificationError(ExternalServiceError):
    pass
