"""Custom exceptions for orderdesk."""


class OrderdeskError(Exception):
    """Base exception for all orderdesk errors."""

    pass


class ValidationError(OrderdeskError):
    """Raised when order data is malformed, incomplete or inconsistent."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        msg = message
        if field:
            msg = f"{field}: {message}"
        super().__init__(msg)


class InvalidTransitionError(OrderdeskError):
    """Raised when a status change is not an edge of the transition graph."""

    def __init__(self, current: str, target: str, reason: str | None = None):
        self.current = current
        self.target = target
        self.reason = reason
        msg = f"Cannot transition from {current} to {target}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class AlreadyInStateError(OrderdeskError):
    """Raised when a workflow step has already been applied to an order."""

    def __init__(self, order_id: str, state: str, message: str | None = None):
        self.order_id = order_id
        self.state = state
        super().__init__(message or f"Order {order_id} is already {state}")


class AlreadyVerifiedError(AlreadyInStateError):
    """Raised when payment verification is attempted on a resolved payment."""

    def __init__(self, order_id: str, payment_status: str):
        self.payment_status = payment_status
        super().__init__(
            order_id,
            payment_status,
            f"Payment for order {order_id} has already been processed "
            f"(payment status: {payment_status})",
        )


class RefundNotRequestedError(OrderdeskError):
    """Raised when a refund is resolved but none was requested."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"No refund has been requested for order {order_id}")


class RefundNotApprovedError(OrderdeskError):
    """Raised when a refund is processed before it was approved."""

    def __init__(self, order_id: str, refund_status: str | None):
        self.order_id = order_id
        self.refund_status = refund_status
        super().__init__(
            f"Refund for order {order_id} is not approved (refund status: {refund_status})"
        )


class ConcurrentModificationError(OrderdeskError):
    """Raised when an order changed between load and save."""

    def __init__(self, order_id: str, expected: int, found: int):
        self.order_id = order_id
        self.expected = expected
        self.found = found
        super().__init__(
            f"Order {order_id} was modified concurrently "
            f"(expected version {expected}, found {found}). Retry with fresh state."
        )


class OrderNotFoundError(OrderdeskError):
    """Raised when an order ID or number doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderNumberCollisionError(OrderdeskError):
    """Raised when a generated order number is already taken. Retryable."""

    def __init__(self, order_number: str, attempts: int | None = None):
        self.order_number = order_number
        self.attempts = attempts
        msg = f"Order number already exists: {order_number}"
        if attempts:
            msg = f"Could not allocate a unique order number after {attempts} attempts"
        super().__init__(msg)


class TimelineOrderError(OrderdeskError):
    """Raised when a timeline entry would precede the latest entry."""

    def __init__(self, timestamp: str, latest: str):
        self.timestamp = timestamp
        self.latest = latest
        super().__init__(
            f"Timeline entry at {timestamp} is earlier than latest entry at {latest}"
        )


class InvalidSchemaVersionError(OrderdeskError):
    """Raised when the order store has an unsupported schema version."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found}. This tool supports version {supported}."
        )
