"""Domain exceptions raised by checkout operations.

Route handlers translate these into HTTP responses; nothing below the
routes layer raises HTTPException.
"""


class CheckoutError(Exception):
    """Base exception for all checkout errors."""

    pass


class OrderValidationError(CheckoutError):
    """Raised before any I/O when an order request is incomplete."""

    pass


class PersistenceError(CheckoutError):
    """Raised when the store fails; the transaction has been rolled back."""

    def __init__(self, message: str = "Failed to create order"):
        super().__init__(message)


class OrderNotFoundError(CheckoutError):
    def __init__(self, ref: int | str):
        self.ref = ref
        super().__init__("Order not found")


class InvalidStatusError(CheckoutError):
    """Raised for a status name outside the allowed set."""

    def __init__(self, status: str, valid: list[str], kind: str = "status"):
        self.status = status
        self.valid = valid
        super().__init__(f"Invalid {kind} '{status}'. Valid statuses: {', '.join(valid)}")


class InvalidTransitionError(CheckoutError):
    """Raised when an order cannot move from its current status to the requested one."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Order cannot move from {current} to {target}")


class NotOrderOwnerError(CheckoutError):
    def __init__(self):
        super().__init__("Not authorized to access this order")
