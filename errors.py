"""Business errors raised by the marketplace core."""


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    pass


class ValidationError(MarketplaceError):
    """Raised when input has the wrong shape or is out of range."""

    pass


class Unauthenticated(MarketplaceError):
    """Raised when credentials are missing, invalid or expired."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class ForbiddenError(MarketplaceError):
    """Raised when the caller is authenticated but lacks the role or ownership."""

    def __init__(self, message: str = "Access denied. Insufficient permissions."):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when an entity is absent or not visible to the caller."""

    def __init__(self, entity: str, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        msg = f"{entity} not found"
        if entity_id is not None:
            msg = f"{entity} not found: {entity_id}"
        super().__init__(msg)


class EmptyCartError(MarketplaceError):
    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__("Cannot check out: the cart is empty")


class InsufficientStockError(MarketplaceError):
    """Raised when a product cannot cover the requested quantity."""

    def __init__(self, product_id: str, requested: int, available: int, product_name=None):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        label = product_name or product_id
        if available <= 0:
            msg = f"Insufficient stock for {label}: requested {requested}, none available"
        else:
            msg = f"Insufficient stock for {label}: requested {requested}, only {available} available"
        super().__init__(msg)


class InvalidTransitionError(MarketplaceError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order to {requested}: order is already {current}")


class ConflictError(MarketplaceError):
    """Raised when a unique value (username, business name, hub) is taken."""

    pass


class InternalError(MarketplaceError):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    Unauthenticated: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    EmptyCartError: 400,
    InsufficientStockError: 409,
    InvalidTransitionError: 409,
    ConflictError: 409,
    InternalError: 500,
}
