"""Error taxonomy surfaced to API callers.

Every error carries the HTTP status it maps to; the handlers registered in
``main.py`` turn them into ``{"detail": message}`` responses.
"""


class ShopError(Exception):
    status_code = 500
    default_message = "Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ShopError):
    status_code = 404
    default_message = "Resource not found"


class Unauthorized(ShopError):
    status_code = 401
    default_message = "Not authorized"


class Forbidden(ShopError):
    status_code = 403
    default_message = "Forbidden"


class ValidationFailed(ShopError):
    status_code = 400
    default_message = "Invalid data"


class InsufficientStock(ShopError):
    status_code = 400
    default_message = "Not enough stock available"


class AlreadyReviewed(ShopError):
    status_code = 400
    default_message = "Product already reviewed by this user"


class EmptyCart(ShopError):
    status_code = 400
    default_message = "No items in cart to order"


class Conflict(ShopError):
    status_code = 409
    default_message = "Resource was modified concurrently, please retry"


class DatabaseUnavailable(ShopError):
    status_code = 500
    default_message = "Database not configured"
