"""
Error taxonomy shared by the business layer and the API.

Business functions raise these; the application turns them into the JSON
envelope ``{"success": false, "message": ..., "errors": ...}`` with the
status code carried by the class.
"""

from typing import Dict, List, Optional


class StorefrontError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, List[str]]] = None):
        self.message = message or self.message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailed(StorefrontError):
    status_code = 422
    message = "Validation error"

    @classmethod
    def for_field(cls, field: str, error: str) -> "ValidationFailed":
        return cls(errors={field: [error]})


class Unauthorized(StorefrontError):
    status_code = 401
    message = "Unauthorized"


class Forbidden(StorefrontError):
    status_code = 403
    message = "Admin access required"


class NotFound(StorefrontError):
    status_code = 404
    message = "Not found"


class InsufficientStock(StorefrontError):
    status_code = 422
    message = "Insufficient stock"

    @classmethod
    def for_product(cls, product_name: str) -> "InsufficientStock":
        return cls(f"Insufficient stock for product: {product_name}")


class EmptyCart(StorefrontError):
    status_code = 422
    message = "Cart is empty"


class InternalError(StorefrontError):
    status_code = 500
    message = "Order could not be created"
