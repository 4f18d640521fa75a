"""Service errors and error message constants."""
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    BUSINESS_RULE = "BUSINESS_RULE"
    AUTH = "AUTH"
    EXTERNAL_DEPENDENCY = "EXTERNAL_DEPENDENCY"


class errmsg:
    """Error message constants."""

    INVALID_QUANTITY = "Quantity must be greater than 0"
    INVALID_PAYMENT_METHOD = "Invalid payment method"
    INVALID_RATING = "Rating must be between 1 and 5"
    INVALID_STATUS_TRANSITION = "Transaction status cannot change from {current} to {target}"
    ITEM_NOT_FOUND = "Item not found"
    CART_ITEM_NOT_FOUND = "Item not found in cart"
    TRANSACTION_NOT_FOUND = "Transaction not found"
    RATING_NOT_FOUND = "Rating not found"
    OUT_OF_STOCK = "Item is out of stock or insufficient quantity available"
    EMPTY_CART = "Cart is empty"
    INSUFFICIENT_BALANCE = "Insufficient wallet balance"
    NOT_PURCHASED = "You can only rate items you have purchased"
    AUTH_FAILED = "Authentication failed"
    AUTH_MISSING = "No authorization header provided"
    AUTH_UNAVAILABLE = "Authentication service unavailable"
    PAYMENT_FAILED = "Wallet payment failed: {reason}"


class CartServiceError(Exception):
    """A request was rejected; carries a stable code and its error kind."""

    kind = ErrorKind.VALIDATION
    status_code = 400

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ValidationError(CartServiceError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(CartServiceError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class BusinessRuleError(CartServiceError):
    kind = ErrorKind.BUSINESS_RULE
    status_code = 400


class NotPurchasedError(BusinessRuleError):
    status_code = 403

    def __init__(self):
        super().__init__("NOT_PURCHASED", errmsg.NOT_PURCHASED)


class AuthError(CartServiceError):
    kind = ErrorKind.AUTH
    status_code = 401

    def __init__(self, message: str = errmsg.AUTH_FAILED):
        super().__init__("AUTH_FAILED", message)


class ExternalDependencyError(CartServiceError):
    """An upstream service failed; the caller may retry."""

    kind = ErrorKind.EXTERNAL_DEPENDENCY
    status_code = 502


class AuthUnavailableError(ExternalDependencyError):
    status_code = 503

    def __init__(self, message: str = errmsg.AUTH_UNAVAILABLE):
        super().__init__("AUTH_UNAVAILABLE", message)


class PaymentFailedError(ExternalDependencyError):
    def __init__(self, reason: str):
        super().__init__("PAYMENT_FAILED", errmsg.PAYMENT_FAILED.format(reason=reason))
        self.reason = reason


class CollaboratorError(Exception):
    """Raised by collaborator clients; the message is the remote one when available."""
