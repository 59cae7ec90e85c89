# digistore/core/errors.py
# Доменные исключения. Сервисы бросают их, а main.py превращает в HTTP-ответы.


class DigistoreError(Exception):
    """Базовое исключение приложения."""

    status_code = 500
    message = "An error occurred"

    def __init__(self, message: str | None = None, details: list | None = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class ValidationError(DigistoreError):
    status_code = 400
    message = "Validation error"


class NotFoundError(DigistoreError):
    # Отсутствие и чужой объект неразличимы для вызывающего
    status_code = 404
    message = "Not found"


class OrderNotFound(NotFoundError):
    message = "Order not found"


class ProductNotFound(NotFoundError):
    message = "Product not found"


class NotAvailable(NotFoundError):
    message = "Download not available"


class ConflictError(DigistoreError):
    status_code = 400
    message = "Conflict"


class AlreadyVerified(ConflictError):
    message = "Order already verified"


class DuplicateItem(ConflictError):
    message = "Product already in cart"


class InvalidTransition(ConflictError):
    message = "Order cannot change status"


class EmptyCart(DigistoreError):
    status_code = 400
    message = "Cart is empty"


class NoValidProducts(DigistoreError):
    status_code = 400
    message = "No valid products in cart"


class ForbiddenError(DigistoreError):
    status_code = 403
    message = "Insufficient privileges"


class LimitReached(DigistoreError):
    status_code = 403
    message = "Download limit reached"


class LinkExpired(DigistoreError):
    status_code = 403
    message = "Download link expired"


class DependencyUnavailable(DigistoreError):
    status_code = 500
    message = "Dependency unavailable"
