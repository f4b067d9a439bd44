"""Custom exceptions for the stock ledger."""
from stockledger.utils.formatters import format_quantity


class StockLedgerError(Exception):
    """Base exception for all ledger errors."""
    code = 'STOCK_LEDGER_ERROR'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['status'] = 'error'
        return rv


class ValidationError(StockLedgerError):
    """Raised when request parameters are invalid."""
    code = 'VALIDATION_ERROR'

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class InvalidQuantityError(ValidationError):
    """Quantity missing, non-numeric, zero, negative or out of range."""
    code = 'INVALID_QUANTITY'

    def __init__(self, message="Quantity must be greater than zero", payload=None):
        super().__init__(message, payload)


class InvalidMovementTypeError(ValidationError):
    """Movement type is not ENTRY or EXIT."""
    code = 'INVALID_MOVEMENT_TYPE'

    def __init__(self, movement_type):
        super().__init__(
            f"Invalid movement type: {movement_type!r} (expected ENTRY or EXIT)",
            payload={'type': str(movement_type)}
        )


class InvalidUnitOfMeasureError(ValidationError):
    """Unit of measure unknown or different from the product's stock unit."""
    code = 'INVALID_UNIT_OF_MEASURE'


class ProductNotFoundError(StockLedgerError):
    """Product does not exist, is inactive, or belongs to another organization."""
    code = 'PRODUCT_NOT_FOUND'

    def __init__(self, product_id):
        super().__init__("Product not found", 404, payload={'productId': product_id})
        self.product_id = product_id


class InsufficientStockError(StockLedgerError):
    """Raised when an exit requests more than the available quantity."""
    code = 'INSUFFICIENT_STOCK'

    def __init__(self, available, requested):
        message = f"insufficient stock, available: {format_quantity(available)}"
        super().__init__(message, 409, payload={
            'available': float(available),
            'requested': float(requested),
        })
        self.available = available
        self.requested = requested


class ConcurrencyConflictError(StockLedgerError):
    """The unit of work could not commit due to contention. Safe to retry."""
    code = 'CONCURRENCY_CONFLICT'

    def __init__(self, message="The stock was modified concurrently, please retry"):
        super().__init__(message, 409, payload={'retryable': True})


class InternalError(StockLedgerError):
    """Unexpected persistence failure."""
    code = 'INTERNAL_ERROR'

    def __init__(self, message="Internal error while recording stock movement"):
        super().__init__(message, 500)
