"""Models package - exports all SQLAlchemy models."""
from stockledger.models.product import Product
from stockledger.models.stock_movement import StockMovement, MovementType
from stockledger.models.stock_snapshot import StockSnapshot

__all__ = [
    'Product',
    'StockMovement', 'MovementType',
    'StockSnapshot',
]
