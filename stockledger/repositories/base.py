"""
Persistence contracts for the stock ledger.

The ledger and the query service only talk to these interfaces. Two
implementations exist: SQLAlchemy (production) and in-memory (unit tests).
"""
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from stockledger.models import MovementType, Product, StockMovement, StockSnapshot


@dataclass(frozen=True)
class MovementFilters:
    """Optional filters for movement listing."""
    product_id: Optional[int] = None
    user_id: Optional[str] = None
    type: Optional[MovementType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    product_name: Optional[str] = None


@dataclass(frozen=True)
class SnapshotFilters:
    """Optional filters for snapshot listing."""
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    zero_stock: bool = False
    low_stock: bool = False
    threshold: Optional[Decimal] = None


@dataclass
class Page:
    """Pagination envelope."""
    items: List[Any]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    def to_dict(self, serialize: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
        return {
            'items': [serialize(item) for item in self.items],
            'total': self.total,
            'page': self.page,
            'pageSize': self.page_size,
            'totalPages': self.total_pages,
        }


@dataclass
class LedgerRow:
    """A movement or snapshot paired with its product name."""
    record: Any
    product_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.record.to_dict(product_name=self.product_name)


@dataclass
class ProductStockRow:
    """Product picker entry: a catalog product with its current stock."""
    product: Product
    current_quantity: Decimal = Decimal('0')
    unit_of_measure: str = 'un'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.product.id,
            'name': self.product.name,
            'category': self.product.category,
            'currentQuantity': float(self.current_quantity),
            'unitOfMeasure': self.unit_of_measure,
        }


class ProductCatalog(ABC):
    """Read access to the external product catalog."""

    @abstractmethod
    def get_product(self, organization_id: str, product_id: int) -> Optional[Product]:
        """Return the product if it belongs to the organization, else None."""

    def product_exists(self, organization_id: str, product_id: int) -> bool:
        return self.get_product(organization_id, product_id) is not None

    @abstractmethod
    def is_active(self, product_id: int) -> bool:
        """Return True if the product exists and is active."""

    @abstractmethod
    def search(self, organization_id: str, search: Optional[str], limit: int) -> List[Product]:
        """Active products of the organization ordered by name."""


class MovementStore(ABC):
    """Append-only movement log."""

    @abstractmethod
    def add(self, movement: StockMovement) -> StockMovement:
        """Append a movement. Never updates existing rows."""

    @abstractmethod
    def list(self, organization_id: str, filters: MovementFilters,
             offset: int, limit: int) -> Tuple[List[LedgerRow], int]:
        """Return (rows, total) ordered by occurred_at desc."""

    @abstractmethod
    def signed_totals(self, organization_id: Optional[str] = None) -> Dict[Tuple[str, int], Decimal]:
        """Sum of +ENTRY/-EXIT quantities per (organization, product)."""


class SnapshotStore(ABC):
    """Materialized stock quantities."""

    @abstractmethod
    def get_for_update(self, organization_id: str, product_id: int) -> Optional[StockSnapshot]:
        """Return the snapshot holding a row lock until the unit of work ends."""

    @abstractmethod
    def create(self, organization_id: str, product_id: int, unit_of_measure: str,
               now: datetime) -> StockSnapshot:
        """
        Insert a zero-quantity snapshot.

        Raises ConcurrencyConflictError when another writer created it first.
        """

    @abstractmethod
    def save(self, snapshot: StockSnapshot) -> StockSnapshot:
        """Persist quantity/updated_at changes of a locked snapshot."""

    @abstractmethod
    def list(self, organization_id: str, filters: SnapshotFilters,
             offset: int, limit: int) -> Tuple[List[LedgerRow], int]:
        """Return (rows, total) ordered by updated_at desc."""

    @abstractmethod
    def by_products(self, organization_id: str, product_ids: List[int]) -> Dict[int, StockSnapshot]:
        """Snapshots of the given products keyed by product id (no lock)."""

    @abstractmethod
    def all_quantities(self, organization_id: Optional[str] = None) -> Dict[Tuple[str, int], Decimal]:
        """Snapshot quantities per (organization, product)."""


class UnitOfWork(ABC):
    """
    One atomic transaction spanning both stores.

    Usage::

        with uow_factory() as uow:
            ...
            uow.commit()

    Leaving the block without commit() rolls back. Persistence errors are
    translated to ConcurrencyConflictError / InternalError.
    """
    movements: MovementStore
    snapshots: SnapshotStore
    catalog: ProductCatalog
    committed = False

    def __enter__(self):
        self.begin()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        try:
            if exc_type is not None:
                self.rollback()
                translated = self.translate_error(exc_value)
                if translated is not exc_value:
                    raise translated from exc_value
            elif not self.committed:
                self.rollback()
        finally:
            self.close()
        return False

    def begin(self):
        """Start the transaction."""

    @abstractmethod
    def commit(self):
        """Commit staged changes."""

    @abstractmethod
    def rollback(self):
        """Discard staged changes and release locks."""

    def close(self):
        """Release resources."""

    def translate_error(self, exc: BaseException) -> BaseException:
        return exc
