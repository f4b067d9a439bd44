"""
Read-only stock queries, always scoped to one organization.
"""
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Callable, Optional

from stockledger.exceptions import ValidationError
from stockledger.repositories.base import (
    MovementFilters, Page, ProductStockRow, SnapshotFilters, UnitOfWork
)
from stockledger.services.ledger_service import DEFAULT_UNIT_OF_MEASURE, utcnow
from stockledger.utils.formatters import parse_quantity

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_LOW_STOCK_THRESHOLD = Decimal('10')
PRODUCT_PICKER_LIMIT = 50


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_date_from(value) -> Optional[datetime]:
    """Inclusive lower bound: a date means the start of that day (UTC)."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    return _as_utc(value)


def normalize_date_to(value) -> Optional[datetime]:
    """Inclusive upper bound: a date means the whole day (UTC)."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max)
    return _as_utc(value)


class StockQueryService:
    """Paginated reads over movements and snapshots."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork],
                 low_stock_threshold=DEFAULT_LOW_STOCK_THRESHOLD,
                 default_page_size: int = DEFAULT_PAGE_SIZE,
                 max_page_size: int = MAX_PAGE_SIZE,
                 clock: Callable[[], datetime] = utcnow):
        self.uow_factory = uow_factory
        self.low_stock_threshold = Decimal(str(low_stock_threshold))
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.clock = clock

    def list_movements(self, organization_id: str, filters: Optional[MovementFilters] = None,
                       page: int = 1, page_size: Optional[int] = None) -> Page:
        """Movements ordered by occurred_at, newest first."""
        organization_id = self._require_organization(organization_id)
        page, page_size = self._paging(page, page_size)
        filters = filters or MovementFilters()
        filters = MovementFilters(
            product_id=filters.product_id,
            user_id=filters.user_id,
            type=filters.type,
            date_from=normalize_date_from(filters.date_from),
            date_to=normalize_date_to(filters.date_to),
            product_name=(filters.product_name or '').strip() or None,
        )
        if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
            raise ValidationError("dateFrom must be before dateTo")

        with self.uow_factory() as uow:
            rows, total = uow.movements.list(
                organization_id, filters, (page - 1) * page_size, page_size
            )
        return Page(items=rows, total=total, page=page, page_size=page_size)

    def list_snapshots(self, organization_id: str, filters: Optional[SnapshotFilters] = None,
                       page: int = 1, page_size: Optional[int] = None) -> Page:
        """Snapshots ordered by updated_at, most recent first."""
        organization_id = self._require_organization(organization_id)
        page, page_size = self._paging(page, page_size)
        filters = filters or SnapshotFilters()
        filters = SnapshotFilters(
            product_id=filters.product_id,
            product_name=(filters.product_name or '').strip() or None,
            zero_stock=filters.zero_stock,
            low_stock=filters.low_stock,
            threshold=self._threshold(filters.threshold),
        )

        with self.uow_factory() as uow:
            rows, total = uow.snapshots.list(
                organization_id, filters, (page - 1) * page_size, page_size
            )
        return Page(items=rows, total=total, page=page, page_size=page_size)

    def get_statistics(self, organization_id: str, threshold=None) -> dict:
        """Counts of products in stock, out of stock and below the low-stock threshold."""
        organization_id = self._require_organization(organization_id)
        threshold = self._threshold(threshold)

        with self.uow_factory() as uow:
            quantities = list(uow.snapshots.all_quantities(organization_id).values())

        return {
            'totalProducts': len(quantities),
            'productsInStock': sum(1 for q in quantities if q > 0),
            'productsOutOfStock': sum(1 for q in quantities if q == 0),
            'productsLowStock': sum(1 for q in quantities if 0 < q < threshold),
            'lowStockThreshold': float(threshold),
            'lastUpdate': self.clock().isoformat(),
        }

    def list_products_with_stock(self, organization_id: str, search: Optional[str] = None,
                                 limit: int = PRODUCT_PICKER_LIMIT):
        """Active products with their current quantity (product picker)."""
        organization_id = self._require_organization(organization_id)
        if limit < 1 or limit > self.max_page_size:
            raise ValidationError(f"limit must be between 1 and {self.max_page_size}")
        search = (search or '').strip() or None

        with self.uow_factory() as uow:
            products = uow.catalog.search(organization_id, search, limit)
            snapshots = uow.snapshots.by_products(organization_id, [p.id for p in products])

        rows = []
        for product in products:
            snapshot = snapshots.get(product.id)
            rows.append(ProductStockRow(
                product=product,
                current_quantity=snapshot.current_quantity if snapshot else Decimal('0'),
                unit_of_measure=(
                    (snapshot.unit_of_measure if snapshot else None)
                    or product.unit_of_measure
                    or DEFAULT_UNIT_OF_MEASURE
                ),
            ))
        return rows

    def _threshold(self, value) -> Decimal:
        if value is None:
            return self.low_stock_threshold
        threshold = parse_quantity(value)
        if threshold is None or threshold <= 0:
            raise ValidationError("threshold must be a positive number")
        return threshold

    def _paging(self, page, page_size):
        if page_size is None:
            page_size = self.default_page_size
        try:
            page = int(page)
            page_size = int(page_size)
        except (TypeError, ValueError):
            raise ValidationError("page and pageSize must be integers")
        if page < 1:
            raise ValidationError("page must be >= 1")
        if page_size < 1 or page_size > self.max_page_size:
            raise ValidationError(f"pageSize must be between 1 and {self.max_page_size}")
        return page, page_size

    @staticmethod
    def _require_organization(organization_id) -> str:
        if organization_id is None or not str(organization_id).strip():
            raise ValidationError("organizationId is required")
        return str(organization_id).strip()
