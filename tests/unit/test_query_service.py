"""
Unit tests for the read-only stock queries.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from stockledger.exceptions import ValidationError
from stockledger.models import MovementType
from stockledger.repositories.base import MovementFilters, Page, SnapshotFilters
from stockledger.services.query_service import (
    StockQueryService, normalize_date_from, normalize_date_to
)

ORG_A = 'org-a'
ORG_B = 'org-b'
USER = 'user-1'

BASE_TIME = datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def stocked(ledger):
    """Flour 5 kg (low), Milk 0 L (out of stock), Tomatoes 50 kg in org B."""
    ledger.record_movement(ORG_A, 1, USER, 'ENTRY', 8, occurred_at=BASE_TIME)
    ledger.record_movement(ORG_A, 1, 'user-2', 'EXIT', 3, occurred_at=BASE_TIME + timedelta(days=1))
    ledger.record_movement(ORG_A, 2, USER, 'ENTRY', 3, occurred_at=BASE_TIME + timedelta(days=2))
    ledger.record_movement(ORG_A, 2, USER, 'EXIT', 3, occurred_at=BASE_TIME + timedelta(days=3))
    ledger.record_movement(ORG_B, 10, USER, 'ENTRY', 50, occurred_at=BASE_TIME)
    return ledger


class TestListMovements:

    def test_newest_first(self, query_service, stocked):
        page = query_service.list_movements(ORG_A)

        occurred = [row.record.occurred_at for row in page.items]
        assert occurred == sorted(occurred, reverse=True)
        assert page.total == 4
        assert page.items[0].product_name == 'Milk'

    def test_organization_scope(self, query_service, stocked):
        page = query_service.list_movements(ORG_B)
        assert page.total == 1
        assert page.items[0].record.product_id == 10

    def test_filter_by_type_and_product(self, query_service, stocked):
        page = query_service.list_movements(
            ORG_A, MovementFilters(product_id=1, type=MovementType.EXIT)
        )
        assert page.total == 1
        assert page.items[0].record.quantity == Decimal('3')

    def test_filter_by_user(self, query_service, stocked):
        page = query_service.list_movements(ORG_A, MovementFilters(user_id='user-2'))
        assert [row.record.user_id for row in page.items] == ['user-2']

    def test_product_name_is_case_insensitive(self, query_service, stocked):
        page = query_service.list_movements(ORG_A, MovementFilters(product_name='  mIlK '))
        assert page.total == 2
        assert {row.product_name for row in page.items} == {'Milk'}

    def test_date_range_covers_whole_days(self, query_service, stocked):
        day = (BASE_TIME + timedelta(days=1)).date()
        page = query_service.list_movements(
            ORG_A, MovementFilters(date_from=day, date_to=day)
        )
        assert page.total == 1
        assert page.items[0].record.type is MovementType.EXIT

    def test_inverted_date_range(self, query_service):
        with pytest.raises(ValidationError):
            query_service.list_movements(
                ORG_A, MovementFilters(date_from=date(2026, 3, 2), date_to=date(2026, 3, 1))
            )

    def test_pagination(self, query_service, ledger):
        for i in range(25):
            ledger.record_movement(ORG_A, 1, USER, 'ENTRY', 1,
                                   occurred_at=BASE_TIME + timedelta(minutes=i))

        page = query_service.list_movements(ORG_A, page=3, page_size=10)

        assert page.total == 25
        assert page.total_pages == 3
        assert len(page.items) == 5
        assert page.to_dict(lambda row: row.to_dict())['pageSize'] == 10

    def test_default_page_size(self, query_service, stocked):
        page = query_service.list_movements(ORG_A)
        assert page.page == 1
        assert page.page_size == 20

    @pytest.mark.parametrize('page, page_size', [(0, 10), (1, 0), (1, 101), ('x', 10)])
    def test_invalid_paging(self, query_service, page, page_size):
        with pytest.raises(ValidationError):
            query_service.list_movements(ORG_A, page=page, page_size=page_size)

    def test_organization_is_required(self, query_service):
        with pytest.raises(ValidationError):
            query_service.list_movements('')


class TestListSnapshots:

    def test_all_snapshots(self, query_service, stocked):
        page = query_service.list_snapshots(ORG_A)
        assert page.total == 2
        assert {row.product_name for row in page.items} == {'Flour', 'Milk'}

    def test_zero_stock(self, query_service, stocked):
        page = query_service.list_snapshots(ORG_A, SnapshotFilters(zero_stock=True))
        assert [row.product_name for row in page.items] == ['Milk']

    def test_low_stock(self, query_service, stocked):
        page = query_service.list_snapshots(ORG_A, SnapshotFilters(low_stock=True))
        assert [row.product_name for row in page.items] == ['Flour']

    def test_zero_stock_wins_over_low_stock(self, query_service, stocked):
        page = query_service.list_snapshots(
            ORG_A, SnapshotFilters(zero_stock=True, low_stock=True)
        )
        assert [row.product_name for row in page.items] == ['Milk']

    def test_custom_threshold(self, query_service, stocked):
        page = query_service.list_snapshots(
            ORG_A, SnapshotFilters(low_stock=True, threshold='4')
        )
        assert page.total == 0

    def test_invalid_threshold(self, query_service):
        with pytest.raises(ValidationError):
            query_service.list_snapshots(ORG_A, SnapshotFilters(low_stock=True, threshold='-1'))

    def test_product_name_filter(self, query_service, stocked):
        page = query_service.list_snapshots(ORG_A, SnapshotFilters(product_name='FLO'))
        assert page.total == 1
        assert page.items[0].to_dict()['currentQuantity'] == 5.0


class TestStatistics:

    def test_counts(self, memory_db, stocked):
        fixed = datetime(2026, 4, 1, tzinfo=timezone.utc)
        service = StockQueryService(memory_db.unit_of_work, clock=lambda: fixed)

        stats = service.get_statistics(ORG_A)

        assert stats == {
            'totalProducts': 2,
            'productsInStock': 1,
            'productsOutOfStock': 1,
            'productsLowStock': 1,
            'lowStockThreshold': 10.0,
            'lastUpdate': fixed.isoformat(),
        }

    def test_threshold_override(self, query_service, stocked):
        stats = query_service.get_statistics(ORG_A, threshold=5)
        assert stats['productsLowStock'] == 0

    def test_empty_organization(self, query_service):
        stats = query_service.get_statistics('org-empty')
        assert stats['totalProducts'] == 0
        assert stats['productsInStock'] == 0


class TestProductsWithStock:

    def test_lists_active_products_with_quantities(self, query_service, stocked):
        rows = query_service.list_products_with_stock(ORG_A)

        assert [row.to_dict() for row in rows] == [
            {'id': 1, 'name': 'Flour', 'category': 'Dry goods',
             'currentQuantity': 5.0, 'unitOfMeasure': 'kg'},
            {'id': 2, 'name': 'Milk', 'category': None,
             'currentQuantity': 0.0, 'unitOfMeasure': 'L'},
        ]

    def test_product_without_snapshot(self, query_service):
        rows = query_service.list_products_with_stock(ORG_A, search='flour')
        assert len(rows) == 1
        assert rows[0].current_quantity == Decimal('0')
        assert rows[0].unit_of_measure == 'kg'

    def test_limit(self, query_service):
        assert len(query_service.list_products_with_stock(ORG_A, limit=1)) == 1
        with pytest.raises(ValidationError):
            query_service.list_products_with_stock(ORG_A, limit=0)


class TestHelpers:

    def test_date_bounds(self):
        day = date(2026, 5, 17)
        assert normalize_date_from(day) == datetime(2026, 5, 17, tzinfo=timezone.utc)
        end = normalize_date_to(day)
        assert end.date() == day
        assert (end.hour, end.minute, end.second) == (23, 59, 59)
        assert normalize_date_from(None) is None

    def test_page_envelope(self):
        page = Page(items=[], total=0, page=1, page_size=20)
        assert page.total_pages == 0
        assert Page(items=[], total=41, page=1, page_size=20).total_pages == 3
