"""SQLAlchemy implementation of the ledger persistence contracts."""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case, func, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from stockledger.exceptions import ConcurrencyConflictError, InternalError, StockLedgerError
from stockledger.models import MovementType, Product, StockMovement, StockSnapshot
from stockledger.repositories.base import (
    LedgerRow, MovementFilters, MovementStore, ProductCatalog,
    SnapshotFilters, SnapshotStore, UnitOfWork
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATEs that mean "retry the whole transaction":
# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {'40001', '40P01', '55P03'}


def _product_join(model):
    """Join condition between a ledger table and product, tenant-scoped."""
    return and_(
        Product.id == model.product_id,
        Product.organization_id == model.organization_id
    )


class SqlAlchemyProductCatalog(ProductCatalog):

    def __init__(self, session):
        self.session = session

    def get_product(self, organization_id, product_id):
        return self.session.query(Product).filter(
            Product.id == product_id,
            Product.organization_id == organization_id  # CRITICAL: tenant filter
        ).first()

    def is_active(self, product_id):
        active = self.session.query(Product.active).filter(Product.id == product_id).scalar()
        return bool(active)

    def search(self, organization_id, search, limit):
        query = self.session.query(Product).filter(
            Product.organization_id == organization_id,
            Product.active.is_(True)
        )
        if search:
            # Literal substring: % and _ typed by the user are not wildcards
            query = query.filter(Product.name.icontains(search, autoescape=True))
        return query.order_by(Product.name.asc()).limit(limit).all()


class SqlAlchemyMovementStore(MovementStore):

    def __init__(self, session):
        self.session = session

    def add(self, movement):
        self.session.add(movement)
        self.session.flush()
        return movement

    def list(self, organization_id, filters: MovementFilters, offset, limit):
        query = self.session.query(StockMovement, Product.name).outerjoin(
            Product, _product_join(StockMovement)
        ).filter(StockMovement.organization_id == organization_id)

        if filters.product_id is not None:
            query = query.filter(StockMovement.product_id == filters.product_id)
        if filters.user_id:
            query = query.filter(StockMovement.user_id == filters.user_id)
        if filters.type is not None:
            query = query.filter(StockMovement.type == filters.type)
        if filters.date_from is not None:
            query = query.filter(StockMovement.occurred_at >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(StockMovement.occurred_at <= filters.date_to)
        if filters.product_name:
            query = query.filter(Product.name.icontains(filters.product_name, autoescape=True))

        total = query.count()
        rows = query.order_by(
            StockMovement.occurred_at.desc(),
            StockMovement.created_at.desc()
        ).offset(offset).limit(limit).all()

        return [LedgerRow(movement, name) for movement, name in rows], total

    def signed_totals(self, organization_id=None):
        signed = case(
            (StockMovement.type == MovementType.ENTRY, StockMovement.quantity),
            else_=-StockMovement.quantity
        )
        query = self.session.query(
            StockMovement.organization_id,
            StockMovement.product_id,
            func.coalesce(func.sum(signed), 0)
        )
        if organization_id:
            query = query.filter(StockMovement.organization_id == organization_id)
        query = query.group_by(StockMovement.organization_id, StockMovement.product_id)

        return {(org, pid): Decimal(str(total)) for org, pid, total in query.all()}


class SqlAlchemySnapshotStore(SnapshotStore):

    def __init__(self, session):
        self.session = session

    def get_for_update(self, organization_id, product_id):
        # SELECT ... FOR UPDATE serializes concurrent writers on the same product
        return self.session.query(StockSnapshot).filter(
            StockSnapshot.organization_id == organization_id,
            StockSnapshot.product_id == product_id
        ).with_for_update().populate_existing().first()

    def create(self, organization_id, product_id, unit_of_measure, now):
        snapshot = StockSnapshot(
            organization_id=organization_id,
            product_id=product_id,
            current_quantity=Decimal('0'),
            unit_of_measure=unit_of_measure,
            created_at=now,
            updated_at=now
        )
        self.session.add(snapshot)
        try:
            self.session.flush()
        except IntegrityError as e:
            # Another writer created the snapshot first (unique org/product)
            logger.warning(
                f"Snapshot race for org={organization_id} product={product_id}: {e.orig}"
            )
            raise ConcurrencyConflictError() from e
        return snapshot

    def save(self, snapshot):
        self.session.flush()
        return snapshot

    def list(self, organization_id, filters: SnapshotFilters, offset, limit):
        query = self.session.query(StockSnapshot, Product.name).outerjoin(
            Product, _product_join(StockSnapshot)
        ).filter(StockSnapshot.organization_id == organization_id)

        if filters.product_id is not None:
            query = query.filter(StockSnapshot.product_id == filters.product_id)

        if filters.zero_stock:
            query = query.filter(StockSnapshot.current_quantity == 0)
        elif filters.low_stock:
            query = query.filter(
                StockSnapshot.current_quantity > 0,
                StockSnapshot.current_quantity < filters.threshold
            )

        if filters.product_name:
            query = query.filter(Product.name.icontains(filters.product_name, autoescape=True))

        total = query.count()
        rows = query.order_by(
            StockSnapshot.updated_at.desc(),
            StockSnapshot.id.desc()
        ).offset(offset).limit(limit).all()

        return [LedgerRow(snapshot, name) for snapshot, name in rows], total

    def by_products(self, organization_id, product_ids):
        if not product_ids:
            return {}
        snapshots = self.session.query(StockSnapshot).filter(
            StockSnapshot.organization_id == organization_id,
            StockSnapshot.product_id.in_(product_ids)
        ).all()
        return {s.product_id: s for s in snapshots}

    def all_quantities(self, organization_id=None):
        query = self.session.query(
            StockSnapshot.organization_id,
            StockSnapshot.product_id,
            StockSnapshot.current_quantity
        )
        if organization_id:
            query = query.filter(StockSnapshot.organization_id == organization_id)

        return {(org, pid): Decimal(str(qty)) for org, pid, qty in query.all()}


class SqlAlchemyUnitOfWork(UnitOfWork):
    """Unit of work bound to one SQLAlchemy session / transaction."""

    def __init__(self, session_factory, lock_timeout_ms: Optional[int] = None):
        self.session_factory = session_factory
        self.lock_timeout_ms = lock_timeout_ms
        self.session = None

    def begin(self):
        self.session = self.session_factory()
        self.committed = False
        self.movements = SqlAlchemyMovementStore(self.session)
        self.snapshots = SqlAlchemySnapshotStore(self.session)
        self.catalog = SqlAlchemyProductCatalog(self.session)

        if self.lock_timeout_ms and self.session.get_bind().dialect.name == 'postgresql':
            # SET does not accept bind parameters
            self.session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))

    def commit(self):
        self.session.commit()
        self.committed = True

    def rollback(self):
        self.session.rollback()

    def close(self):
        self.session.close()

    def translate_error(self, exc):
        if isinstance(exc, StockLedgerError) or not isinstance(exc, SQLAlchemyError):
            return exc

        if is_conflict_error(exc):
            logger.warning(f"Transaction conflict: {exc}")
            return ConcurrencyConflictError()

        logger.exception(f"Unexpected persistence error: {exc}")
        return InternalError()


def is_conflict_error(exc: SQLAlchemyError) -> bool:
    """True for lock timeouts, deadlocks, serialization failures and SQLite busy locks."""
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, 'pgcode', None) or getattr(exc.orig, 'sqlstate', None)
        if sqlstate in CONFLICT_SQLSTATES:
            return True
    if isinstance(exc, OperationalError) and 'database is locked' in str(exc.orig):
        return True
    return False


def sqlalchemy_uow_factory(session_factory, lock_timeout_ms=None):
    """Return a zero-argument callable creating SqlAlchemyUnitOfWork instances."""
    def factory():
        return SqlAlchemyUnitOfWork(session_factory, lock_timeout_ms=lock_timeout_ms)
    return factory

