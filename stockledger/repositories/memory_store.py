"""
In-memory implementation of the ledger persistence contracts.

Behaves like the relational store for the ledger's purposes: one lock per
(organization, product) key emulates SELECT ... FOR UPDATE, writes are
staged per unit of work and applied atomically on commit, and the unique
(organization, product) snapshot constraint is enforced at create time.
"""
import threading
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from stockledger.exceptions import ConcurrencyConflictError, InternalError
from stockledger.models import Product, StockMovement, StockSnapshot
from stockledger.repositories.base import (
    LedgerRow, MovementStore, ProductCatalog, SnapshotStore, UnitOfWork
)

_SNAPSHOT_FIELDS = (
    'id', 'organization_id', 'product_id', 'current_quantity',
    'unit_of_measure', 'created_at', 'updated_at'
)


def _copy_snapshot(snapshot: StockSnapshot) -> StockSnapshot:
    return StockSnapshot(**{name: getattr(snapshot, name) for name in _SNAPSHOT_FIELDS})


def _name_matches(name: Optional[str], search: Optional[str]) -> bool:
    if not search:
        return True
    return name is not None and search.lower() in name.lower()


class InMemoryDatabase:
    """Committed state shared by every unit of work created from it."""

    def __init__(self, lock_timeout: float = 5.0):
        self.lock_timeout = lock_timeout
        self.products: Dict[int, Product] = {}
        self.movements: List[StockMovement] = []
        self.snapshots: Dict[Tuple[str, int], StockSnapshot] = {}
        self._mutex = threading.RLock()
        self._key_locks: Dict[Tuple[str, int], threading.Lock] = defaultdict(threading.Lock)
        self._next_snapshot_id = 1

    def add_product(self, product_id: int, organization_id: str, name: str,
                    unit_of_measure: str = 'un', active: bool = True,
                    category: Optional[str] = None) -> Product:
        product = Product(
            id=product_id,
            organization_id=organization_id,
            name=name,
            category=category,
            unit_of_measure=unit_of_measure,
            active=active
        )
        with self._mutex:
            self.products[product_id] = product
        return product

    def key_lock(self, key: Tuple[str, int]) -> threading.Lock:
        with self._mutex:
            return self._key_locks[key]

    def next_snapshot_id(self) -> int:
        with self._mutex:
            value = self._next_snapshot_id
            self._next_snapshot_id += 1
            return value

    def unit_of_work(self) -> 'InMemoryUnitOfWork':
        return InMemoryUnitOfWork(self)

    def product_names(self) -> Dict[Tuple[str, int], str]:
        with self._mutex:
            return {(p.organization_id, p.id): p.name for p in self.products.values()}


class InMemoryProductCatalog(ProductCatalog):

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get_product(self, organization_id, product_id):
        product = self.db.products.get(product_id)
        if product is None or product.organization_id != organization_id:
            return None
        return product

    def is_active(self, product_id):
        product = self.db.products.get(product_id)
        return bool(product and product.active)

    def search(self, organization_id, search, limit):
        products = [
            p for p in self.db.products.values()
            if p.organization_id == organization_id and p.active and _name_matches(p.name, search)
        ]
        products.sort(key=lambda p: p.name)
        return products[:limit]


class InMemoryMovementStore(MovementStore):

    def __init__(self, uow: 'InMemoryUnitOfWork'):
        self.uow = uow
        self.db = uow.db

    def add(self, movement):
        self.uow.staged_movements.append(movement)
        return movement

    def list(self, organization_id, filters, offset, limit):
        names = self.db.product_names()
        with self.db._mutex:
            movements = list(self.db.movements)

        def keep(m: StockMovement) -> bool:
            if m.organization_id != organization_id:
                return False
            if filters.product_id is not None and m.product_id != filters.product_id:
                return False
            if filters.user_id and m.user_id != filters.user_id:
                return False
            if filters.type is not None and m.type != filters.type:
                return False
            if filters.date_from is not None and m.occurred_at < filters.date_from:
                return False
            if filters.date_to is not None and m.occurred_at > filters.date_to:
                return False
            return _name_matches(names.get((m.organization_id, m.product_id)), filters.product_name)

        matched = [m for m in movements if keep(m)]
        matched.sort(key=lambda m: (m.occurred_at, m.created_at), reverse=True)
        rows = [
            LedgerRow(m, names.get((m.organization_id, m.product_id)))
            for m in matched[offset:offset + limit]
        ]
        return rows, len(matched)

    def signed_totals(self, organization_id=None):
        totals: Dict[Tuple[str, int], Decimal] = defaultdict(lambda: Decimal('0'))
        with self.db._mutex:
            movements = list(self.db.movements)
        for m in movements:
            if organization_id and m.organization_id != organization_id:
                continue
            totals[(m.organization_id, m.product_id)] += m.signed_quantity
        return dict(totals)


class InMemorySnapshotStore(SnapshotStore):

    def __init__(self, uow: 'InMemoryUnitOfWork'):
        self.uow = uow
        self.db = uow.db

    def get_for_update(self, organization_id, product_id):
        key = (organization_id, product_id)
        self.uow.acquire(key)
        if key in self.uow.staged_snapshots:
            return self.uow.staged_snapshots[key]
        with self.db._mutex:
            committed = self.db.snapshots.get(key)
        if committed is None:
            return None
        snapshot = _copy_snapshot(committed)
        self.uow.staged_snapshots[key] = snapshot
        return snapshot

    def create(self, organization_id, product_id, unit_of_measure, now):
        key = (organization_id, product_id)
        self.uow.acquire(key)
        with self.db._mutex:
            exists = key in self.db.snapshots
        if exists or key in self.uow.staged_snapshots:
            raise ConcurrencyConflictError()
        snapshot = StockSnapshot(
            id=self.db.next_snapshot_id(),
            organization_id=organization_id,
            product_id=product_id,
            current_quantity=Decimal('0'),
            unit_of_measure=unit_of_measure,
            created_at=now,
            updated_at=now
        )
        self.uow.staged_snapshots[key] = snapshot
        return snapshot

    def save(self, snapshot):
        self.uow.staged_snapshots[(snapshot.organization_id, snapshot.product_id)] = snapshot
        return snapshot

    def list(self, organization_id, filters, offset, limit):
        names = self.db.product_names()
        with self.db._mutex:
            snapshots = [_copy_snapshot(s) for s in self.db.snapshots.values()]

        def keep(s: StockSnapshot) -> bool:
            if s.organization_id != organization_id:
                return False
            if filters.product_id is not None and s.product_id != filters.product_id:
                return False
            if filters.zero_stock:
                if s.current_quantity != 0:
                    return False
            elif filters.low_stock:
                if not (0 < s.current_quantity < filters.threshold):
                    return False
            return _name_matches(names.get((s.organization_id, s.product_id)), filters.product_name)

        matched = [s for s in snapshots if keep(s)]
        matched.sort(key=lambda s: (s.updated_at, s.id), reverse=True)
        rows = [
            LedgerRow(s, names.get((s.organization_id, s.product_id)))
            for s in matched[offset:offset + limit]
        ]
        return rows, len(matched)

    def by_products(self, organization_id, product_ids):
        wanted = set(product_ids)
        with self.db._mutex:
            return {
                pid: _copy_snapshot(s)
                for (org, pid), s in self.db.snapshots.items()
                if org == organization_id and pid in wanted
            }

    def all_quantities(self, organization_id=None):
        with self.db._mutex:
            return {
                key: s.current_quantity
                for key, s in self.db.snapshots.items()
                if not organization_id or key[0] == organization_id
            }


class InMemoryUnitOfWork(UnitOfWork):
    """Stages writes and holds key locks until commit or rollback."""

    def __init__(self, db: InMemoryDatabase):
        self.db = db
        self.staged_movements: List[StockMovement] = []
        self.staged_snapshots: Dict[Tuple[str, int], StockSnapshot] = {}
        self.held_locks: Dict[Tuple[str, int], threading.Lock] = {}
        self.movements = InMemoryMovementStore(self)
        self.snapshots = InMemorySnapshotStore(self)
        self.catalog = InMemoryProductCatalog(db)

    def begin(self):
        self.committed = False

    def acquire(self, key):
        if key in self.held_locks:
            return
        lock = self.db.key_lock(key)
        if not lock.acquire(timeout=self.db.lock_timeout):
            raise ConcurrencyConflictError()
        self.held_locks[key] = lock

    def commit(self):
        with self.db._mutex:
            for snapshot in self.staged_snapshots.values():
                if snapshot.current_quantity < 0:
                    # Mirrors ck_stock_snapshot_non_negative
                    raise InternalError('stock_snapshot.current_quantity must be >= 0')
            self.db.movements.extend(self.staged_movements)
            for key, snapshot in self.staged_snapshots.items():
                self.db.snapshots[key] = _copy_snapshot(snapshot)
        self.committed = True
        self._reset()

    def rollback(self):
        self._reset()

    def _reset(self):
        self.staged_movements = []
        self.staged_snapshots = {}
        for lock in self.held_locks.values():
            lock.release()
        self.held_locks = {}
