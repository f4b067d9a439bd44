"""Repositories package - persistence contracts and their implementations."""
from stockledger.repositories.base import (
    LedgerRow, MovementFilters, MovementStore, Page, ProductCatalog,
    ProductStockRow, SnapshotFilters, SnapshotStore, UnitOfWork
)
from stockledger.repositories.memory_store import InMemoryDatabase, InMemoryUnitOfWork
from stockledger.repositories.sqlalchemy_store import SqlAlchemyUnitOfWork, sqlalchemy_uow_factory

__all__ = [
    'LedgerRow', 'MovementFilters', 'MovementStore', 'Page', 'ProductCatalog',
    'ProductStockRow', 'SnapshotFilters', 'SnapshotStore', 'UnitOfWork',
    'InMemoryDatabase', 'InMemoryUnitOfWork',
    'SqlAlchemyUnitOfWork', 'sqlalchemy_uow_factory',
]
