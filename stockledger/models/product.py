"""Product model (read side of the product catalog)."""
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, DateTime, Index
from sqlalchemy.sql import func
from stockledger.database import Base


class Product(Base):
    """Catalog product. Owned by the catalog; the ledger only reads it."""

    __tablename__ = 'product'
    __table_args__ = (
        Index('ix_product_organization_name', 'organization_id', 'name'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    organization_id = Column(String(64), nullable=False)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    unit_of_measure = Column(String(8), nullable=False, default='un', server_default='un')
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', organization_id='{self.organization_id}')>"
