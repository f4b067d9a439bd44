"""Stock Snapshot model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from stockledger.database import Base
from stockledger.utils.formatters import to_number


class StockSnapshot(Base):
    """Materialized current quantity - one row per (organization, product)."""

    __tablename__ = 'stock_snapshot'
    __table_args__ = (
        UniqueConstraint('organization_id', 'product_id', name='uq_stock_snapshot_org_product'),
        CheckConstraint('current_quantity >= 0', name='ck_stock_snapshot_non_negative'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    organization_id = Column(String(64), nullable=False)
    product_id = Column(BigInteger, nullable=False)
    current_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    unit_of_measure = Column(String(8), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def to_dict(self, product_name=None):
        data = {
            'organizationId': self.organization_id,
            'productId': self.product_id,
            'currentQuantity': to_number(self.current_quantity),
            'unitOfMeasure': self.unit_of_measure,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
        if product_name is not None:
            data['productName'] = product_name
        return data

    def __repr__(self):
        return (
            f"<StockSnapshot(organization_id='{self.organization_id}', "
            f"product_id={self.product_id}, current_quantity={self.current_quantity})>"
        )
