"""Stock Movement model."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, Enum, Index, CheckConstraint
from sqlalchemy.sql import func
from stockledger.database import Base
from stockledger.utils.formatters import to_number
import enum


class MovementType(enum.Enum):
    """Movement direction. Quantity is always positive; direction lives here."""
    ENTRY = "ENTRY"
    EXIT = "EXIT"

    @property
    def sign(self):
        return 1 if self is MovementType.ENTRY else -1


class StockMovement(Base):
    """Stock Movement - append-only, never updated or deleted."""

    __tablename__ = 'stock_movement'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_stock_movement_quantity_positive'),
        Index('ix_stock_movement_org_product', 'organization_id', 'product_id'),
        Index('ix_stock_movement_org_occurred', 'organization_id', 'occurred_at'),
    )

    id = Column(String(32), primary_key=True)
    organization_id = Column(String(64), nullable=False)
    product_id = Column(BigInteger, nullable=False)
    user_id = Column(String(64), nullable=False)
    type = Column(Enum(MovementType, name='stock_movement_type'), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_of_measure = Column(String(8), nullable=False)
    observation = Column(Text, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def signed_quantity(self):
        return self.quantity * self.type.sign

    def to_dict(self, product_name=None):
        data = {
            'id': self.id,
            'organizationId': self.organization_id,
            'productId': self.product_id,
            'userId': self.user_id,
            'type': self.type.value,
            'quantity': to_number(self.quantity),
            'unitOfMeasure': self.unit_of_measure,
            'observation': self.observation,
            'occurredAt': self.occurred_at.isoformat() if self.occurred_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
        if product_name is not None:
            data['productName'] = product_name
        return data

    def __repr__(self):
        return f"<StockMovement(id={self.id}, type={self.type.value}, quantity={self.quantity})>"
