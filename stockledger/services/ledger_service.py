"""
Movement ledger - the only writer of stock movements and snapshots.

Every movement is applied inside one unit of work:
    1. Lock the (organization, product) snapshot row (absent = quantity 0)
    2. Reject exits larger than the available quantity
    3. Append the movement and write the new snapshot quantity
    4. Commit both or neither

The snapshot quantity therefore always equals the signed sum of the
product's movements and never goes below zero.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Union

from stockledger.exceptions import (
    ConcurrencyConflictError, InsufficientStockError, InvalidMovementTypeError,
    InvalidQuantityError, InvalidUnitOfMeasureError, ProductNotFoundError,
    StockLedgerError, ValidationError
)
from stockledger.models import MovementType, StockMovement, StockSnapshot
from stockledger.repositories.base import UnitOfWork
from stockledger.services import metrics_service
from stockledger.utils.formatters import QUANTITY_MAX, QUANTITY_STEP, format_quantity, parse_quantity

logger = logging.getLogger(__name__)

UNITS_OF_MEASURE = ('kg', 'g', 'L', 'mL', 'un', 'cx', 'pct')
DEFAULT_UNIT_OF_MEASURE = 'un'

# Legacy movement type names still sent by older forms
_MOVEMENT_TYPE_ALIASES = {
    'ENTRY': MovementType.ENTRY,
    'ENTRADA': MovementType.ENTRY,
    'EXIT': MovementType.EXIT,
    'SAIDA': MovementType.EXIT,
}


@dataclass
class MovementResult:
    """Outcome of a committed movement."""
    movement: StockMovement
    snapshot: StockSnapshot
    product_name: Optional[str] = None

    def to_dict(self):
        return {
            'movement': self.movement.to_dict(product_name=self.product_name),
            'snapshot': self.snapshot.to_dict(product_name=self.product_name),
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if not isinstance(value, datetime):
        raise ValidationError("occurredAt must be a datetime")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_movement_type(value: Union[MovementType, str, None]) -> MovementType:
    """Resolve a MovementType from an enum member or its (case-insensitive) name."""
    if isinstance(value, MovementType):
        return value
    if isinstance(value, str):
        resolved = _MOVEMENT_TYPE_ALIASES.get(value.strip().upper())
        if resolved is not None:
            return resolved
    raise InvalidMovementTypeError(value)


def validate_quantity(value) -> Decimal:
    """Return the quantity as a Decimal or raise InvalidQuantityError."""
    quantity = parse_quantity(value)
    if quantity is None:
        raise InvalidQuantityError("Quantity must be a finite number")
    if quantity <= 0:
        raise InvalidQuantityError("Quantity must be greater than zero")
    if quantity > QUANTITY_MAX:
        raise InvalidQuantityError(f"Quantity must not exceed {format_quantity(QUANTITY_MAX)}")
    if quantity != quantity.quantize(QUANTITY_STEP):
        raise InvalidQuantityError("Quantity supports at most 3 decimal places")
    return quantity.quantize(QUANTITY_STEP)


def validate_unit_of_measure(value: Optional[str]) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if value not in UNITS_OF_MEASURE:
        raise InvalidUnitOfMeasureError(
            f"Invalid unit of measure: {value!r}",
            payload={'allowed': list(UNITS_OF_MEASURE)}
        )
    return value


def _require_identifier(value, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


def _require_product_id(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("productId must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("productId must be an integer")


class MovementLedger:
    """Records stock movements against the snapshot under a row lock."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork], max_retries: int = 3,
                 retry_backoff: float = 0.05, clock: Callable[[], datetime] = utcnow):
        self.uow_factory = uow_factory
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.clock = clock

    def record_movement(self, organization_id, product_id, user_id, movement_type, quantity,
                        unit_of_measure=None, observation=None, occurred_at=None,
                        default_observation=None) -> MovementResult:
        """
        Record one movement and return it with the resulting snapshot.

        When observation is empty and default_observation is given, the
        movement is annotated "<default_observation> - <product name>" using
        the product read inside the same transaction.

        Raises:
            ValidationError, InvalidQuantityError, InvalidMovementTypeError,
            InvalidUnitOfMeasureError: bad input, nothing persisted
            ProductNotFoundError: product missing, inactive or in another organization
            InsufficientStockError: exit larger than the available quantity
            ConcurrencyConflictError: contention persisted after all retries
            InternalError: unexpected persistence failure
        """
        organization_id = _require_identifier(organization_id, 'organizationId')
        user_id = _require_identifier(user_id, 'userId')
        product_id = _require_product_id(product_id)
        quantity = validate_quantity(quantity)
        movement_type = parse_movement_type(movement_type)
        unit_of_measure = validate_unit_of_measure(unit_of_measure)
        if observation is not None:
            observation = str(observation).strip() or None
        if occurred_at is not None:
            occurred_at = _as_utc(occurred_at)

        attempt = 0
        while True:
            try:
                result = self._apply(
                    organization_id, product_id, user_id, movement_type,
                    quantity, unit_of_measure, observation, occurred_at, default_observation
                )
            except ConcurrencyConflictError:
                if attempt >= self.max_retries:
                    logger.warning(
                        f"Giving up on {movement_type.value} for org={organization_id} "
                        f"product={product_id} after {attempt + 1} attempts"
                    )
                    metrics_service.record_movement_outcome(movement_type, 'conflict')
                    raise
                attempt += 1
                logger.warning(
                    f"Conflict recording {movement_type.value} for org={organization_id} "
                    f"product={product_id}, retry {attempt}/{self.max_retries}"
                )
                if self.retry_backoff:
                    time.sleep(self.retry_backoff * attempt)
                continue
            except StockLedgerError as e:
                outcome = 'error' if e.status_code >= 500 else 'rejected'
                metrics_service.record_movement_outcome(movement_type, outcome)
                if outcome == 'rejected':
                    logger.warning(
                        f"Rejected {movement_type.value} {quantity} for org={organization_id} "
                        f"product={product_id}: {e.message}"
                    )
                raise

            metrics_service.record_movement_outcome(movement_type, 'committed')
            logger.info(
                f"Stock {movement_type.value} {quantity} {result.movement.unit_of_measure} "
                f"org={organization_id} product={product_id} user={user_id} "
                f"-> {result.snapshot.current_quantity}"
            )
            return result

    def _apply(self, organization_id, product_id, user_id, movement_type, quantity,
               unit_of_measure, observation, occurred_at,
               default_observation=None) -> MovementResult:
        with self.uow_factory() as uow:
            product = uow.catalog.get_product(organization_id, product_id)
            if product is None or not uow.catalog.is_active(product_id):
                raise ProductNotFoundError(product_id)

            snapshot = uow.snapshots.get_for_update(organization_id, product_id)
            available = snapshot.current_quantity if snapshot is not None else Decimal('0')

            if movement_type is MovementType.EXIT and quantity > available:
                raise InsufficientStockError(available=available, requested=quantity)

            if snapshot is not None and unit_of_measure and unit_of_measure != snapshot.unit_of_measure:
                raise InvalidUnitOfMeasureError(
                    f"Stock for this product is kept in {snapshot.unit_of_measure}, "
                    f"got {unit_of_measure}",
                    payload={'expected': snapshot.unit_of_measure}
                )

            now = self.clock()
            unit = (
                unit_of_measure
                or (snapshot.unit_of_measure if snapshot is not None else None)
                or product.unit_of_measure
                or DEFAULT_UNIT_OF_MEASURE
            )

            if snapshot is None:
                snapshot = uow.snapshots.create(organization_id, product_id, unit, now)

            if observation is None and default_observation:
                observation = (
                    f"{default_observation} - {product.name}" if product.name else default_observation
                )

            movement = StockMovement(
                id=uuid.uuid4().hex,
                organization_id=organization_id,
                product_id=product_id,
                user_id=user_id,
                type=movement_type,
                quantity=quantity,
                unit_of_measure=unit,
                observation=observation,
                occurred_at=occurred_at or now,
                created_at=now
            )
            uow.movements.add(movement)

            snapshot.current_quantity = available + quantity * movement_type.sign
            snapshot.updated_at = now
            uow.snapshots.save(snapshot)

            uow.commit()

        return MovementResult(movement=movement, snapshot=snapshot, product_name=product.name)
