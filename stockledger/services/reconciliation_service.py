"""
Ledger reconciliation.

Recomputes each product's quantity from its movements and compares it with
the stored snapshot. Any difference means the snapshot was written outside
the ledger.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from stockledger.repositories.base import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Discrepancy:
    organization_id: str
    product_id: int
    expected: Decimal
    actual: Optional[Decimal]

    def to_dict(self):
        return {
            'organizationId': self.organization_id,
            'productId': self.product_id,
            'expected': float(self.expected),
            'actual': float(self.actual) if self.actual is not None else None,
        }


def verify_ledger(uow_factory: Callable[[], UnitOfWork],
                  organization_id: Optional[str] = None) -> List[Discrepancy]:
    """
    Compare snapshots with the signed sum of movements.

    Args:
        uow_factory: Unit of work factory
        organization_id: Limit the check to one organization (all if None)

    Returns:
        Discrepancies ordered by (organization, product). A product with
        movements but no snapshot is reported with actual=None.
    """
    with uow_factory() as uow:
        totals = uow.movements.signed_totals(organization_id)
        quantities = uow.snapshots.all_quantities(organization_id)

    discrepancies = []
    for key in sorted(set(totals) | set(quantities)):
        expected = totals.get(key, Decimal('0'))
        actual = quantities.get(key)
        if actual is None and expected == 0:
            continue
        if actual is None or actual != expected:
            discrepancies.append(Discrepancy(key[0], key[1], expected, actual))

    if discrepancies:
        logger.warning(f"Ledger drift found for {len(discrepancies)} product(s)")
    else:
        logger.info(f"Ledger verified: {len(quantities)} snapshot(s) consistent")
    return discrepancies
