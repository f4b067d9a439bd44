"""
Quick entry / quick exit: the single-item stock forms.

Thin wrappers over MovementLedger.record_movement with the movement type
fixed and a readable default observation.
"""
from dataclasses import dataclass

from stockledger.models import MovementType
from stockledger.services.ledger_service import MovementLedger, MovementResult

ENTRY_SUCCESS = "Entry registered successfully"
EXIT_SUCCESS = "Exit registered successfully"

_DEFAULT_OBSERVATION = {
    MovementType.ENTRY: "Quick entry",
    MovementType.EXIT: "Quick exit",
}


@dataclass
class QuickActionResult:
    """Movement result plus the message shown to the user."""
    result: MovementResult
    message: str

    @property
    def movement(self):
        return self.result.movement

    @property
    def snapshot(self):
        return self.result.snapshot

    def to_dict(self):
        return self.result.to_dict()


class QuickActionService:
    """Intention-revealing surface for the quick stock forms."""

    def __init__(self, ledger: MovementLedger):
        self.ledger = ledger

    def quick_entry(self, organization_id, product_id, user_id, quantity,
                    unit_of_measure=None, observation=None) -> QuickActionResult:
        result = self._record(MovementType.ENTRY, organization_id, product_id, user_id,
                              quantity, unit_of_measure, observation)
        return QuickActionResult(result=result, message=ENTRY_SUCCESS)

    def quick_exit(self, organization_id, product_id, user_id, quantity,
                   unit_of_measure=None, observation=None) -> QuickActionResult:
        result = self._record(MovementType.EXIT, organization_id, product_id, user_id,
                              quantity, unit_of_measure, observation)
        return QuickActionResult(result=result, message=EXIT_SUCCESS)

    def _record(self, movement_type, organization_id, product_id, user_id,
                quantity, unit_of_measure, observation) -> MovementResult:
        # The ledger appends the product name inside its own transaction
        return self.ledger.record_movement(
            organization_id=organization_id,
            product_id=product_id,
            user_id=user_id,
            movement_type=movement_type,
            quantity=quantity,
            unit_of_measure=unit_of_measure,
            observation=observation,
            default_observation=_DEFAULT_OBSERVATION[movement_type]
        )
