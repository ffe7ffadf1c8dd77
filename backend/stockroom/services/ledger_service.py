# Overview: Append-only stock movement ledger.

from __future__ import annotations

from typing import Optional

from ..models import StockMovement
from ..time_utils import utcnow
"""
Stock Ledger Invariants (authoritative)

- Append-only audit trail of inventory changes. No updates; rows are only
  removed together with their product (which has no sales history).
- Movements are written inside the same DB transaction as the quantity change
  they record; the ledger never commits on its own.
- quantity is always > 0; direction is carried by type (IN / OUT).
- The ledger never computes stock. Product.quantity is the source of truth,
  the ledger exists for reconciliation and history.
"""

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"

REASON_SALE = "Sale"
REASON_REFUND = "Refund"
REASON_MANUAL_ADJUSTMENT = "Manual adjustment"
REASON_INITIAL_STOCK = "Initial stock"

REFERENCE_INITIAL = "INITIAL"
REFERENCE_ADJUSTMENT = "ADJUSTMENT"


class InvalidMovement(ValueError):
    """Raised when a movement would violate ledger invariants."""


class StockLedger:
    """Writes and reads StockMovement rows through the injected session."""

    def __init__(self, session):
        self.session = session

    def _append(
        self,
        movement_type: str,
        product_id: int,
        quantity: int,
        reason: str,
        reference: Optional[str],
        *,
        sale_id: int | None = None,
        actor_user_id: int | None = None,
    ) -> StockMovement:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidMovement("Movement quantity must be a positive integer")
        if not reason:
            raise InvalidMovement("Movement reason is required")

        movement = StockMovement(
            product_id=product_id,
            type=movement_type,
            quantity=quantity,
            reason=reason,
            reference=reference,
            sale_id=sale_id,
            actor_user_id=actor_user_id,
            created_at=utcnow(),
        )
        self.session.add(movement)
        self.session.flush()  # ensures movement.id is assigned without committing
        return movement

    def record_in(self, product_id: int, quantity: int, reason: str, reference: Optional[str] = None, **kwargs) -> StockMovement:
        return self._append(MOVEMENT_IN, product_id, quantity, reason, reference, **kwargs)

    def record_out(self, product_id: int, quantity: int, reason: str, reference: Optional[str] = None, **kwargs) -> StockMovement:
        return self._append(MOVEMENT_OUT, product_id, quantity, reason, reference, **kwargs)

    def record_adjustment(self, product_id: int, delta: int, *, actor_user_id: int | None = None) -> StockMovement | None:
        """Record a manual quantity edit: IN for a positive delta, OUT for a negative one."""
        if delta == 0:
            return None
        record = self.record_in if delta > 0 else self.record_out
        return record(
            product_id,
            abs(delta),
            REASON_MANUAL_ADJUSTMENT,
            REFERENCE_ADJUSTMENT,
            actor_user_id=actor_user_id,
        )

    def movements_for_reference(self, reference: str, movement_type: str | None = None) -> list[StockMovement]:
        query = self.session.query(StockMovement).filter(StockMovement.reference == reference)
        if movement_type is not None:
            query = query.filter(StockMovement.type == movement_type)
        return query.order_by(StockMovement.id.asc()).all()

    def history(self, product_id: int, *, page: int = 1, limit: int = 20) -> dict:
        """Movements for a product, newest first, paginated."""
        limit = max(1, min(limit, 100))
        page = max(page, 1)

        base_query = (
            self.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        )
        total = base_query.count()
        movements = base_query.offset((page - 1) * limit).limit(limit).all()

        return {
            "movements": [m.to_dict() for m in movements],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }
