"""
Sale Engine - basket validation, sale creation, status changes, statistics

A sale is created COMPLETED in one atomic unit together with its items, the
stock decrements and one OUT movement per item. A refund of a COMPLETED sale
puts the stock back with one IN movement per item, also atomically.

CANCELLED leaves stock untouched; only REFUNDED reverses it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload, selectinload

from ..models import Sale, SaleItem, SALE_STATUSES
from ..money import cents_to_amount
from ..time_utils import utcnow
from .concurrency import RetryableConflict, atomic_unit, is_unique_violation, lock_for_update
from .document_service import next_sale_number
from .ledger_service import REASON_REFUND, REASON_SALE
from .products_service import InsufficientStock, ProductInactive

logger = logging.getLogger(__name__)

STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
STATUS_REFUNDED = "REFUNDED"

SALE_SORT_FIELDS = {
    "createdAt": Sale.created_at,
    "finalAmount": Sale.final_amount_cents,
    "saleNumber": Sale.sale_number,
    "status": Sale.status,
}


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFound(SaleError):
    def __init__(self, sale_id):
        super().__init__("Sale not found", {"saleId": sale_id})


class InvalidStatus(SaleError):
    def __init__(self, status):
        super().__init__("Invalid status", {"status": status, "allowed": list(SALE_STATUSES)})


class SaleEngine:
    """
    Sale operations over an injected session.

    catalog supplies product reads and quantity changes, ledger records the
    movements. Neither commits; this class owns the transaction boundary.
    """

    def __init__(self, session, catalog, ledger, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.catalog = catalog
        self.ledger = ledger
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _atomic(self, func):
        return atomic_unit(self.session, func, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _validate_basket(self, lines) -> None:
        """
        Check every line against the (locked) product rows.

        Lines repeating a product are checked against their combined quantity,
        otherwise two lines could each pass while together exceeding stock.
        """
        requested: dict[int, int] = {}
        for line in lines:
            product = self.catalog.get(line.product_id, lock=True)
            if not product.is_active:
                raise ProductInactive(product)

            requested[product.id] = requested.get(product.id, 0) + line.quantity
            if product.quantity < requested[product.id]:
                raise InsufficientStock(
                    product.name,
                    product.quantity,
                    requested[product.id],
                    product_id=product.id,
                )

    def create_sale(self, basket: dict, actor_user_id: int, *, now: datetime | None = None) -> Sale:
        """
        Create a COMPLETED sale from a validated basket.

        basket is the output of validation.validate_sale_payload: "lines" plus
        discount_cents, tax_cents and the optional customer/payment columns.
        """
        lines = basket.get("lines") or []
        if not lines:
            raise SaleError("Sale must contain at least one item")

        discount_cents = basket.get("discount_cents", 0)
        tax_cents = basket.get("tax_cents", 0)
        if discount_cents < 0 or tax_cents < 0:
            raise SaleError("Discount and tax must be >= 0")

        total_cents = sum(line.quantity * line.price_cents for line in lines)
        if discount_cents > total_cents:
            raise SaleError(
                "Discount cannot exceed total amount",
                {"discount": cents_to_amount(discount_cents), "totalAmount": cents_to_amount(total_cents)},
            )
        final_cents = total_cents - discount_cents + tax_cents

        def _op():
            created_at = now or utcnow()

            self._validate_basket(lines)

            sale_number = next_sale_number(self.session, created_at.date())
            sale = Sale(
                sale_number=sale_number,
                status=STATUS_COMPLETED,
                total_amount_cents=total_cents,
                discount_cents=discount_cents,
                tax_cents=tax_cents,
                final_amount_cents=final_cents,
                customer_name=basket.get("customer_name"),
                customer_email=basket.get("customer_email"),
                customer_phone=basket.get("customer_phone"),
                payment_method=basket.get("payment_method"),
                notes=basket.get("notes"),
                sold_by_id=actor_user_id,
                created_at=created_at,
            )
            self.session.add(sale)
            try:
                self.session.flush()
            except IntegrityError as exc:
                if is_unique_violation(exc, "uq_sales_sale_number", "sales.sale_number"):
                    raise RetryableConflict(f"Sale number {sale_number} taken concurrently") from exc
                raise

            for line in lines:
                self.session.add(
                    SaleItem(
                        sale_id=sale.id,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        price_cents=line.price_cents,
                        total_cents=line.quantity * line.price_cents,
                    )
                )
                self.catalog.decrement_quantity(line.product_id, line.quantity)
                self.ledger.record_out(
                    line.product_id,
                    line.quantity,
                    REASON_SALE,
                    sale_number,
                    sale_id=sale.id,
                    actor_user_id=actor_user_id,
                )

            self.session.flush()
            return sale

        sale = self._atomic(_op)
        logger.info(
            "Sale %s created by user %s: %d item(s), final amount %s",
            sale.sale_number, actor_user_id, len(lines), cents_to_amount(final_cents),
        )
        return sale

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def update_status(self, sale_id: int, new_status: str, actor_user_id: int | None = None) -> Sale:
        """
        Change a sale's status.

        COMPLETED -> REFUNDED restores every item's quantity and appends one
        IN movement per item. Any other transition only changes the field.
        """
        if new_status not in SALE_STATUSES:
            raise InvalidStatus(new_status)

        def _op():
            sale = lock_for_update(self.session.query(Sale).filter_by(id=sale_id)).first()
            if not sale:
                raise SaleNotFound(sale_id)

            previous = sale.status
            if new_status == STATUS_REFUNDED and previous == STATUS_COMPLETED:
                for item in sale.items:
                    self.catalog.increment_quantity(item.product_id, item.quantity)
                    self.ledger.record_in(
                        item.product_id,
                        item.quantity,
                        REASON_REFUND,
                        sale.sale_number,
                        sale_id=sale.id,
                        actor_user_id=actor_user_id,
                    )

            sale.status = new_status
            self.session.flush()
            return sale, previous

        sale, previous = self._atomic(_op)

        if new_status == STATUS_REFUNDED and previous == STATUS_COMPLETED:
            logger.info("Sale %s refunded by user %s; stock restored", sale.sale_number, actor_user_id)
        elif new_status == STATUS_CANCELLED and previous == STATUS_COMPLETED:
            logger.info("Sale %s cancelled by user %s; stock not restored", sale.sale_number, actor_user_id)
        else:
            logger.info("Sale %s status %s -> %s by user %s", sale.sale_number, previous, new_status, actor_user_id)
        return sale

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_sale(self, sale_id: int) -> Sale:
        sale = (
            self.session.query(Sale)
            .options(
                joinedload(Sale.sold_by),
                selectinload(Sale.items).joinedload(SaleItem.product),
            )
            .filter(Sale.id == sale_id)
            .first()
        )
        if sale is None:
            raise SaleNotFound(sale_id)
        return sale

    def list_sales(
        self,
        *,
        search: str = "",
        status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        sold_by: int | None = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        """
        Filtered, sorted, paginated sales with their items.

        date_from is inclusive, date_to is exclusive.
        """
        query = self.session.query(Sale)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(Sale.sale_number).like(pattern),
                    func.lower(Sale.customer_name).like(pattern),
                    func.lower(Sale.customer_email).like(pattern),
                )
            )
        if status:
            if status not in SALE_STATUSES:
                raise InvalidStatus(status)
            query = query.filter(Sale.status == status)
        if date_from is not None:
            query = query.filter(Sale.created_at >= date_from)
        if date_to is not None:
            query = query.filter(Sale.created_at < date_to)
        if sold_by is not None:
            query = query.filter(Sale.sold_by_id == sold_by)

        sort_column = SALE_SORT_FIELDS.get(sort_by, Sale.created_at)
        order = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        total = query.count()
        sales = (
            query.options(
                joinedload(Sale.sold_by),
                selectinload(Sale.items).joinedload(SaleItem.product),
            )
            .order_by(order, Sale.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "sales": [sale.to_dict() for sale in sales],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def statistics(self, period_days: int = 30, *, now: datetime | None = None) -> dict:
        """
        Revenue, count and average order value over COMPLETED sales created
        in the trailing period_days.
        """
        if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days <= 0:
            raise SaleError("period must be a positive integer")

        since = (now or utcnow()) - timedelta(days=period_days)
        revenue_cents, total_sales = (
            self.session.query(
                func.coalesce(func.sum(Sale.final_amount_cents), 0),
                func.count(Sale.id),
            )
            .filter(Sale.status == STATUS_COMPLETED, Sale.created_at >= since)
            .one()
        )
        revenue_cents = int(revenue_cents or 0)
        total_sales = int(total_sales or 0)

        average = 0.0
        if total_sales > 0:
            average = float(
                (Decimal(revenue_cents) / total_sales / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            )

        return {
            "totalRevenue": cents_to_amount(revenue_cents),
            "totalSales": total_sales,
            "averageOrderValue": average,
            "period": period_days,
        }
