# backend/stockroom/services/products_service.py
"""
Product Catalog

Owns Product rows. Direct edits (create / update / delete) come from the
products API; quantity adjustments come from the Sale Engine and always run
inside the engine's atomic unit.

Quantity invariant: never negative. decrement_quantity re-checks availability
in the same UPDATE that writes it, so a check made earlier in the request can
never be stale by the time stock is taken.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..models import Category, Product, SaleItem
from ..validation import ConflictError
from .concurrency import atomic_unit, is_unique_violation, lock_for_update
from .ledger_service import REASON_INITIAL_STOCK, REFERENCE_INITIAL

logger = logging.getLogger(__name__)

PRODUCT_SORT_FIELDS = {
    "name": Product.name,
    "sku": Product.sku,
    "price": Product.price_cents,
    "quantity": Product.quantity,
    "createdAt": Product.created_at,
    "updatedAt": Product.updated_at,
}


class ProductError(Exception):
    """Base class for catalog rule violations surfaced to the client."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFound(ProductError):
    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}", {"productId": product_id})
        self.product_id = product_id


class ProductInactive(ProductError):
    def __init__(self, product: Product):
        super().__init__(f"Product is inactive: {product.name}", {"productId": product.id})
        self.product_id = product.id


class InsufficientStock(ProductError):
    def __init__(self, product_name: str, available: int, requested: int, product_id: int | None = None):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            {"productId": product_id, "available": available, "requested": requested},
        )
        self.product_name = product_name
        self.available = available
        self.requested = requested


class ProductInUse(ProductError):
    """Product has sales history and cannot be deleted."""


class CategoryNotFound(ProductError):
    pass


class DuplicateSKU(ConflictError):
    def __init__(self):
        super().__init__("Product with this SKU already exists")


class DuplicateBarcode(ConflictError):
    def __init__(self):
        super().__init__("Product with this barcode already exists")


class ProductCatalog:
    """Product reads, direct edits and sale-driven quantity changes."""

    def __init__(self, session, ledger, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.ledger = ledger
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _atomic(self, func):
        return atomic_unit(self.session, func, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    # ------------------------------------------------------------------
    # Sale Engine collaboration
    # ------------------------------------------------------------------

    def get(self, product_id: int, *, lock: bool = False) -> Product:
        query = self.session.query(Product).filter_by(id=product_id)
        if lock:
            query = lock_for_update(query)
        product = query.first()
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def decrement_quantity(self, product_id: int, amount: int) -> None:
        """
        Take amount units out of stock.

        The WHERE clause carries the availability check, so the row is only
        written when enough stock exists at write time.
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.quantity >= amount)
            .values(quantity=Product.quantity - amount)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        if result.rowcount:
            return

        product = self.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise ProductNotFound(product_id)
        raise InsufficientStock(product.name, product.quantity, amount, product_id=product.id)

    def increment_quantity(self, product_id: int, amount: int) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(quantity=Product.quantity + amount)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        if not result.rowcount:
            raise ProductNotFound(product_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_products(
        self,
        *,
        search: str = "",
        category_id: int | None = None,
        low_stock: bool = False,
        sort_by: str = "name",
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        """
        Filtered, sorted, paginated product listing.

        search matches name, SKU or description (case-insensitive substring).
        low_stock keeps products at or below their minimum stock level.
        """
        query = self.session.query(Product)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(Product.name).like(pattern),
                    func.lower(Product.sku).like(pattern),
                    func.lower(Product.description).like(pattern),
                )
            )
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        if low_stock:
            query = query.filter(Product.quantity <= Product.min_stock)

        sort_column = PRODUCT_SORT_FIELDS.get(sort_by, Product.name)
        order = sort_column.desc() if sort_order == "desc" else sort_column.asc()

        total = query.count()
        products = query.order_by(order, Product.id.asc()).offset((page - 1) * limit).limit(limit).all()

        return {
            "products": [p.to_dict() for p in products],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
            "lowStockCount": sum(1 for p in products if p.is_low_stock),
        }

    def low_stock_products(self) -> list[Product]:
        return (
            self.session.query(Product)
            .filter(Product.is_active.is_(True), Product.quantity <= Product.min_stock)
            .order_by(Product.quantity.asc(), Product.name.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Direct edits
    # ------------------------------------------------------------------

    def _check_unique(self, patch: dict, exclude_id: int | None = None) -> None:
        if patch.get("sku"):
            query = self.session.query(Product.id).filter(Product.sku == patch["sku"])
            if exclude_id is not None:
                query = query.filter(Product.id != exclude_id)
            if query.first():
                raise DuplicateSKU()

        if patch.get("barcode"):
            query = self.session.query(Product.id).filter(Product.barcode == patch["barcode"])
            if exclude_id is not None:
                query = query.filter(Product.id != exclude_id)
            if query.first():
                raise DuplicateBarcode()

        if patch.get("category_id") is not None:
            if self.session.get(Category, patch["category_id"]) is None:
                raise CategoryNotFound("Category not found")

    def _translate_integrity_error(self, exc: IntegrityError) -> Exception:
        if is_unique_violation(exc, "uq_products_sku", "products.sku"):
            return DuplicateSKU()
        if is_unique_violation(exc, "uq_products_barcode", "products.barcode"):
            return DuplicateBarcode()
        return exc

    def create_product(self, patch: dict, *, actor_user_id: int | None = None) -> Product:
        """
        Create a product from a validated patch.

        Initial stock is recorded as an IN movement so the ledger explains the
        starting quantity.
        """
        def _op():
            self._check_unique(patch)

            product = Product(**patch)
            self.session.add(product)
            try:
                self.session.flush()
            except IntegrityError as exc:
                self.session.rollback()
                raise self._translate_integrity_error(exc)

            if product.quantity:
                self.ledger.record_in(
                    product.id,
                    product.quantity,
                    REASON_INITIAL_STOCK,
                    REFERENCE_INITIAL,
                    actor_user_id=actor_user_id,
                )
            return product

        product = self._atomic(_op)
        logger.info("Product %s created (sku=%s, quantity=%s)", product.id, product.sku, product.quantity)
        return product

    def update_product(self, product_id: int, patch: dict, *, actor_user_id: int | None = None) -> Product:
        """
        Apply a validated patch.

        A quantity change is a manual stock adjustment and is recorded in the
        ledger with the signed difference, computed against the locked row.
        """
        def _op():
            product = self.get(product_id, lock=True)
            self._check_unique(
                {k: v for k, v in patch.items() if getattr(product, k, None) != v},
                exclude_id=product.id,
            )

            merged_min = patch.get("min_stock", product.min_stock)
            merged_max = patch.get("max_stock", product.max_stock)
            if merged_min > merged_max:
                raise ProductError("minStock cannot exceed maxStock")

            delta = 0
            if "quantity" in patch:
                delta = patch["quantity"] - product.quantity

            for key, value in patch.items():
                setattr(product, key, value)

            try:
                self.session.flush()
            except IntegrityError as exc:
                self.session.rollback()
                raise self._translate_integrity_error(exc)

            self.ledger.record_adjustment(product.id, delta, actor_user_id=actor_user_id)
            return product, delta

        product, delta = self._atomic(_op)
        if delta:
            logger.info("Manual stock adjustment on product %s: %+d", product.id, delta)
        return product

    def delete_product(self, product_id: int) -> None:
        def _op():
            product = self.get(product_id, lock=True)
            has_sales = self.session.query(SaleItem.id).filter(SaleItem.product_id == product.id).first()
            if has_sales:
                raise ProductInUse(
                    "Cannot delete product that has sales history. Consider deactivating instead."
                )
            for movement in list(product.stock_movements):
                self.session.delete(movement)
            self.session.delete(product)

        self._atomic(_op)
        logger.info("Product %s deleted", product_id)
