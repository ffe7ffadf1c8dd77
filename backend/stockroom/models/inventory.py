from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..money import cents_to_amount


class Category(db.Model):
    """Product grouping. Names are unique across the catalog."""
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_categories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data.

    SKU and barcode are globally unique. Both are enforced by unique constraints;
    the catalog service pre-checks them only to produce a friendly message, the
    constraint is what holds under concurrent creates.

    quantity is the authoritative on-hand count. stock_movements is the audit
    trail that explains how it got there; it is never summed to derive stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active_quantity", "is_active", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(50), nullable=False)
    # NULL (not "") when absent so the unique constraint allows many products without one
    barcode = db.Column(db.String(50), nullable=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    image_url = db.Column(db.String(500), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=10)
    max_stock = db.Column(db.Integer, nullable=False, default=1000)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} quantity={self.quantity}>"

    def to_summary_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "imageUrl": self.image_url,
            "price": cents_to_amount(self.price_cents),
            "cost": cents_to_amount(self.cost_cents),
            "quantity": self.quantity,
            "minStock": self.min_stock,
            "maxStock": self.max_stock,
            "isActive": self.is_active,
            "isLowStock": self.is_low_stock,
            "categoryId": self.category_id,
            "category": (
                {"id": self.category.id, "name": self.category.name}
                if self.category is not None
                else None
            ),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only inventory audit trail.

    IMMUTABLE: rows are inserted inside the same DB transaction as the quantity
    change they describe and are never updated. They are removed only
    together with their product, which requires the product to have no sales.

    reference correlates the movement to its cause: a sale number, "INITIAL"
    or "ADJUSTMENT". sale_id is set as well for sale and refund movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("type IN ('IN', 'OUT')", name="ck_stock_movements_type"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(8), nullable=False, index=True)  # IN, OUT
    quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "saleId": self.sale_id,
            "actorUserId": self.actor_user_id,
            "createdAt": to_utc_z(self.created_at),
        }
