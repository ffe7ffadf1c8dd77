from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..money import cents_to_amount

SALE_STATUSES = ("PENDING", "COMPLETED", "CANCELLED", "REFUNDED")


class Sale(db.Model):
    """
    Sale header.

    Created COMPLETED together with its items, the stock decrements and the
    OUT movements in one transaction. After that only status changes.

    final_amount_cents = total_amount_cents - discount_cents + tax_cents
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'CANCELLED', 'REFUNDED')",
            name="ck_sales_status",
        ),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable day-scoped number (e.g., "SALE-20241021-0001")
    sale_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(100), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)
    payment_method = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    sold_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sold_by = db.relationship("User", backref=db.backref("sales", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "saleNumber": self.sale_number,
            "status": self.status,
            "totalAmount": cents_to_amount(self.total_amount_cents),
            "discount": cents_to_amount(self.discount_cents),
            "tax": cents_to_amount(self.tax_cents),
            "finalAmount": cents_to_amount(self.final_amount_cents),
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "paymentMethod": self.payment_method,
            "notes": self.notes,
            "soldById": self.sold_by_id,
            "soldBy": self.sold_by.to_summary_dict() if self.sold_by is not None else None,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        if include_items:
            data["saleItems"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Line item on a sale. price_cents is a snapshot taken at sale time."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, order_by="SaleItem.id"),
    )
    product = db.relationship("Product", backref=db.backref("sale_items", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "productId": self.product_id,
            "product": self.product.to_summary_dict() if self.product is not None else None,
            "quantity": self.quantity,
            "price": cents_to_amount(self.price_cents),
            "total": cents_to_amount(self.total_cents),
        }
