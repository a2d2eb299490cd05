from __future__ import annotations

from ..extensions import db
from giftsity.time_utils import to_utc_z


class B2BInquiry(db.Model):
    """Bulk-gifting inquiry raised by a corporate user."""
    __tablename__ = "b2b_inquiries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    corporate_user_id = db.Column(db.Integer, db.ForeignKey("corporate_users.id"), nullable=False, index=True)

    message = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    budget_cents = db.Column(db.Integer, nullable=True)
    catalog_item_id = db.Column(db.Integer, db.ForeignKey("corporate_catalog_items.id"), nullable=True)

    # open | quoted | closed
    status = db.Column(db.String(16), nullable=False, default="open")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    quotes = db.relationship("CorporateQuote", backref="inquiry", lazy=True, order_by="CorporateQuote.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "corporate_user_id": self.corporate_user_id,
            "message": self.message,
            "quantity": self.quantity,
            "budget_cents": self.budget_cents,
            "catalog_item_id": self.catalog_item_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "quotes": [quote.to_dict() for quote in self.quotes],
        }


class CorporateQuote(db.Model):
    """Price offer from an admin against an inquiry."""
    __tablename__ = "corporate_quotes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    inquiry_id = db.Column(db.Integer, db.ForeignKey("b2b_inquiries.id"), nullable=False, index=True)
    corporate_user_id = db.Column(db.Integer, db.ForeignKey("corporate_users.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # sent | accepted | rejected
    status = db.Column(db.String(16), nullable=False, default="sent")

    created_by_admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inquiry_id": self.inquiry_id,
            "corporate_user_id": self.corporate_user_id,
            "amount_cents": self.amount_cents,
            "notes": self.notes,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "responded_at": to_utc_z(self.responded_at),
        }


class CorporateCatalogItem(db.Model):
    """
    A product an admin has opened to corporate buyers.

    corporate_price_cents NULL means the product's regular price applies.
    Bulk inquiries against an item must ask for a quantity within
    [min_order_qty, max_order_qty].
    """
    __tablename__ = "corporate_catalog_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True)

    corporate_price_cents = db.Column(db.Integer, nullable=True)
    min_order_qty = db.Column(db.Integer, nullable=False, default=10)
    max_order_qty = db.Column(db.Integer, nullable=False, default=10000)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    tags = db.Column(db.JSON, nullable=False, default=list)

    added_by_admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    product = db.relationship("Product")

    @property
    def effective_price_cents(self) -> int:
        if self.corporate_price_cents is not None:
            return self.corporate_price_cents
        return self.product.price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "title": self.product.title,
            "seller_id": self.product.seller_id,
            "regular_price_cents": self.product.price_cents,
            "corporate_price_cents": self.corporate_price_cents,
            "effective_price_cents": self.effective_price_cents,
            "min_order_qty": self.min_order_qty,
            "max_order_qty": self.max_order_qty,
            "is_active": self.is_active,
            "tags": list(self.tags or []),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
