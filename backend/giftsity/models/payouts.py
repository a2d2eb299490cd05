from __future__ import annotations

from ..extensions import db
from giftsity.time_utils import to_utc_z


class SellerPayout(db.Model):
    """
    Settlement owed to one seller for one period.

    Built by an admin from Closed orders not yet settled; each included
    order points back here through Order.payout_id, so an order is paid
    out at most once.
    """
    __tablename__ = "seller_payouts"
    __table_args__ = (
        db.UniqueConstraint("seller_id", "period_start", "period_end", name="uq_seller_payouts_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False, index=True)

    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    period_label = db.Column(db.String(64), nullable=False)

    order_count = db.Column(db.Integer, nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_percent = db.Column(db.Integer, nullable=False)
    commission_cents = db.Column(db.Integer, nullable=False, default=0)
    net_payout_cents = db.Column(db.Integer, nullable=False, default=0)

    # pending | paid
    status = db.Column(db.String(16), nullable=False, default="pending")
    transaction_reference = db.Column(db.String(128), nullable=True)

    created_by_admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=True)
    paid_by_admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    seller = db.relationship("Seller", backref=db.backref("payouts", lazy=True))
    orders = db.relationship("Order", backref="payout", lazy=True, order_by="Order.id")

    def to_dict(self, include_orders: bool = False) -> dict:
        data = {
            "id": self.id,
            "seller_id": self.seller_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "period_label": self.period_label,
            "order_count": self.order_count,
            "total_sales_cents": self.total_sales_cents,
            "commission_percent": self.commission_percent,
            "commission_cents": self.commission_cents,
            "net_payout_cents": self.net_payout_cents,
            "status": self.status,
            "transaction_reference": self.transaction_reference,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
        }
        if include_orders:
            data["order_numbers"] = [order.order_number for order in self.orders]
        return data
