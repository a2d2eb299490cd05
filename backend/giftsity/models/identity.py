from __future__ import annotations

from ..extensions import db
from giftsity.time_utils import to_utc_z


class IdentityMixin:
    """
    Columns every role's identity table shares.

    Identities are a tagged union: the table is the role tag and the
    role-specific columns are the payload. Session and OTP code only ever
    touch the shared columns, so they stay polymorphic over role.
    """
    ROLE: str = ""

    id = db.Column(db.Integer, primary_key=True)

    # Stored lower-cased; unique within the role's table only
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hash; NULL for passwordless (OTP-only) accounts
    password_hash = db.Column(db.String(255), nullable=True)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # active | suspended
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def role(self) -> str:
        return self.ROLE

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.ROLE,
            "email": self.email,
            "is_verified": self.is_verified,
            "verified_at": to_utc_z(self.verified_at),
            "status": self.status,
            "has_password": self.password_hash is not None,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class Admin(IdentityMixin, db.Model):
    """Platform operators. Preserved across data wipes."""
    __tablename__ = "admins"
    __table_args__ = {"sqlite_autoincrement": True}
    ROLE = "admin"

    name = db.Column(db.String(128), nullable=True)

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["name"] = self.name
        return data


class Seller(IdentityMixin, db.Model):
    """Marketplace sellers; their profile lives on the Seller gateway."""
    __tablename__ = "sellers"
    __table_args__ = {"sqlite_autoincrement": True}
    ROLE = "seller"

    business_name = db.Column(db.String(128), nullable=True)
    slug = db.Column(db.String(128), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    pickup_pincode = db.Column(db.String(12), nullable=True)

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "business_name": self.business_name,
            "slug": self.slug,
            "phone": self.phone,
            "pickup_pincode": self.pickup_pincode,
        })
        return data


class Customer(IdentityMixin, db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}
    ROLE = "customer"

    name = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({"name": self.name, "phone": self.phone})
        return data


class CorporateUser(IdentityMixin, db.Model):
    """B2B buyers served by the Corporate gateway."""
    __tablename__ = "corporate_users"
    __table_args__ = {"sqlite_autoincrement": True}
    ROLE = "corporate"

    company_name = db.Column(db.String(128), nullable=True)
    contact_person = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "company_name": self.company_name,
            "contact_person": self.contact_person,
            "phone": self.phone,
        })
        return data


ROLE_TO_MODEL = {
    Admin.ROLE: Admin,
    Seller.ROLE: Seller,
    Customer.ROLE: Customer,
    CorporateUser.ROLE: CorporateUser,
}
