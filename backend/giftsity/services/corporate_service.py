# Overview: Service-layer operations for the corporate catalog, B2B inquiries and quotes.

"""
Corporate Gifting

Admins open products to corporate buyers through the corporate catalog,
optionally at a corporate price and always with an order quantity range.
Corporate users raise bulk inquiries, optionally against a catalog item;
admins answer with quotes; the corporate user accepts or rejects each quote. Accepting a quote closes the
inquiry and rejects any other quote still open on it.

Inquiry status: open -> quoted -> closed
Quote status:   sent -> accepted | rejected
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AlreadyInState, IllegalTransition, NotFound, ValidationError
from ..models import B2BInquiry, CorporateCatalogItem, CorporateQuote, Product
from ..validation import MAX_PRICE_CENTS, coerce_int, require_text
from .concurrency import compare_and_swap
from giftsity.time_utils import utcnow


INQUIRY_OPEN = "open"
INQUIRY_QUOTED = "quoted"
INQUIRY_CLOSED = "closed"

QUOTE_SENT = "sent"
QUOTE_ACCEPTED = "accepted"
QUOTE_REJECTED = "rejected"

MAX_INQUIRY_QUANTITY = 100_000
MAX_TAGS = 20


# =============================================================================
# CATALOG
# =============================================================================

def _parse_tags(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or len(value) > MAX_TAGS:
        raise ValidationError(f"tags must be a list of at most {MAX_TAGS} strings")
    tags = []
    for index, tag in enumerate(value):
        text = require_text(tag, f"tags[{index}]", max_length=32).lower()
        if text not in tags:
            tags.append(text)
    return tags


def _apply_catalog_fields(item: CorporateCatalogItem, data: dict) -> None:
    if "corporate_price_cents" in data:
        price = data["corporate_price_cents"]
        item.corporate_price_cents = (
            None if price is None
            else coerce_int(price, "corporate_price_cents", minimum=1, maximum=MAX_PRICE_CENTS)
        )
    if "min_order_qty" in data:
        item.min_order_qty = coerce_int(data["min_order_qty"], "min_order_qty",
                                        minimum=1, maximum=MAX_INQUIRY_QUANTITY)
    if "max_order_qty" in data:
        item.max_order_qty = coerce_int(data["max_order_qty"], "max_order_qty",
                                        minimum=1, maximum=MAX_INQUIRY_QUANTITY)
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be true or false")
        item.is_active = data["is_active"]
    if "tags" in data:
        item.tags = _parse_tags(data["tags"])

    if item.min_order_qty > item.max_order_qty:
        raise ValidationError("min_order_qty must not exceed max_order_qty")


def add_catalog_item(admin_id: int, data: dict) -> CorporateCatalogItem:
    """
    Open a product to corporate buyers.

    Raises:
        ValidationError, NotFound (unknown product),
        AlreadyInState (product already in the catalog)
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    product_id = coerce_int(data.get("product_id"), "product_id", minimum=1)
    if db.session.get(Product, product_id) is None:
        raise NotFound(f"Product {product_id} not found")
    if db.session.query(CorporateCatalogItem.id).filter_by(product_id=product_id).first() is not None:
        raise AlreadyInState(f"Product {product_id} is already in the corporate catalog")

    now = utcnow()
    item = CorporateCatalogItem(
        product_id=product_id,
        min_order_qty=10,
        max_order_qty=10000,
        is_active=True,
        tags=[],
        added_by_admin_id=admin_id,
        created_at=now,
        updated_at=now,
    )
    _apply_catalog_fields(item, data)

    db.session.add(item)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise AlreadyInState(f"Product {product_id} is already in the corporate catalog")
    return item


def update_catalog_item(item_id: int, data: dict) -> CorporateCatalogItem:
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    item = db.session.get(CorporateCatalogItem, item_id)
    if item is None:
        raise NotFound(f"Catalog item {item_id} not found")

    try:
        _apply_catalog_fields(item, data)
    except ValidationError:
        db.session.rollback()
        raise
    item.updated_at = utcnow()
    db.session.commit()
    return item


def list_catalog(role: str, *, tag: str | None = None) -> list[CorporateCatalogItem]:
    """Corporate buyers see active items of active products; admins see everything."""
    query = db.session.query(CorporateCatalogItem).join(Product)
    if role != "admin":
        query = query.filter(CorporateCatalogItem.is_active.is_(True), Product.is_active.is_(True))

    items = query.order_by(CorporateCatalogItem.id.asc()).all()
    if tag:
        # JSON column, matched in Python
        wanted = tag.strip().lower()
        items = [item for item in items if wanted in (item.tags or [])]
    return items


def _orderable_item(item_id, quantity: int) -> CorporateCatalogItem:
    item_id = coerce_int(item_id, "catalog_item_id", minimum=1)
    item = db.session.get(CorporateCatalogItem, item_id)
    if item is None or not item.is_active or not item.product.is_active:
        raise NotFound(f"Catalog item {item_id} not found")
    if not item.min_order_qty <= quantity <= item.max_order_qty:
        raise ValidationError(
            f"quantity must be between {item.min_order_qty} and {item.max_order_qty} for this item",
            min_order_qty=item.min_order_qty, max_order_qty=item.max_order_qty,
        )
    return item


# =============================================================================
# INQUIRIES AND QUOTES
# =============================================================================

def create_inquiry(corporate_user_id: int, data: dict) -> B2BInquiry:
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    message = require_text(data.get("message"), "message", max_length=4000)
    quantity = coerce_int(data.get("quantity"), "quantity", minimum=1, maximum=MAX_INQUIRY_QUANTITY)
    item = None
    if data.get("catalog_item_id") is not None:
        item = _orderable_item(data["catalog_item_id"], quantity)

    budget = data.get("budget_cents")
    inquiry = B2BInquiry(
        corporate_user_id=corporate_user_id,
        message=message,
        quantity=quantity,
        catalog_item_id=item.id if item else None,
        budget_cents=(
            None if budget is None
            else coerce_int(budget, "budget_cents", minimum=0, maximum=MAX_PRICE_CENTS)
        ),
        status=INQUIRY_OPEN,
        created_at=utcnow(),
    )
    db.session.add(inquiry)
    db.session.commit()
    return inquiry


def list_inquiries(role: str, identity_id: int) -> list[B2BInquiry]:
    query = db.session.query(B2BInquiry)
    if role != "admin":
        query = query.filter(B2BInquiry.corporate_user_id == identity_id)
    return query.order_by(B2BInquiry.created_at.desc(), B2BInquiry.id.desc()).all()


def get_inquiry_for(inquiry_id: int, role: str, identity_id: int) -> B2BInquiry:
    inquiry = db.session.get(B2BInquiry, inquiry_id)
    if inquiry is None or (role != "admin" and inquiry.corporate_user_id != identity_id):
        raise NotFound(f"Inquiry {inquiry_id} not found")
    return inquiry


def create_quote(admin_id: int, inquiry_id: int, data: dict) -> CorporateQuote:
    """Admin answers an open or already-quoted inquiry with a price."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    inquiry = get_inquiry_for(inquiry_id, "admin", admin_id)
    if inquiry.status == INQUIRY_CLOSED:
        raise IllegalTransition("Inquiry is closed", state=inquiry.status)

    quote = CorporateQuote(
        inquiry_id=inquiry.id,
        corporate_user_id=inquiry.corporate_user_id,
        amount_cents=coerce_int(data.get("amount_cents"), "amount_cents", minimum=1, maximum=MAX_PRICE_CENTS),
        notes=require_text(data.get("notes"), "notes", max_length=4000, required=False),
        status=QUOTE_SENT,
        created_by_admin_id=admin_id,
        created_at=utcnow(),
    )
    inquiry.status = INQUIRY_QUOTED
    db.session.add(quote)
    db.session.commit()
    return quote


def list_quotes(role: str, identity_id: int) -> list[CorporateQuote]:
    query = db.session.query(CorporateQuote)
    if role != "admin":
        query = query.filter(CorporateQuote.corporate_user_id == identity_id)
    return query.order_by(CorporateQuote.created_at.desc(), CorporateQuote.id.desc()).all()


def respond_to_quote(quote_id: int, corporate_user_id: int, *, accept: bool) -> CorporateQuote:
    """
    Accept or reject a sent quote. Only the corporate user it was sent to may answer.

    Raises:
        NotFound, AlreadyInState (same answer twice),
        IllegalTransition (already answered the other way, or inquiry closed)
    """
    quote = db.session.get(CorporateQuote, quote_id)
    if quote is None or quote.corporate_user_id != corporate_user_id:
        raise NotFound(f"Quote {quote_id} not found")

    target = QUOTE_ACCEPTED if accept else QUOTE_REJECTED
    if quote.status == target:
        raise AlreadyInState(f"Quote is already {target}", state=quote.status)
    if quote.status != QUOTE_SENT:
        raise IllegalTransition(f"Quote is {quote.status}", state=quote.status)
    if accept and quote.inquiry.status == INQUIRY_CLOSED:
        raise IllegalTransition("Inquiry is closed", state=quote.inquiry.status)

    now = utcnow()
    won = compare_and_swap(
        CorporateQuote, quote.id,
        expected={"status": QUOTE_SENT},
        values={"status": target, "responded_at": now},
    )
    if not won:
        db.session.rollback()
        raise IllegalTransition("Quote was answered concurrently")

    if accept:
        db.session.execute(
            update(CorporateQuote)
            .where(
                CorporateQuote.inquiry_id == quote.inquiry_id,
                CorporateQuote.id != quote.id,
                CorporateQuote.status == QUOTE_SENT,
            )
            .values(status=QUOTE_REJECTED, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        quote.inquiry.status = INQUIRY_CLOSED

    db.session.commit()
    return db.session.get(CorporateQuote, quote.id, populate_existing=True)
