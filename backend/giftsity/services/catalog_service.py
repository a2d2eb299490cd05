# Overview: Service-layer operations for products and reviews on the Main gateway.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Forbidden, NotFound, ValidationError
from ..models import Order, OrderLine, Product, Review, Seller
from ..validation import MAX_PRICE_CENTS, coerce_int, require_text


# Order states in which the buyer has received the item
_RECEIVED_STATES = ("Delivered", "ReturnRequested", "Refunded", "Closed")


def list_products(*, seller_id: int | None = None, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if seller_id is not None:
        query = query.filter(Product.seller_id == seller_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def create_product(data: dict) -> Product:
    """
    Create a product for a seller.

    Raises ValidationError on bad fields, unknown seller or a duplicate SKU
    for the same seller.
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    seller_id = coerce_int(data.get("seller_id"), "seller_id", minimum=1)
    if db.session.get(Seller, seller_id) is None:
        raise ValidationError(f"Seller {seller_id} does not exist")

    product = Product(
        seller_id=seller_id,
        title=require_text(data.get("title"), "title"),
        sku=require_text(data.get("sku"), "sku", max_length=64, required=False),
        price_cents=coerce_int(data.get("price_cents"), "price_cents", minimum=0, maximum=MAX_PRICE_CENTS),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("A product with this SKU already exists for the seller")
    return product


def list_reviews(product_id: int) -> list[Review]:
    get_product(product_id)
    return (
        db.session.query(Review)
        .filter(Review.product_id == product_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )


def has_received(customer_id: int, product_id: int) -> bool:
    return db.session.query(OrderLine.id).join(Order, Order.id == OrderLine.order_id).filter(
        Order.customer_id == customer_id,
        Order.state.in_(_RECEIVED_STATES),
        OrderLine.product_id == product_id,
    ).first() is not None


def add_review(customer_id: int, product_id: int, rating, body=None) -> Review:
    """
    Review a product the customer has received. One review per product.

    Raises:
        NotFound: unknown product
        Forbidden: no delivered purchase of this product
        ValidationError: bad rating or a second review
    """
    get_product(product_id)
    rating = coerce_int(rating, "rating", minimum=1, maximum=5)
    body = require_text(body, "body", max_length=4000, required=False)

    if not has_received(customer_id, product_id):
        raise Forbidden("Only customers who received this product can review it")

    review = Review(product_id=product_id, customer_id=customer_id, rating=rating, body=body)
    db.session.add(review)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("You have already reviewed this product")
    return review
