# Overview: Flask API routes for products and reviews (Main gateway).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error, require_auth, require_role
from ..errors import GiftsityError
from ..services import catalog_service
from ..validation import coerce_int


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """Public catalog. ?seller_id= filters to one seller."""
    try:
        seller_id = request.args.get("seller_id")
        products = catalog_service.list_products(
            seller_id=coerce_int(seller_id, "seller_id", minimum=1) if seller_id else None,
        )
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return internal_error()


@products_bp.post("")
@require_auth
@require_role("admin")
def create_product_route():
    """
    Request body:
    {"seller_id": 1, "title": "Mug", "sku": "MUG-1", "price_cents": 1299}
    """
    try:
        product = catalog_service.create_product(request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return internal_error()


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id).to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)


@products_bp.get("/<int:product_id>/reviews")
def list_reviews_route(product_id: int):
    try:
        reviews = catalog_service.list_reviews(product_id)
        return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list reviews")
        return internal_error()


@products_bp.post("/<int:product_id>/reviews")
@require_auth
@require_role("customer")
def create_review_route(product_id: int):
    """
    Request body: {"rating": 5, "body": "Lovely"}

    Only customers with a delivered order containing the product may review.
    """
    try:
        data = request.get_json(silent=True) or {}
        review = catalog_service.add_review(g.identity.id, product_id, data.get("rating"), data.get("body"))
        return jsonify({"review": review.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create review")
        return internal_error()
