# Overview: Flask API routes for the Corporate gateway; catalog, B2B inquiries and quotes.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error, require_auth, require_role
from ..errors import GiftsityError
from ..services import corporate_service


corporate_bp = Blueprint("corporate", __name__, url_prefix="/api/corporate")


# =============================================================================
# CATALOG
# =============================================================================

@corporate_bp.get("/catalog")
@require_auth
@require_role("corporate", "admin")
def list_catalog_route():
    """?tag=<tag> filters. Corporate users only see active items."""
    try:
        items = corporate_service.list_catalog(g.role, tag=request.args.get("tag"))
        return jsonify({"items": [item.to_dict() for item in items]}), 200
    except Exception:
        current_app.logger.exception("Failed to list corporate catalog")
        return internal_error()


@corporate_bp.post("/catalog")
@require_auth
@require_role("admin")
def add_catalog_item_route():
    """
    Request body:
    {"product_id": 12, "corporate_price_cents": 2200, "min_order_qty": 25, "max_order_qty": 5000,
     "tags": ["desk", "premium"]}

    Returns:
        201: Item added
        404: Unknown product
        409: Product already in the catalog
    """
    try:
        item = corporate_service.add_catalog_item(g.identity.id, request.get_json(silent=True))
        return jsonify({"item": item.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add catalog item")
        return internal_error()


@corporate_bp.patch("/catalog/<int:item_id>")
@require_auth
@require_role("admin")
def update_catalog_item_route(item_id: int):
    """
    Request body: any of corporate_price_cents (null restores the regular price),
    min_order_qty, max_order_qty, is_active, tags.
    """
    try:
        item = corporate_service.update_catalog_item(item_id, request.get_json(silent=True))
        return jsonify({"item": item.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update catalog item")
        return internal_error()


# =============================================================================
# INQUIRIES AND QUOTES
# =============================================================================

@corporate_bp.post("/inquiries")
@require_auth
@require_role("corporate")
def create_inquiry_route():
    """
    Request body:
    {"message": "200 hampers for Diwali", "quantity": 200, "budget_cents": 50000000,
     "catalog_item_id": 3}

    catalog_item_id is optional; when given, quantity must fit the item's order range.
    """
    try:
        inquiry = corporate_service.create_inquiry(g.identity.id, request.get_json(silent=True))
        return jsonify({"inquiry": inquiry.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create inquiry")
        return internal_error()


@corporate_bp.get("/inquiries")
@require_auth
@require_role("corporate", "admin")
def list_inquiries_route():
    try:
        inquiries = corporate_service.list_inquiries(g.role, g.identity.id)
        return jsonify({"inquiries": [i.to_dict() for i in inquiries]}), 200
    except Exception:
        current_app.logger.exception("Failed to list inquiries")
        return internal_error()


@corporate_bp.post("/inquiries/<int:inquiry_id>/quotes")
@require_auth
@require_role("admin")
def create_quote_route(inquiry_id: int):
    """Request body: {"amount_cents": 45000000, "notes": "..."}"""
    try:
        quote = corporate_service.create_quote(g.identity.id, inquiry_id, request.get_json(silent=True))
        return jsonify({"quote": quote.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create quote")
        return internal_error()


@corporate_bp.get("/quotes")
@require_auth
@require_role("corporate", "admin")
def list_quotes_route():
    try:
        quotes = corporate_service.list_quotes(g.role, g.identity.id)
        return jsonify({"quotes": [q.to_dict() for q in quotes]}), 200
    except Exception:
        current_app.logger.exception("Failed to list quotes")
        return internal_error()


@corporate_bp.post("/quotes/<int:quote_id>/accept")
@require_auth
@require_role("corporate")
def accept_quote_route(quote_id: int):
    try:
        quote = corporate_service.respond_to_quote(quote_id, g.identity.id, accept=True)
        return jsonify({"quote": quote.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to accept quote")
        return internal_error()


@corporate_bp.post("/quotes/<int:quote_id>/reject")
@require_auth
@require_role("corporate")
def reject_quote_route(quote_id: int):
    try:
        quote = corporate_service.respond_to_quote(quote_id, g.identity.id, accept=False)
        return jsonify({"quote": quote.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject quote")
        return internal_error()
