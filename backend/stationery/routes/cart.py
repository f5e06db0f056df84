# Overview: Flask API routes for the viewer's cart; parses input and returns JSON responses.

"""
Cart routes.

The cart belongs to the browser client (X-Client-Id), not to a backend
user, so no bearer token is needed until checkout.
"""
from flask import Blueprint, request, g, current_app

from ..decorators import require_client
from ..extensions import portal_service, STORAGE
from ..services.cart_service import CartStore
from ..validation import require_json_object
from .responses import error_response

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart() -> CartStore:
    return CartStore(
        portal_service(STORAGE),
        g.client_id,
        min_qty=current_app.config["CART_MIN_QTY"],
        logger=current_app.logger,
    )


@cart_bp.get("")
@require_client
def get_cart():
    try:
        return _cart().to_dict()
    except Exception as e:
        return error_response(e, "Failed to load cart")


@cart_bp.post("/items")
@require_client
def add_cart_item():
    """
    Add a product, or increase its quantity if it is already in the cart.

    Body: {"product": {"id": 7, "name": "...", ...}, "qty": 3}
    """
    try:
        payload = require_json_object(request.get_json(silent=True))
        cart = _cart()
        entry = cart.add_item(payload.get("product"), payload.get("qty", 1))
        return {"entry": entry, "cart": cart.to_dict()}, 201
    except Exception as e:
        return error_response(e, "Failed to add cart item")


@cart_bp.patch("/items/<int:product_id>")
@require_client
def update_cart_item(product_id: int):
    """Body: {"qty": 5}. Quantities below the minimum are clamped, never removed."""
    try:
        payload = require_json_object(request.get_json(silent=True))
        cart = _cart()
        entry = cart.update_qty(product_id, payload.get("qty"))
        return {"entry": entry, "cart": cart.to_dict()}
    except Exception as e:
        return error_response(e, "Failed to update cart item")


@cart_bp.delete("/items/<int:product_id>")
@require_client
def remove_cart_item(product_id: int):
    try:
        cart = _cart()
        if not cart.remove(product_id):
            return {"error": f"Product {product_id} is not in the cart"}, 404
        return {"cart": cart.to_dict()}
    except Exception as e:
        return error_response(e, "Failed to remove cart item")


@cart_bp.delete("")
@require_client
def clear_cart():
    try:
        cart = _cart()
        cart.clear()
        return {"cart": cart.to_dict()}
    except Exception as e:
        return error_response(e, "Failed to clear cart")
