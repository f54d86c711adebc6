# Overview: Flask API routes for a customer's saved delivery addresses.

from flask import Blueprint, request, jsonify, current_app

from ..services import address_service
from ..services.address_service import AddressError
from ..validation import ValidationError


addresses_bp = Blueprint("addresses", __name__, url_prefix="/api/users/<user_id>/addresses")


@addresses_bp.get("")
def list_addresses_route(user_id: str):
    addresses = address_service.list_addresses(user_id)
    return jsonify({"items": [a.to_dict() for a in addresses]})


@addresses_bp.post("")
def add_address_route(user_id: str):
    """
    Request body:
    {
        "street": "Av. Arce 2631",
        "city": "La Paz",
        "reference": "Edificio azul",        (optional)
        "location": {"lat": -16.5, "lng": -68.1}  (optional)
    }
    """
    payload = request.get_json(silent=True)
    if payload is not None and not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400
    try:
        address = address_service.add_address(user_id, payload)
        return jsonify({"address": address.to_dict()}), 201
    except (AddressError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add address")
        return jsonify({"error": "Internal server error"}), 500


@addresses_bp.delete("/<int:address_id>")
def delete_address_route(user_id: str, address_id: int):
    """Returns the addresses that remain after the delete."""
    try:
        remaining = address_service.delete_address(user_id, address_id)
    except AddressError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"items": [a.to_dict() for a in remaining]})
