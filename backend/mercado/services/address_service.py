from __future__ import annotations

from ..extensions import db
from ..models import Address, Order
from ..validation import ModelValidationPolicy, ValidationError, validate_payload


class AddressError(Exception):
    """Raised for address book errors."""
    pass


ADDRESS_POLICY = ModelValidationPolicy(
    writable_fields={"street", "city", "reference", "lat", "lng"},
    required_on_create={"street", "city"},
)


def list_addresses(user_id: str) -> list[Address]:
    return (
        db.session.query(Address)
        .filter(Address.user_id == str(user_id))
        .order_by(Address.id.asc())
        .all()
    )


def add_address(user_id: str, data: dict) -> Address:
    if not user_id:
        raise AddressError("user_id is required")

    data = dict(data or {})
    # Presentation code sends {"location": {"lat", "lng"}}
    location = data.pop("location", None)
    if isinstance(location, dict):
        data.setdefault("lat", location.get("lat"))
        data.setdefault("lng", location.get("lng"))

    patch = validate_payload(model=Address, payload=data, policy=ADDRESS_POLICY, partial=False)
    if (patch.get("lat") is None) != (patch.get("lng") is None):
        raise ValidationError("lat and lng must be given together")

    address = Address(user_id=str(user_id), **patch)
    db.session.add(address)
    db.session.commit()
    return address


def delete_address(user_id: str, address_id: int) -> list[Address]:
    """Delete one of the user's addresses and return the ones that remain."""
    address = (
        db.session.query(Address)
        .filter(Address.id == address_id, Address.user_id == str(user_id))
        .first()
    )
    if address is None:
        raise AddressError(f"Address {address_id} not found")

    # Orders keep their text snapshot of the address
    db.session.query(Order).filter(Order.delivery_address_id == address.id).update(
        {Order.delivery_address_id: None}, synchronize_session=False
    )
    db.session.delete(address)
    db.session.commit()
    return list_addresses(user_id)
