from datetime import datetime, timezone

from models import CartContext, CartItem, Discount

ADMIN_KEY = "test-admin-key"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_discount(**overrides) -> Discount:
    fields = {
        "code": "SAVE10",
        "type": "percentage",
        "value": 10,
        "scope": "site-wide",
        "stackable": True,
    }
    fields.update(overrides)
    return Discount(**fields)


def cart_with_subtotal(subtotal, shipping=0, items=None) -> CartContext:
    if items is None:
        items = [CartItem(id="p1", category="general", price=subtotal, quantity=1)]
    return CartContext(items=items, subtotal=subtotal, shippingCost=shipping)


def discount_record(**overrides) -> dict:
    """A discount as stored in the database, camelCase and JSON-friendly."""
    record = {
        "code": "SAVE10",
        "type": "percentage",
        "value": 10,
        "scope": "site-wide",
        "stackable": True,
        "isActive": True,
        "usageCount": 0,
    }
    record.update(overrides)
    return record
