import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, db

from config import Config
from models import normalize_code

logger = logging.getLogger(__name__)

DISCOUNTS_PATH = "discounts"
ORDERS_PATH = "orders"

_db_ref = None


class UsageLimitReached(Exception):
    """Raised inside a redemption transaction to abort it."""


class OrderAlreadyPlaced(Exception):
    """Raised inside an order claim transaction to abort it."""


def get_db_ref():
    """Root reference of the Realtime Database, initializing the app on first use."""
    global _db_ref
    if _db_ref is None:
        if not firebase_admin._apps:
            try:
                cred = credentials.Certificate(Config.FIREBASE_CRED_JSON)
                firebase_admin.initialize_app(cred, {
                    'databaseURL': Config.FIREBASE_DB_URL
                })
            except Exception as e:
                raise RuntimeError(f"Firebase initialization failed: {e}") from e
        _db_ref = db.reference("/")
    return _db_ref


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _discount_ref(code: str):
    return get_db_ref().child(DISCOUNTS_PATH).child(normalize_code(code))


def list_discounts(active_only: bool = False) -> List[Dict[str, Any]]:
    records = get_db_ref().child(DISCOUNTS_PATH).get() or {}
    discounts = []
    for code, data in records.items():
        if not isinstance(data, dict):
            logger.warning("Skipping non-object discount record %s", code)
            continue
        if active_only and not data.get("isActive", True):
            continue
        discounts.append({"code": code, **data})
    return discounts


def get_discount_record(code: str) -> Optional[Dict[str, Any]]:
    code = normalize_code(code)
    if not code:
        return None
    data = _discount_ref(code).get()
    if not data:
        return None
    return {"code": code, **data}


def get_discount_by_code(code: str) -> Optional[Dict[str, Any]]:
    """Fetch a discount by code; None unless it exists and is active."""
    data = get_discount_record(code)
    if not data or not data.get("isActive", True):
        return None
    return data


def create_discount_record(code: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = _now_iso()
    payload = {**data, "code": normalize_code(code), "createdAt": now, "updatedAt": now}
    _discount_ref(code).set(payload)
    return payload


def update_discount_record(code: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    ref = _discount_ref(code)
    ref.update({**patch, "updatedAt": _now_iso()})
    return ref.get()


def delete_discount_record(code: str) -> None:
    _discount_ref(code).delete()


def redeem_discount(code: str) -> bool:
    """
    Increment `usageCount` of a discount inside a transaction.

    Returns False when the code is unknown or its usage limit is already
    reached, so concurrent checkouts cannot overspend a limited code.
    """
    def _increment(current):
        if not current:
            raise UsageLimitReached(f"{code} does not exist")
        limit = current.get("usageLimit")
        count = current.get("usageCount") or 0
        if limit is not None and count >= limit:
            raise UsageLimitReached(f"{code} reached its usage limit of {limit}")
        current["usageCount"] = count + 1
        return current

    try:
        _discount_ref(code).transaction(_increment)
    except UsageLimitReached as e:
        logger.info("Redemption refused: %s", e)
        return False
    return True


def release_discount(code: str) -> None:
    """Give back one redemption taken by `redeem_discount`."""
    def _decrement(current):
        if not current:
            return current
        current["usageCount"] = max((current.get("usageCount") or 0) - 1, 0)
        return current

    _discount_ref(code).transaction(_decrement)


def claim_order(session_id: str) -> bool:
    """
    Reserve `orders/<session_id>` for a checkout in progress.

    Returns False when the session already holds an order or a claim.
    """
    def _claim(current):
        if current:
            raise OrderAlreadyPlaced(session_id)
        return {"status": "pending", "createdAt": _now_iso()}

    try:
        get_db_ref().child(ORDERS_PATH).child(session_id).transaction(_claim)
    except OrderAlreadyPlaced:
        logger.info("Session '%s' already has an order", session_id)
        return False
    return True


def release_order(session_id: str) -> None:
    get_db_ref().child(ORDERS_PATH).child(session_id).delete()


def get_order(session_id: str) -> Optional[Dict[str, Any]]:
    return get_db_ref().child(ORDERS_PATH).child(session_id).get()


def save_order(session_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = {**data, "status": "placed", "createdAt": _now_iso()}
    try:
        get_db_ref().child(ORDERS_PATH).child(session_id).set(payload)
    except Exception:
        logger.exception("Error saving order for session '%s'", session_id)
        raise
    return payload
