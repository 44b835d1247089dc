import logging
from typing import List, Tuple

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

import firebase_util
from config import Config, setup_logging
from discounts import format_usd, order_total, resolve, validate, calculate_amount
from models import (
    CartContext, CheckoutRequest, CheckoutResponse, Discount, DiscountError,
    DiscountResolveRequest, DiscountResponse, DiscountType, DiscountUpdate,
    DiscountValidateRequest, DiscountValidateResponse, PricingResponse,
    normalize_code,
)

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI()

# 🔐 Allow frontend CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

INVALID_CODE_REASON = "Invalid coupon code."
DUPLICATE_CODE_REASON = "This code is already applied."
MALFORMED_RECORD_REASON = "Discount record is malformed"


# 🔐 Admin API key check
def check_admin(api_key: str):
    if not Config.ADMIN_API_KEY or api_key != Config.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def describe(discount: Discount) -> str:
    if discount.type == DiscountType.PERCENTAGE:
        return f"{format_usd(discount.value)}% off"
    if discount.type == DiscountType.FIXED:
        return f"${format_usd(discount.value)} off"
    return "Free shipping"


def load_candidates(codes: List[str]) -> Tuple[List[Discount], List[DiscountError]]:
    """Look up each requested code; anything unusable becomes an error entry."""
    discounts: List[Discount] = []
    errors: List[DiscountError] = []
    seen = set()
    for raw in codes:
        code = normalize_code(raw)
        if not code:
            continue
        if code in seen:
            errors.append(DiscountError(code=code, reason=DUPLICATE_CODE_REASON))
            continue
        seen.add(code)

        record = firebase_util.get_discount_by_code(code)
        if not record:
            errors.append(DiscountError(code=code, reason=INVALID_CODE_REASON))
            continue
        try:
            discounts.append(Discount.model_validate(record))
        except ValidationError as e:
            logger.warning("Discount record %s is malformed: %s", code, e)
            errors.append(DiscountError(code=code, reason=MALFORMED_RECORD_REASON))
    return discounts, errors


# 🎯 1. DISCOUNT ADMINISTRATION
@app.post("/api/discounts", response_model=DiscountResponse)
def create_discount(discount: Discount, api_key: str = Header(..., alias="x-api-key")):
    check_admin(api_key)

    if firebase_util.get_discount_record(discount.code):
        raise HTTPException(status_code=409, detail="Discount code already exists")

    firebase_util.create_discount_record(
        discount.code, discount.model_dump(mode="json", exclude_none=True)
    )
    logger.info("Created discount %s", discount.code)
    return {"message": f"✅ Discount {discount.code} created successfully"}


@app.get("/api/discounts", response_model=List[Discount])
def list_discounts(
    active: bool = Query(False),
    api_key: str = Header(..., alias="x-api-key"),
):
    check_admin(api_key)

    discounts = []
    for record in firebase_util.list_discounts(active_only=active):
        try:
            discounts.append(Discount.model_validate(record))
        except ValidationError as e:
            logger.warning("Skipping malformed discount %s: %s", record.get("code"), e)
    return discounts


@app.patch("/api/discounts/{code}", response_model=Discount)
def update_discount(code: str, patch: DiscountUpdate, api_key: str = Header(..., alias="x-api-key")):
    check_admin(api_key)

    existing = firebase_util.get_discount_record(code)
    if not existing:
        raise HTTPException(status_code=404, detail="Discount not found")

    changes = patch.model_dump(mode="json", exclude_unset=True)
    try:
        updated = Discount.model_validate({**existing, **changes})
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    firebase_util.update_discount_record(code, changes)
    logger.info("Updated discount %s: %s", updated.code, sorted(changes))
    return updated


@app.delete("/api/discounts/{code}", response_model=DiscountResponse)
def delete_discount(code: str, api_key: str = Header(..., alias="x-api-key")):
    check_admin(api_key)

    code = normalize_code(code)
    if not firebase_util.get_discount_record(code):
        raise HTTPException(status_code=404, detail="Discount not found")

    firebase_util.delete_discount_record(code)
    logger.info("Deleted discount %s", code)
    return {"message": f"✅ Discount {code} deleted"}


# 🎯 2. VALIDATE A SINGLE CODE
@app.post("/api/discounts/validate", response_model=DiscountValidateResponse)
def validate_discount(body: DiscountValidateRequest):
    cart = body.to_context()
    discounts, errors = load_candidates([body.code])
    if errors or not discounts:
        reason = errors[0].reason if errors else INVALID_CODE_REASON
        return {"valid": False, "message": f"❌ {reason}"}

    discount = discounts[0]
    result = validate(discount, cart)
    if not result.valid:
        return {"valid": False, "message": f"❌ {result.reason}"}

    amount = min(calculate_amount(discount, cart), cart.subtotal + cart.shippingCost)
    return {
        "valid": True,
        "discount": amount,
        "newTotal": order_total(cart, amount),
        "message": f"✅ {discount.code} applied – {describe(discount)}",
    }


# 🎯 3. PRICE A CART WITH SEVERAL CODES
@app.post("/api/discounts/resolve", response_model=PricingResponse)
def resolve_discounts(body: DiscountResolveRequest):
    cart = body.to_context()
    discounts, lookup_errors = load_candidates(body.codes)
    result = resolve(discounts, cart)

    return PricingResponse(
        subtotal=cart.subtotal,
        shippingCost=cart.shippingCost,
        totalDiscount=result.totalDiscount,
        total=order_total(cart, result.totalDiscount),
        appliedDiscounts=result.appliedDiscounts,
        errors=lookup_errors + result.errors,
    )


# 🎯 4. CHECKOUT
LIMIT_REACHED_REASON = "Discount usage limit reached"


def redeem_applied(discounts: List[Discount], cart: CartContext):
    """
    Resolve and redeem, dropping codes whose redemption is refused.

    Usage limits are only authoritative at redemption time, so a refused code
    is taken out and the rest resolved again. Returns the final resolution,
    the redeemed codes and the refused codes. Redemptions are given back if
    anything raises.
    """
    refused: List[str] = []
    while True:
        candidates = [d for d in discounts if d.code not in refused]
        result = resolve(candidates, cart)
        redeemed: List[str] = []
        try:
            for applied in result.appliedDiscounts:
                if not firebase_util.redeem_discount(applied.code):
                    refused.append(applied.code)
                    break
                redeemed.append(applied.code)
        except Exception:
            release_redemptions(redeemed)
            raise
        if len(redeemed) == len(result.appliedDiscounts):
            return result, redeemed, refused
        release_redemptions(redeemed)


def release_redemptions(codes: List[str]):
    for code in codes:
        try:
            firebase_util.release_discount(code)
        except Exception:
            logger.exception("Could not give back redemption of %s", code)


@app.post("/api/checkout", response_model=CheckoutResponse)
def checkout(body: CheckoutRequest):
    if not firebase_util.claim_order(body.sessionId):
        raise HTTPException(status_code=409, detail="Order already placed for this session")

    cart = body.to_context()
    redeemed: List[str] = []
    try:
        discounts, errors = load_candidates(body.codes)
        result, redeemed, refused = redeem_applied(discounts, cart)
        errors = errors + result.errors + [
            DiscountError(code=code, reason=LIMIT_REACHED_REASON) for code in refused
        ]

        total = order_total(cart, result.totalDiscount)
        firebase_util.save_order(body.sessionId, {
            "items": [item.model_dump(mode="json", exclude_none=True) for item in cart.items],
            "subtotal": cart.subtotal,
            "shippingCost": cart.shippingCost,
            "discount": result.totalDiscount,
            "appliedDiscountCodes": redeemed,
            "total": total,
        })
    except Exception:
        logger.exception("Checkout failed for session %s", body.sessionId)
        release_redemptions(redeemed)
        firebase_util.release_order(body.sessionId)
        raise
    logger.info("Order placed for session %s with codes %s", body.sessionId, redeemed)

    return {
        "success": True,
        "message": "✅ Order placed",
        "subtotal": cart.subtotal,
        "shippingCost": cart.shippingCost,
        "discount": result.totalDiscount,
        "total": total,
        "appliedDiscountCodes": redeemed,
        "errors": errors,
    }
