# database.py
import math
import re
import secrets
import string
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import bcrypt
import certifi
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

from config import (
    MONGO_URI,
    MONGO_DB_NAME,
    SESSION_TTL_DAYS,
    SESSION_TOUCH_AFTER_HOURS,
)
from pricing import compute_totals, items_subtotal, round_half_up

# ------------------------------------------------------------
# MongoDB connection
# ------------------------------------------------------------

def _build_client() -> MongoClient:
    # Atlas clusters need the certifi bundle + stable API; local mongod does not
    if MONGO_URI.startswith("mongodb+srv://"):
        return MongoClient(MONGO_URI, tlsCAFile=certifi.where(), server_api=ServerApi('1'))
    return MongoClient(MONGO_URI)


client = _build_client()
database = client[MONGO_DB_NAME]

# ------------------------------------------------------------
# Collections
# ------------------------------------------------------------

users = database["users"]
products = database["products"]
orders = database["orders"]
coupons = database["coupons"]
notifications = database["notifications"]
contacts = database["contacts"]
sessions = database["sessions"]
counters = database["counters"]


def bind_database(db) -> None:
    """
    Point every collection handle at `db`.
    Used once at import and again by the test suite (mongomock).
    """
    global database, users, products, orders, coupons, notifications, contacts, sessions, counters

    database = db
    users = db["users"]
    products = db["products"]
    orders = db["orders"]
    coupons = db["coupons"]
    notifications = db["notifications"]
    contacts = db["contacts"]
    sessions = db["sessions"]
    counters = db["counters"]


def ensure_indexes() -> None:
    users.create_index([("email", ASCENDING)], unique=True)
    users.create_index([("user_id", ASCENDING)], unique=True)
    products.create_index([("product_id", ASCENDING)], unique=True)
    coupons.create_index([("code", ASCENDING)], unique=True)
    orders.create_index([("order_id", ASCENDING)], unique=True)
    orders.create_index([("razorpay_order_id", ASCENDING)])
    orders.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    sessions.create_index([("session_id", ASCENDING)], unique=True)
    # Mongo drops sessions on its own once expires_at passes
    sessions.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)


def ping_database() -> bool:
    try:
        database.command("ping")
        return True
    except PyMongoError:
        return False

# ------------------------------------------------------------
# Small helpers
# ------------------------------------------------------------

def _utcnow() -> datetime:
    # naive UTC, the same shape pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_sequence(name: str) -> int:
    doc = counters.find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return int(doc["seq"])


def _strip_mongo_id(doc: dict | None) -> dict | None:
    if not doc:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


def _safe_float(val: Any, default: float = 0.0) -> float:
    try:
        if val is None or val == "":
            return default
        return float(val)
    except (TypeError, ValueError):
        return default


def _safe_int(val: Any, default: int = 0) -> int:
    try:
        if val is None or val == "":
            return default
        return int(val)
    except (TypeError, ValueError):
        return default


def regex_contains(text: str) -> Dict[str, Any]:
    """Case-insensitive 'contains' match with the user text escaped."""
    return {"$regex": re.escape(text.strip()), "$options": "i"}


def regex_exact(text: str) -> Dict[str, Any]:
    return {"$regex": f"^{re.escape(text.strip())}$", "$options": "i"}

# ------------------------------------------------------------
# USERS
# ------------------------------------------------------------

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed hash in the document
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_user(name: str, email: str, password: str, role: str = "user") -> dict:
    """
    Insert a new user with a bcrypt password hash.
    Raises ValueError when the email is already registered.
    """
    email = normalize_email(email)
    if users.count_documents({"email": email}, limit=1) > 0:
        raise ValueError("User already exists")

    now = _utcnow()
    doc = {
        "user_id": next_sequence("user_id"),
        "name": name.strip(),
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "phone": None,
        "addresses": [],
        "last_spin_time": None,
        "last_order_completion_time": None,
        "created_at": now,
        "updated_at": now,
    }
    users.insert_one(doc)
    return _strip_mongo_id(doc)


def get_user_by_email(email: str) -> dict | None:
    return users.find_one({"email": normalize_email(email)}, {"_id": 0})


def get_user_by_id(user_id: int) -> dict | None:
    return users.find_one({"user_id": _safe_int(user_id)}, {"_id": 0})


def user_public_view(user: dict) -> dict:
    """Shape returned by /api/auth/me and login."""
    return {
        "id": user.get("user_id"),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "phone": user.get("phone"),
        "addresses": user.get("addresses") or [],
    }


def update_user_profile(user_id: int, updates: Dict[str, Any]) -> dict | None:
    """
    Only name / phone / addresses are writable from the profile page.
    Anything else in `updates` is ignored.
    """
    allowed = {k: v for k, v in updates.items() if k in ("name", "phone", "addresses") and v is not None}
    if "name" in allowed:
        allowed["name"] = allowed["name"].strip()
    allowed["updated_at"] = _utcnow()

    return users.find_one_and_update(
        {"user_id": int(user_id)},
        {"$set": allowed},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


def list_users_admin() -> List[Dict[str, Any]]:
    cursor = users.find({}, {"_id": 0, "password_hash": 0}).sort([("created_at", -1), ("user_id", -1)])
    return list(cursor)


def set_user_role(user_id: int, role: str) -> dict | None:
    return users.find_one_and_update(
        {"user_id": _safe_int(user_id)},
        {"$set": {"role": role, "updated_at": _utcnow()}},
        projection={"_id": 0, "password_hash": 0},
        return_document=ReturnDocument.AFTER,
    )


def mark_order_completion(user_id: int, when: datetime | None = None) -> None:
    users.update_one(
        {"user_id": int(user_id)},
        {"$set": {"last_order_completion_time": when or _utcnow()}}
    )

# ------------------------------------------------------------
# AUTH: SESSIONS (COOKIE-BASED LOGIN)
# ------------------------------------------------------------

def create_session(user: dict) -> str:
    """
    Create a new session for a user and return the session_id.
    This session_id is what you will set as a cookie.
    """
    now = _utcnow()
    session_id = str(uuid4())
    sessions.insert_one({
        "session_id": session_id,
        "user": {
            "id": user["user_id"],
            "name": user.get("name", ""),
            "email": user.get("email", ""),
            "role": user.get("role", "user"),
        },
        "created_at": now,
        "last_seen_at": now,
        "expires_at": now + timedelta(days=SESSION_TTL_DAYS),
    })
    return session_id


def get_session_by_id(session_id: str) -> dict | None:
    """
    Return a session document that is still valid (not expired).
    Sessions idle for more than SESSION_TOUCH_AFTER_HOURS get their
    expiry pushed forward; otherwise the document is left alone.
    """
    if not session_id:
        return None

    now = _utcnow()
    doc = sessions.find_one({
        "session_id": session_id,
        "expires_at": {"$gt": now}
    }, {"_id": 0})
    if not doc:
        return None

    last_seen = doc.get("last_seen_at") or doc.get("created_at") or now
    if now - last_seen >= timedelta(hours=SESSION_TOUCH_AFTER_HOURS):
        expires_at = now + timedelta(days=SESSION_TTL_DAYS)
        sessions.update_one(
            {"session_id": session_id},
            {"$set": {"last_seen_at": now, "expires_at": expires_at}}
        )
        doc["last_seen_at"] = now
        doc["expires_at"] = expires_at

    return doc


def update_session_user(user_id: int, name: str | None = None, role: str | None = None) -> None:
    """Keep the compact user on live sessions in step with profile / role edits."""
    fields = {}
    if name is not None:
        fields["user.name"] = name
    if role is not None:
        fields["user.role"] = role
    if fields:
        sessions.update_many({"user.id": int(user_id)}, {"$set": fields})


def delete_session(session_id: str) -> None:
    """
    Delete a session (for logout).
    """
    sessions.delete_many({"session_id": session_id})

# ------------------------------------------------------------
# PRODUCTS
# ------------------------------------------------------------

def list_products(category: str | None = None, search: str | None = None) -> List[Dict[str, Any]]:
    """
    Storefront listing: active products only, newest first.
    category == "all" (or empty) means no category filter.
    """
    query: Dict[str, Any] = {"active": {"$ne": False}}

    category = (category or "").strip()
    if category and category.lower() != "all":
        query["category"] = regex_exact(category)

    search = (search or "").strip()
    if search:
        query["name"] = regex_contains(search)

    cursor = products.find(query, {"_id": 0}).sort([("created_at", -1), ("product_id", -1)])
    return list(cursor)


def list_products_admin() -> List[Dict[str, Any]]:
    return list(products.find({}, {"_id": 0}).sort([("created_at", -1), ("product_id", -1)]))


def get_product_by_id(product_id: int) -> dict | None:
    return products.find_one({"product_id": _safe_int(product_id)}, {"_id": 0})


def get_products_by_ids_map(product_ids: list[int]) -> dict[int, dict]:
    """
    Fetch product docs for a list of product_ids and return:
      { product_id: product_doc }
    """
    product_ids = [int(x) for x in product_ids if x is not None]
    if not product_ids:
        return {}

    out: dict[int, dict] = {}
    for p in products.find({"product_id": {"$in": product_ids}}, {"_id": 0}):
        out[int(p["product_id"])] = p
    return out


def create_product(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert a product. Expects the image URL to be uploaded already.
    Raises ValueError on missing name / price / unit.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("Product name is required.")

    if data.get("base_price") in (None, ""):
        raise ValueError("Base price is required.")
    base_price = _safe_float(data.get("base_price"), -1.0)
    if base_price < 0:
        raise ValueError("Base price must be a non-negative number.")

    unit = (data.get("unit") or "").strip()
    if not unit:
        raise ValueError("Unit is required.")

    stock = (data.get("stock") or "in").strip().lower()
    if stock not in ("in", "out"):
        raise ValueError("Stock must be 'in' or 'out'.")

    now = _utcnow()
    doc = {
        "product_id": next_sequence("product_id"),
        "name": name,
        "base_price": base_price,
        "unit": unit,
        "category": (data.get("category") or "").strip() or None,
        "desc": (data.get("desc") or "").strip(),
        "image": data.get("image"),
        "trending": bool(data.get("trending", False)),
        "stock": stock,
        "active": bool(data.get("active", True)),
        "reviews": [],
        "rating": 0.0,
        "num_reviews": 0,
        "created_at": now,
        "updated_at": now,
    }
    products.insert_one(doc)
    return _strip_mongo_id(doc)


def update_product(product_id: int, updates: Dict[str, Any]) -> dict | None:
    allowed_fields = ("name", "category", "desc", "trending", "stock", "active", "image", "base_price", "unit")
    clean = {k: v for k, v in updates.items() if k in allowed_fields and v is not None}
    clean["updated_at"] = _utcnow()

    return products.find_one_and_update(
        {"product_id": _safe_int(product_id)},
        {"$set": clean},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


def delete_product(product_id: int) -> bool:
    res = products.delete_one({"product_id": _safe_int(product_id)})
    return res.deleted_count == 1

# ------------------------------------------------------------
# PRODUCT REVIEWS
# ------------------------------------------------------------

def _rating_summary(reviews: list[dict]) -> tuple[float, int]:
    if not reviews:
        return 0.0, 0
    avg = sum(int(r.get("rating") or 0) for r in reviews) / len(reviews)
    return round(avg, 1), len(reviews)


def upsert_product_review(product_id: int, user: dict, rating: int, comment: str) -> dict | None:
    """
    One review per user per product: a second review replaces the first.
    Returns the updated product or None when the product does not exist.
    """
    product = get_product_by_id(product_id)
    if not product:
        return None

    now = _utcnow()
    reviews = list(product.get("reviews") or [])
    user_id = int(user["user_id"])

    existing = next((r for r in reviews if r.get("user_id") == user_id), None)
    if existing:
        existing["rating"] = int(rating)
        existing["comment"] = comment.strip()
        existing["name"] = user.get("name", "")
        existing["updated_at"] = now
    else:
        reviews.append({
            "review_id": next_sequence("review_id"),
            "user_id": user_id,
            "name": user.get("name", ""),
            "rating": int(rating),
            "comment": comment.strip(),
            "created_at": now,
            "updated_at": now,
        })

    avg, count = _rating_summary(reviews)
    return products.find_one_and_update(
        {"product_id": int(product_id)},
        {"$set": {"reviews": reviews, "rating": avg, "num_reviews": count, "updated_at": now}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


def delete_product_review(product_id: int, review_id: int) -> Dict[str, Any]:
    """
    Returns:
      {"ok": True, "product": <updated product>}
      or {"ok": False, "detail": "..."} when product / review is missing.
    """
    product = get_product_by_id(product_id)
    if not product:
        return {"ok": False, "detail": "Product not found"}

    reviews = list(product.get("reviews") or [])
    kept = [r for r in reviews if r.get("review_id") != _safe_int(review_id)]
    if len(kept) == len(reviews):
        return {"ok": False, "detail": "Review not found"}

    avg, count = _rating_summary(kept)
    updated = products.find_one_and_update(
        {"product_id": int(product_id)},
        {"$set": {"reviews": kept, "rating": avg, "num_reviews": count, "updated_at": _utcnow()}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    return {"ok": True, "product": updated}


def get_top_reviews(limit: int = 6) -> List[Dict[str, Any]]:
    """
    Latest reviews across the whole catalogue, for the home page.
    """
    flat: list[dict] = []
    cursor = products.find({"num_reviews": {"$gt": 0}}, {"_id": 0, "product_id": 1, "name": 1, "reviews": 1})
    for p in cursor:
        for r in p.get("reviews") or []:
            flat.append({
                "review_id": r.get("review_id"),
                "product_id": p.get("product_id"),
                "product_name": p.get("name"),
                "user_name": r.get("name"),
                "rating": r.get("rating"),
                "comment": r.get("comment"),
                "created_at": r.get("created_at"),
            })

    flat.sort(key=lambda r: (r["created_at"] or datetime.min, r["review_id"] or 0), reverse=True)
    return flat[: int(limit)]


def count_reviews_by_user(user_id: int) -> int:
    total = 0
    for p in products.find({"reviews.user_id": int(user_id)}, {"_id": 0, "reviews": 1}):
        total += sum(1 for r in p.get("reviews") or [] if r.get("user_id") == int(user_id))
    return total

# ------------------------------------------------------------
# CART PRICING (server-side)
# ------------------------------------------------------------

def price_cart_items(items: list[dict]) -> Dict[str, Any]:
    """
    Reprice cart lines from the catalogue. Client prices are never trusted.

    Returns:
      {"ok": True, "items": [...], "subtotal": float}
      or {"ok": False, "message": "..."} if a product is missing,
      inactive or out of stock.
    """
    if not items:
        return {"ok": False, "message": "Your cart is empty."}

    product_ids = [_safe_int(i.get("product_id")) for i in items]
    products_map = get_products_by_ids_map(product_ids)

    priced: list[dict] = []
    for i in items:
        pid = _safe_int(i.get("product_id"))
        qty = _safe_int(i.get("qty"), 1)
        p = products_map.get(pid)

        if not p or p.get("active") is False:
            return {"ok": False, "message": f"Product #{pid} is no longer available."}
        if p.get("stock") == "out":
            return {"ok": False, "message": f"{p.get('name')} is out of stock."}
        if qty < 1:
            return {"ok": False, "message": "Quantity must be at least 1."}

        priced.append({
            "product_id": pid,
            "name": p.get("name"),
            "price": _safe_float(p.get("base_price")),
            "qty": qty,
            "image": p.get("image"),
        })

    return {"ok": True, "items": priced, "subtotal": items_subtotal(priced)}

# ------------------------------------------------------------
# Coupon Codes: Helpers
# ------------------------------------------------------------

def _normalize_coupon_code(code: str) -> str:
    return (code or "").strip().upper()


def get_all_coupons() -> List[Dict[str, Any]]:
    return list(coupons.find({}, {"_id": 0}).sort([("created_at", -1), ("code", 1)]))


def get_coupon_by_code(code: str) -> Optional[Dict[str, Any]]:
    code = _normalize_coupon_code(code)
    if not code:
        return None
    return coupons.find_one({"code": code}, {"_id": 0})


def coupon_code_exists(code: str) -> bool:
    code = _normalize_coupon_code(code)
    if not code:
        return False
    return coupons.count_documents({"code": code}, limit=1) > 0


def create_coupon(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Creates a coupon doc from admin input.
    Returns inserted doc (without _id). Raises ValueError on bad input.
    """
    code = _normalize_coupon_code(data.get("code", ""))
    if not code:
        raise ValueError("Coupon code is required.")

    if coupon_code_exists(code):
        raise ValueError("Coupon code already exists.")

    discount_type = (data.get("discount_type") or "percent").strip().lower()
    if discount_type not in ("percent", "flat"):
        raise ValueError("Invalid discount_type.")

    doc = {
        "code": code,
        "discount_type": discount_type,
        "value": _safe_float(data.get("value"), 0.0),
        "max_discount": _safe_float(data.get("max_discount"), 0.0),
        "min_order_amount": _safe_float(data.get("min_order_amount"), 0.0),
        "is_active": bool(data.get("is_active", True)),

        "is_spin_coupon": bool(data.get("is_spin_coupon", False)),
        "user_email": normalize_email(data["user_email"]) if data.get("user_email") else None,
        "expires_at": data.get("expires_at"),

        "max_uses": _safe_int(data.get("max_uses"), 0),
        "used_count": 0,

        "created_at": _utcnow(),
    }

    if doc["value"] <= 0:
        raise ValueError("value must be greater than 0.")
    if discount_type == "percent" and doc["value"] > 100:
        raise ValueError("Percent discount cannot exceed 100.")
    if doc["max_discount"] < 0 or doc["min_order_amount"] < 0:
        raise ValueError("max_discount / min_order_amount must be >= 0.")
    if doc["max_uses"] < 0:
        raise ValueError("max_uses must be >= 0.")

    coupons.insert_one(doc)
    return get_coupon_by_code(code)


def update_coupon_by_code(code: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Partial update. The code itself is immutable.
    Returns updated doc or None if not found.
    """
    existing = get_coupon_by_code(code)
    if not existing:
        return None
    code = existing["code"]

    updates = {k: v for k, v in updates.items() if v is not None}
    updates.pop("code", None)

    if "discount_type" in updates:
        dt = (updates.get("discount_type") or "").strip().lower()
        if dt not in ("percent", "flat"):
            raise ValueError("Invalid discount_type.")
        updates["discount_type"] = dt

    if "value" in updates:
        updates["value"] = _safe_float(updates.get("value"), 0.0)
        if updates["value"] <= 0:
            raise ValueError("value must be greater than 0.")

    # the stored value may turn invalid when only the type changes
    discount_type = updates.get("discount_type", existing.get("discount_type") or "percent")
    value = updates.get("value", _safe_float(existing.get("value")))
    if discount_type == "percent" and value > 100:
        raise ValueError("Percent discount cannot exceed 100.")

    if "max_uses" in updates:
        updates["max_uses"] = _safe_int(updates.get("max_uses"), 0)
        if updates["max_uses"] < 0:
            raise ValueError("max_uses must be >= 0.")

    if updates:
        coupons.update_one({"code": code}, {"$set": updates})
    return get_coupon_by_code(code)


def delete_coupon_by_code(code: str) -> bool:
    code = _normalize_coupon_code(code)
    if not code:
        return False
    result = coupons.delete_one({"code": code})
    return result.deleted_count == 1


def compute_coupon_discount(coupon: dict, cart_total: float) -> int:
    cart_total = max(0.0, _safe_float(cart_total))
    value = _safe_float(coupon.get("value"))

    if (coupon.get("discount_type") or "percent") == "flat":
        discount = value
    else:
        discount = cart_total * value / 100.0
        cap = _safe_float(coupon.get("max_discount"))
        if cap > 0 and discount > cap:
            discount = cap

    if discount > cart_total:
        discount = cart_total
    return int(math.floor(discount))


def validate_coupon(
    code: str | None,
    cart_total: float,
    email: str | None = None,
    is_auto_check: bool = False,
) -> Dict[str, Any]:
    """
    Validates a coupon WITHOUT marking it as used.

    Auto check (spin wheel): find the newest unused spin reward bound to `email`.
    Otherwise: look the code up among active coupons.

    Returns:
      {"ok": True, "discount_amount": int, "code": str, "message": str}
      or {"ok": False, "status_code": 400|404, "message": str}
    """
    email = normalize_email(email or "")
    cart_total = max(0.0, _safe_float(cart_total))

    coupon = None
    if is_auto_check and email:
        coupon = coupons.find_one(
            {"is_spin_coupon": True, "user_email": email, "is_active": True, "used_count": 0},
            {"_id": 0},
            sort=[("created_at", -1)],
        )
    else:
        code = _normalize_coupon_code(code or "")
        if code:
            coupon = coupons.find_one({"code": code, "is_active": True}, {"_id": 0})

    if not coupon:
        return {"ok": False, "status_code": 404, "message": "No valid discount found for this account."}

    bound_email = coupon.get("user_email")
    if bound_email and bound_email != email:
        return {"ok": False, "status_code": 400, "message": "This reward belongs to a different account."}

    expires_at = coupon.get("expires_at")
    if isinstance(expires_at, datetime) and expires_at < _utcnow():
        return {"ok": False, "status_code": 400, "message": "Coupon has expired."}

    min_order = _safe_float(coupon.get("min_order_amount"))
    if cart_total < min_order:
        return {
            "ok": False,
            "status_code": 400,
            "message": f"Minimum order amount is Rs {min_order:.0f} for this coupon.",
        }

    max_uses = _safe_int(coupon.get("max_uses"))
    if max_uses > 0 and _safe_int(coupon.get("used_count")) >= max_uses:
        return {"ok": False, "status_code": 400, "message": "This coupon has reached its usage limit."}

    discount = compute_coupon_discount(coupon, cart_total)
    return {
        "ok": True,
        "discount_amount": discount,
        "code": coupon["code"],
        "message": f"Coupon applied: {coupon['code']}",
    }


def redeem_coupon(code: str) -> None:
    code = _normalize_coupon_code(code)
    if code:
        coupons.update_one({"code": code}, {"$inc": {"used_count": 1}})

# ------------------------------------------------------------
# SPIN WHEEL
# ------------------------------------------------------------

# (weight, percent off, max discount in rupees or 0 for no cap)
SPIN_PRIZES = [
    (40, 0, 0),
    (20, 5, 0),
    (20, 10, 0),
    (15, 20, 0),
    (5, 50, 500),
]

SPIN_COUPON_HOURS = 24


def pick_spin_prize() -> tuple[int, int]:
    """Return (percent, max_discount); percent 0 means no prize."""
    weights = [w for w, _, _ in SPIN_PRIZES]
    _, percent, cap = random.choices(SPIN_PRIZES, weights=weights, k=1)[0]
    return percent, cap


def is_spin_eligible(user: dict) -> bool:
    last_spin = user.get("last_spin_time")
    if not last_spin:
        return True
    completed = user.get("last_order_completion_time")
    return bool(completed and completed > last_spin)


def record_spin(user_id: int) -> datetime:
    now = _utcnow()
    users.update_one({"user_id": int(user_id)}, {"$set": {"last_spin_time": now}})
    return now


def _generate_spin_code(percent: int) -> str:
    alphabet = string.ascii_uppercase + string.digits
    while True:
        suffix = "".join(secrets.choice(alphabet) for _ in range(6))
        code = f"SB{percent}-{suffix}"
        if not coupon_code_exists(code):
            return code


def create_spin_coupon(email: str, percent: int, max_discount: float = 0) -> Dict[str, Any]:
    return create_coupon({
        "code": _generate_spin_code(percent),
        "discount_type": "percent",
        "value": percent,
        "max_discount": max_discount,
        "is_spin_coupon": True,
        "user_email": email,
        "expires_at": _utcnow() + timedelta(hours=SPIN_COUPON_HOURS),
        "max_uses": 1,
    })

# ------------------------------------------------------------
# ORDERS
# ------------------------------------------------------------

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled", "Cancelled by User")
CANCELLED_STATUSES = {"Cancelled", "Cancelled by User"}
IN_TRANSIT_STATUSES = {"Shipped", "Delivered"}

# allowed admin transitions
ALLOWED_TRANSITIONS = {
    "Pending": {"Processing", "Shipped", "Delivered", "Cancelled"},
    "Processing": {"Shipped", "Delivered", "Cancelled"},
    "Shipped": {"Delivered"},
    "Delivered": set(),
    "Cancelled": set(),
    "Cancelled by User": set(),
}


def can_transition_order_status(current_status: str, new_status: str) -> bool:
    current_status = (current_status or "").strip()
    new_status = (new_status or "").strip()
    allowed = ALLOWED_TRANSITIONS.get(current_status, set())
    return new_status in allowed


def create_order(
    user_id: int,
    items: list[dict],
    totals: dict,
    shipping_address: dict,
    payment_method: str = "COD",
    coupon_code: str | None = None,
    order_id: int | None = None,
    razorpay_order_id: str | None = None,
) -> dict:
    """
    Store a new Pending, unpaid order. `totals` comes from pricing.compute_totals.
    Pass `order_id` when it was reserved earlier (Razorpay receipt).
    """
    now = _utcnow()
    doc = {
        "order_id": int(order_id) if order_id is not None else reserve_order_id(),
        "user_id": int(user_id),

        "items": items,

        "items_price": totals["items_price"],
        "tax_price": totals["tax_price"],
        "shipping_price": totals["shipping_price"],
        "discount": totals["discount"],
        "coupon_code": _normalize_coupon_code(coupon_code) or None,
        "total_amount": totals["total_amount"],

        "payment_method": payment_method,
        "razorpay_order_id": razorpay_order_id,
        "payment_id": None,
        "is_paid": False,
        "paid_at": None,

        "shipping_address": shipping_address,

        "status": "Pending",
        "refund_status": "None",
        "cancel_reason": "",

        "delivered_at": None,
        "created_at": now,
        "updated_at": now,
    }
    orders.insert_one(doc)
    return _strip_mongo_id(doc)


def reserve_order_id() -> int:
    # public order numbers start at 1000
    return next_sequence("order_id") + 999


def get_order_by_order_id(order_id: int) -> Optional[Dict[str, Any]]:
    try:
        oid = int(order_id)
    except (TypeError, ValueError):
        return None
    return orders.find_one({"order_id": oid}, {"_id": 0})


def get_order_by_razorpay_order_id(razorpay_order_id: str) -> Optional[Dict[str, Any]]:
    if not razorpay_order_id:
        return None
    return orders.find_one({"razorpay_order_id": razorpay_order_id}, {"_id": 0})


def _attach_users(order_docs: list[dict]) -> list[dict]:
    user_ids = list({int(o["user_id"]) for o in order_docs if o.get("user_id") is not None})
    users_map = {
        u["user_id"]: {"user_id": u["user_id"], "name": u.get("name"), "email": u.get("email")}
        for u in users.find({"user_id": {"$in": user_ids}}, {"_id": 0, "user_id": 1, "name": 1, "email": 1})
    }
    for o in order_docs:
        o["user"] = users_map.get(o.get("user_id"))
    return order_docs


def get_order_with_user(order_id: int) -> Optional[Dict[str, Any]]:
    """Single order with the customer's name / email attached under "user"."""
    order = get_order_by_order_id(order_id)
    if not order:
        return None
    return _attach_users([order])[0]


def list_all_orders() -> List[Dict[str, Any]]:
    docs = list(orders.find({}, {"_id": 0}).sort([("created_at", -1), ("order_id", -1)]))
    return _attach_users(docs)


def list_orders_for_user(user_id: int) -> List[Dict[str, Any]]:
    cursor = orders.find({"user_id": int(user_id)}, {"_id": 0}).sort([("created_at", -1), ("order_id", -1)])
    return list(cursor)


def update_order_status(
    order_id: int,
    new_status: str | None = None,
    refund_status: str | None = None,
) -> Dict[str, Any]:
    """
    Core mutation used by admin controls.

    - Validates the status transition (see ALLOWED_TRANSITIONS).
    - Delivered stamps delivered_at and unlocks the owner's next spin.
    - refund_status "Success" flips is_paid back to False.

    Returns:
      {"ok": True, "order": <updated order>, "status_changed": bool}
      or {"ok": False, "detail": "..."} on failure.
    """
    existing = get_order_by_order_id(order_id)
    if not existing:
        return {"ok": False, "detail": "Order not found"}

    now = _utcnow()
    updates: Dict[str, Any] = {}
    status_changed = False

    if new_status:
        current_status = existing.get("status") or "Pending"
        if new_status == current_status:
            return {"ok": False, "detail": f"Order is already {current_status}"}
        if not can_transition_order_status(current_status, new_status):
            return {"ok": False, "detail": f"Invalid transition: {current_status} -> {new_status}"}

        updates["status"] = new_status
        status_changed = True
        if new_status == "Delivered":
            updates["delivered_at"] = now

    if refund_status:
        updates["refund_status"] = refund_status
        if refund_status == "Success":
            updates["is_paid"] = False

    if not updates:
        return {"ok": False, "detail": "Nothing to update"}

    updates["updated_at"] = now
    orders.update_one({"order_id": existing["order_id"]}, {"$set": updates})

    if updates.get("status") == "Delivered":
        mark_order_completion(existing["user_id"], now)

    return {"ok": True, "order": get_order_by_order_id(existing["order_id"]), "status_changed": status_changed}


def cancel_order_by_user(order_id: int, user_id: int, reason: str | None = None) -> Dict[str, Any]:
    """
    Customer-side cancel.

    Returns:
      {"ok": True, "order": <updated order>}
      or {"ok": False, "status_code": 400|403|404, "detail": "..."}
    """
    existing = get_order_by_order_id(order_id)
    if not existing:
        return {"ok": False, "status_code": 404, "detail": "Order not found"}

    if int(existing.get("user_id", -1)) != int(user_id):
        return {"ok": False, "status_code": 403, "detail": "Not authorized to cancel this order"}

    status = existing.get("status")
    if status in IN_TRANSIT_STATUSES:
        return {"ok": False, "status_code": 400, "detail": "Cannot cancel an order already in transit."}
    if status in CANCELLED_STATUSES:
        return {"ok": False, "status_code": 400, "detail": "Order is already cancelled."}

    orders.update_one(
        {"order_id": existing["order_id"]},
        {"$set": {
            "status": "Cancelled by User",
            "cancel_reason": (reason or "").strip() or "No reason provided",
            "updated_at": _utcnow(),
        }}
    )
    return {"ok": True, "order": get_order_by_order_id(existing["order_id"])}


def mark_order_paid(order_id: int, payment_id: str) -> dict | None:
    now = _utcnow()
    return orders.find_one_and_update(
        {"order_id": int(order_id)},
        {"$set": {
            "status": "Processing",
            "payment_id": payment_id,
            "is_paid": True,
            "paid_at": now,
            "updated_at": now,
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


def mark_order_refund_initiated(order_id: int) -> dict | None:
    return orders.find_one_and_update(
        {"order_id": int(order_id)},
        {"$set": {
            "status": "Cancelled",
            "refund_status": "Processing",
            "is_paid": False,
            "updated_at": _utcnow(),
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


def recalculate_missing_order_pricing() -> int:
    """
    Backfill orders stored without a price breakdown.
    Returns how many orders were fixed.
    """
    fixed = 0
    cursor = orders.find(
        {"$or": [{"items_price": {"$exists": False}}, {"items_price": None}, {"items_price": 0}]},
        {"_id": 0, "order_id": 1, "items": 1, "discount": 1},
    )
    for o in list(cursor):
        subtotal = items_subtotal(o.get("items") or [])
        if subtotal <= 0:
            continue
        totals = compute_totals(subtotal, _safe_float(o.get("discount")))
        orders.update_one(
            {"order_id": o["order_id"]},
            {"$set": {
                "items_price": totals["items_price"],
                "shipping_price": totals["shipping_price"],
                "tax_price": totals["tax_price"],
                "total_amount": totals["total_amount"],
                "updated_at": _utcnow(),
            }}
        )
        fixed += 1
    return fixed

# ------------------------------------------------------------
# NOTIFICATIONS
# ------------------------------------------------------------

def create_notification(
    user_id: int,
    message: str,
    order_id: int | None = None,
    status_type: str = "Pending",
) -> dict:
    doc = {
        "notification_id": next_sequence("notification_id"),
        "user_id": int(user_id),
        "message": message,
        "order_id": order_id,
        "status_type": status_type,
        "read": False,
        "created_at": _utcnow(),
    }
    notifications.insert_one(doc)
    return _strip_mongo_id(doc)


def list_notifications(user_id: int, limit: int = 20) -> List[Dict[str, Any]]:
    cursor = (
        notifications.find({"user_id": int(user_id)}, {"_id": 0})
        .sort([("created_at", -1), ("notification_id", -1)])
        .limit(int(limit))
    )
    return list(cursor)


def mark_all_notifications_read(user_id: int) -> int:
    res = notifications.update_many({"user_id": int(user_id), "read": False}, {"$set": {"read": True}})
    return res.modified_count


def delete_notification(user_id: int, notification_id: int) -> bool:
    res = notifications.delete_one({"user_id": int(user_id), "notification_id": _safe_int(notification_id)})
    return res.deleted_count == 1


def clear_notifications(user_id: int) -> int:
    res = notifications.delete_many({"user_id": int(user_id)})
    return res.deleted_count

# ------------------------------------------------------------
# CONTACT MESSAGES
# ------------------------------------------------------------

def create_contact_message(email: str, message: str) -> dict:
    doc = {
        "message_id": next_sequence("message_id"),
        "email": normalize_email(email),
        "message": message.strip(),
        "created_at": _utcnow(),
        "is_replied": False,
        "reply_subject": None,
        "reply_message": None,
        "replied_at": None,
    }
    contacts.insert_one(doc)
    return _strip_mongo_id(doc)


def list_contact_messages() -> List[Dict[str, Any]]:
    return list(contacts.find({}, {"_id": 0}).sort([("created_at", -1), ("message_id", -1)]))


def get_contact_message(message_id: int) -> Optional[Dict[str, Any]]:
    return contacts.find_one({"message_id": _safe_int(message_id)}, {"_id": 0})


def set_contact_reply(message_id: int, subject: str, reply_message: str) -> dict | None:
    """
    Save admin reply + mark replied. The email is sent by the endpoint.
    """
    return contacts.find_one_and_update(
        {"message_id": _safe_int(message_id)},
        {"$set": {
            "is_replied": True,
            "reply_subject": subject.strip(),
            "reply_message": reply_message.strip(),
            "replied_at": _utcnow(),
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )

# ---------- dashboard helpers ----------

def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    idx = year * 12 + (month - 1) + delta
    return idx // 12, idx % 12 + 1


def _orders_per_month(months: int) -> List[Dict[str, Any]]:
    now = _utcnow()
    start_year, start_month = _shift_month(now.year, now.month, -(months - 1))
    since = datetime(start_year, start_month, 1)

    buckets: dict[tuple[int, int], int] = {}
    for o in orders.find({"created_at": {"$gte": since}}, {"_id": 0, "created_at": 1}):
        ts = o.get("created_at")
        if isinstance(ts, datetime):
            key = (ts.year, ts.month)
            buckets[key] = buckets.get(key, 0) + 1

    graph = []
    for i in range(months):
        y, m = _shift_month(start_year, start_month, i)
        graph.append({"month": datetime(y, m, 1).strftime("%b"), "orders": buckets.get((y, m), 0)})
    return graph


def _top_products_sold_by_quantity(top_n: int = 5) -> List[Dict[str, Any]]:
    sold: dict[int, int] = {}
    for o in orders.find({}, {"_id": 0, "items": 1}):
        for i in o.get("items") or []:
            pid = i.get("product_id")
            if pid is None:
                continue
            sold[int(pid)] = sold.get(int(pid), 0) + _safe_int(i.get("qty"))

    # products deleted since the sale drop out of the ranking
    products_map = get_products_by_ids_map(list(sold))
    ranked = sorted(
        ((pid, qty) for pid, qty in sold.items() if pid in products_map),
        key=lambda kv: kv[1],
        reverse=True,
    )[:top_n]

    out = []
    for pid, qty in ranked:
        p = products_map[pid]
        out.append({
            "product_id": pid,
            "name": p.get("name"),
            "image": p.get("image"),
            "total_sold": qty,
        })
    return out


def get_admin_dashboard(range_key: str = "6months") -> Dict[str, Any]:
    months = 12 if range_key == "1year" else 6

    recent = list(orders.find({}, {"_id": 0}).sort([("created_at", -1), ("order_id", -1)]).limit(5))

    return {
        "stats": {
            "products": products.count_documents({}),
            "orders": orders.count_documents({}),
            "users": users.count_documents({}),
        },
        "graph": _orders_per_month(months),
        "recent_orders": _attach_users(recent),
        "popular_products": _top_products_sold_by_quantity(5),
    }


VIP_SPEND_THRESHOLD = 10000


def get_users_intelligence() -> List[Dict[str, Any]]:
    """
    Per-user rollup for the admin Users page: spend, order count,
    reviews written, discounted orders, last delivery state, VIP flag.
    """
    out = []
    for u in list_users_admin():
        user_orders = list_orders_for_user(u["user_id"])
        total_spent = round_half_up(sum(_safe_float(o.get("total_amount")) for o in user_orders))
        last_location = "N/A"
        if user_orders:
            last_location = (user_orders[0].get("shipping_address") or {}).get("state") or "N/A"

        u["intelligence"] = {
            "total_spent": total_spent,
            "order_count": len(user_orders),
            "review_count": count_reviews_by_user(u["user_id"]),
            "coupon_count": sum(1 for o in user_orders if _safe_float(o.get("discount")) > 0),
            "last_location": last_location,
            "is_vip": total_spent > VIP_SPEND_THRESHOLD,
        }
        out.append(u)
    return out
