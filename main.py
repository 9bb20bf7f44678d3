import logging
from contextlib import asynccontextmanager

from email_validator import validate_email, EmailNotValidError
from fastapi import (
    FastAPI,
    Request,
    Form,
    Query,
    UploadFile,
    File,
    HTTPException,
)
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_404_NOT_FOUND

from config import (
    ALLOWED_ORIGINS,
    ALLOWED_DELIVERY_STATES,
    COOKIE_MAX_AGE_DAYS,
    COOKIE_SECURE,
    LOG_LEVEL,
    MAX_UPLOAD_BYTES,
    SESSION_COOKIE_NAME,
)
from schemas import *
from database import (
    cancel_order_by_user,
    check_password,
    clear_notifications,
    create_contact_message,
    create_coupon,
    create_notification,
    create_order,
    create_product,
    create_session,
    create_spin_coupon,
    create_user,
    delete_coupon_by_code,
    delete_notification,
    delete_product,
    delete_product_review,
    delete_session,
    ensure_indexes,
    get_admin_dashboard,
    get_all_coupons,
    get_contact_message,
    get_order_by_order_id,
    get_order_by_razorpay_order_id,
    get_order_with_user,
    get_product_by_id,
    get_session_by_id,
    get_top_reviews,
    get_user_by_email,
    get_user_by_id,
    get_users_intelligence,
    is_spin_eligible,
    list_all_orders,
    list_contact_messages,
    list_notifications,
    list_orders_for_user,
    list_products,
    list_products_admin,
    list_users_admin,
    mark_all_notifications_read,
    mark_order_paid,
    mark_order_refund_initiated,
    pick_spin_prize,
    ping_database,
    price_cart_items,
    recalculate_missing_order_pricing,
    record_spin,
    redeem_coupon,
    reserve_order_id,
    set_contact_reply,
    set_user_role,
    update_coupon_by_code,
    update_order_status,
    update_product,
    update_session_user,
    update_user_profile,
    upsert_product_review,
    user_public_view,
    validate_coupon,
)
from methods import (
    send_contact_reply_email,
    send_login_alert_email,
    send_order_placed_email,
    send_refund_email,
    send_status_update_email,
    send_welcome_email,
    upload_product_image,
)
from payments import (
    PaymentGatewayError,
    create_razorpay_order,
    refund_payment,
    verify_payment_signature,
)
from pricing import compute_totals

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# App
# ------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.error("Could not create indexes: %r", e)
    yield


app = FastAPI(title="SeaBite API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.debug("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response

# ------------------------------------------------------------
# Error Handling
# ------------------------------------------------------------

@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if exc.status_code == HTTP_404_NOT_FOUND and detail == "Not Found":
        detail = "Route not found"
    return JSONResponse({"ok": False, "message": detail}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"ok": False, "message": "Internal server error"}, status_code=500)

# ------------------------------------------------------------
# Auth helpers
# ------------------------------------------------------------

def get_current_session(request: Request) -> dict | None:
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if not session_id:
        return None
    return get_session_by_id(session_id)


def get_current_user(request: Request) -> dict | None:
    """
    Read the session cookie and return the live user document,
    or None if not logged in / session expired.
    """
    session_doc = get_current_session(request)
    if not session_doc:
        return None
    return get_user_by_id(session_doc["user"]["id"])


def require_user(request: Request) -> dict:
    user = get_current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(request: Request) -> dict:
    session_doc = get_current_session(request)
    if not session_doc:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = get_user_by_id(session_doc["user"]["id"])
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if session_doc["user"].get("role") != "admin" or user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied: Admins only")
    return user

# ------------------------------------------------------------
# Best-effort side effects
# ------------------------------------------------------------

def notify_user(user_id: int, message: str, order_id: int | None = None, status_type: str = "Pending") -> None:
    try:
        create_notification(user_id, message, order_id=order_id, status_type=status_type)
    except PyMongoError as e:
        logger.error("Notification for user %s failed: %r", user_id, e)


def send_quietly(send_fn, *args) -> None:
    # emails never fail the request
    try:
        send_fn(*args)
    except Exception as e:
        logger.error("%s failed: %r", send_fn.__name__, e)

# ------------------------------------------------------------
# Service endpoints
# ------------------------------------------------------------

@app.get("/", response_class=PlainTextResponse)
async def root():
    return "SeaBite Server Running"


@app.get("/health")
async def health():
    if ping_database():
        return {"status": "ok"}
    return JSONResponse({"status": "down"}, status_code=503)

# ------------------------------------------------------------
# AUTH
# ------------------------------------------------------------

@app.post("/api/auth/register", status_code=201)
async def api_register(payload: RegisterIn):
    name = payload.name.strip()
    email = payload.email.strip().lower()
    password = payload.password

    if not name or not email or not password:
        return JSONResponse({"ok": False, "message": "All fields are required"}, status_code=400)

    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return JSONResponse({"ok": False, "message": "Please enter a valid email address"}, status_code=400)

    if len(password) < 6:
        return JSONResponse({"ok": False, "message": "Password must be at least 6 characters"}, status_code=400)

    try:
        user = create_user(name=name, email=email, password=password)
    except ValueError as e:
        return JSONResponse({"ok": False, "message": str(e)}, status_code=400)

    logger.info("New user registered: %s", email)
    send_quietly(send_welcome_email, email, name)

    return {"ok": True, "message": "Registration successful", "user": user_public_view(user)}


@app.post("/api/auth/login")
async def api_login(payload: LoginIn):
    user = get_user_by_email(payload.email)
    if not user or not check_password(payload.password, user.get("password_hash")):
        return JSONResponse({"ok": False, "message": "Invalid email or password"}, status_code=400)

    session_id = create_session(user)

    response = JSONResponse(jsonable_encoder({
        "ok": True,
        "message": "Login successful",
        "user": user_public_view(user),
    }))
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        max_age=COOKIE_MAX_AGE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )

    send_quietly(send_login_alert_email, user["email"], user.get("name", ""))
    return response


@app.post("/api/auth/logout")
async def api_logout(request: Request):
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if session_id:
        delete_session(session_id)

    response = JSONResponse({"ok": True, "message": "Logged out"})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@app.get("/api/auth/me")
async def api_me(request: Request):
    user = require_user(request)
    return user_public_view(user)


@app.put("/api/auth/me")
async def api_update_me(request: Request, payload: ProfileUpdateIn):
    user = require_user(request)

    updates = payload.model_dump(exclude_none=True)
    updated = update_user_profile(user["user_id"], updates)
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")

    if "name" in updates:
        update_session_user(user["user_id"], name=updated["name"])

    return {"ok": True, "message": "Profile updated", "user": user_public_view(updated)}

# ------------------------------------------------------------
# PRODUCTS (storefront)
# ------------------------------------------------------------

@app.get("/api/products")
async def api_products(category: str | None = Query(None), search: str | None = Query(None)):
    return {"ok": True, "products": list_products(category=category, search=search)}


@app.get("/api/products/top-reviews")
async def api_top_reviews():
    return {"ok": True, "reviews": get_top_reviews(limit=6)}


@app.get("/api/products/{product_id}")
async def api_product_details(product_id: int):
    product = get_product_by_id(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/api/products/{product_id}/reviews", status_code=201)
async def api_add_review(request: Request, product_id: int, payload: ReviewIn):
    user = require_user(request)

    product = upsert_product_review(product_id, user, payload.rating, payload.comment)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    return {
        "ok": True,
        "message": "Review saved",
        "rating": product["rating"],
        "num_reviews": product["num_reviews"],
        "reviews": product["reviews"],
    }

# ------------------------------------------------------------
# ADMIN: PRODUCTS
# ------------------------------------------------------------

@app.get("/api/admin/products")
async def admin_api_products(request: Request):
    require_admin(request)
    return {"ok": True, "products": list_products_admin()}


@app.get("/api/admin/products/{product_id}")
async def admin_api_product(request: Request, product_id: int):
    require_admin(request)
    product = get_product_by_id(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/api/admin/products", status_code=201)
async def admin_api_create_product(
    request: Request,
    name: str = Form(""),
    category: str = Form(""),
    desc: str = Form(""),
    trending: bool = Form(False),
    stock: str = Form("in"),
    base_price: str = Form(""),
    unit: str = Form(""),
    image: UploadFile | None = File(None),
):
    require_admin(request)

    if image is None or not image.filename:
        return JSONResponse({"ok": False, "message": "Image is required"}, status_code=400)

    if not base_price.strip() or not unit.strip():
        return JSONResponse({"ok": False, "message": "Base price and unit are required"}, status_code=400)

    if not (image.content_type or "").startswith("image/"):
        return JSONResponse({"ok": False, "message": "Only image files are allowed"}, status_code=400)

    content = await image.read()
    if len(content) > MAX_UPLOAD_BYTES:
        limit_mb = MAX_UPLOAD_BYTES // (1024 * 1024)
        return JSONResponse({"ok": False, "message": f"Image must be {limit_mb} MB or smaller"}, status_code=400)

    try:
        image_url = upload_product_image(content, image.filename)
    except Exception as e:
        logger.error("Product image upload failed: %r", e)
        return JSONResponse({"ok": False, "message": "Image upload failed"}, status_code=502)

    try:
        product = create_product({
            "name": name,
            "category": category,
            "desc": desc,
            "trending": trending,
            "stock": stock,
            "base_price": base_price,
            "unit": unit,
            "image": image_url,
        })
    except ValueError as e:
        return JSONResponse({"ok": False, "message": str(e)}, status_code=400)

    logger.info("Product #%s created: %s", product["product_id"], product["name"])
    return {"ok": True, "message": "Product created", "product": product}


@app.put("/api/admin/products/{product_id}")
async def admin_api_update_product(request: Request, product_id: int, payload: ProductUpdateIn):
    require_admin(request)

    updated = update_product(product_id, payload.model_dump(exclude_none=True))
    if not updated:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True, "message": "Product updated", "product": updated}


@app.delete("/api/admin/products/{product_id}")
async def admin_api_delete_product(request: Request, product_id: int):
    require_admin(request)

    if not delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True, "message": "Product deleted"}


@app.delete("/api/admin/products/{product_id}/reviews/{review_id}")
async def admin_api_delete_review(request: Request, product_id: int, review_id: int):
    require_admin(request)

    result = delete_product_review(product_id, review_id)
    if not result.get("ok"):
        raise HTTPException(status_code=404, detail=result.get("detail"))

    product = result["product"]
    return {
        "ok": True,
        "message": "Review deleted",
        "rating": product["rating"],
        "num_reviews": product["num_reviews"],
    }

# ------------------------------------------------------------
# CART PRICING
# ------------------------------------------------------------

@app.post("/api/cart/totals")
async def api_cart_totals(request: Request, payload: CartTotalsIn):
    priced = price_cart_items([i.model_dump() for i in payload.items])
    if not priced.get("ok"):
        return JSONResponse({"ok": False, "message": priced.get("message")}, status_code=400)

    subtotal = priced["subtotal"]
    discount = 0
    coupon_message = None

    if payload.coupon_code:
        session_doc = get_current_session(request)
        email = session_doc["user"]["email"] if session_doc else None
        result = validate_coupon(payload.coupon_code, subtotal, email=email)
        if result.get("ok"):
            discount = result["discount_amount"]
        coupon_message = result.get("message")

    # Always return totals so UI can update/reset cleanly
    return {
        "ok": True,
        "items": priced["items"],
        "coupon_message": coupon_message,
        **compute_totals(subtotal, discount),
    }

# ------------------------------------------------------------
# COUPONS
# ------------------------------------------------------------

@app.post("/api/coupons/validate")
async def api_validate_coupon(request: Request, payload: CouponValidateIn):
    # a logged-in customer can only check rewards bound to their own account
    session_doc = get_current_session(request)
    email = session_doc["user"]["email"] if session_doc else (payload.email or "")

    result = validate_coupon(
        payload.code,
        payload.cart_total,
        email=email,
        is_auto_check=payload.is_auto_check,
    )
    if not result.get("ok"):
        return JSONResponse(
            {"ok": False, "message": result.get("message")},
            status_code=result.get("status_code", 400),
        )
    return result


@app.get("/api/coupons")
async def admin_api_coupons(request: Request):
    require_admin(request)
    return {"ok": True, "coupons": get_all_coupons()}


@app.post("/api/coupons", status_code=201)
async def admin_api_create_coupon(request: Request, payload: CouponCreateIn):
    require_admin(request)

    try:
        coupon = create_coupon(payload.model_dump())
    except ValueError as e:
        return JSONResponse({"ok": False, "message": str(e)}, status_code=400)

    return {"ok": True, "message": "Coupon created", "coupon": coupon}


@app.put("/api/coupons/{code}")
async def admin_api_update_coupon(request: Request, code: str, payload: CouponUpdateIn):
    require_admin(request)

    try:
        updated = update_coupon_by_code(code, payload.model_dump(exclude_none=True))
    except ValueError as e:
        return JSONResponse({"ok": False, "message": str(e)}, status_code=400)

    if not updated:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"ok": True, "message": "Coupon updated", "coupon": updated}


@app.delete("/api/coupons/{code}")
async def admin_api_delete_coupon(request: Request, code: str):
    require_admin(request)

    if not delete_coupon_by_code(code):
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"ok": True, "message": "Coupon deleted"}

# ------------------------------------------------------------
# CHECKOUT (shared by COD orders and Razorpay checkout)
# ------------------------------------------------------------

def _delivery_state_allowed(state: str) -> bool:
    state = (state or "").strip().lower()
    return any(state == s.lower() for s in ALLOWED_DELIVERY_STATES)


def place_order(user: dict, payload: PlaceOrderIn, payment_method: str):
    """
    Reprice, apply coupon, (optionally) open a Razorpay order, then store.
    Returns a JSONResponse on rejection, else the response dict.
    """
    address = payload.shipping_address
    if not _delivery_state_allowed(address.state):
        return JSONResponse(
            {"ok": False, "message": f"Sorry, we currently deliver only in: {', '.join(ALLOWED_DELIVERY_STATES)}"},
            status_code=400,
        )

    priced = price_cart_items([i.model_dump() for i in payload.items])
    if not priced.get("ok"):
        return JSONResponse({"ok": False, "message": priced.get("message")}, status_code=400)

    subtotal = priced["subtotal"]
    discount = 0
    coupon_code = None
    if payload.coupon_code:
        result = validate_coupon(payload.coupon_code, subtotal, email=user["email"])
        if not result.get("ok"):
            return JSONResponse({"ok": False, "message": result.get("message")}, status_code=400)
        discount = result["discount_amount"]
        coupon_code = result["code"]

    totals = compute_totals(subtotal, discount)
    order_id = reserve_order_id()

    razorpay_order = None
    if payment_method == "Prepaid":
        try:
            razorpay_order = create_razorpay_order(order_id, totals["total_amount"])
        except PaymentGatewayError as e:
            return JSONResponse({"ok": False, "message": str(e)}, status_code=502)

    order = create_order(
        user_id=user["user_id"],
        items=priced["items"],
        totals=totals,
        shipping_address=address.model_dump(),
        payment_method=payment_method,
        coupon_code=coupon_code,
        order_id=order_id,
        razorpay_order_id=razorpay_order["id"] if razorpay_order else None,
    )

    if coupon_code:
        redeem_coupon(coupon_code)

    logger.info("Order #%s placed by user %s (%s, %.2f)", order_id, user["user_id"], payment_method, totals["total_amount"])

    if payment_method == "COD":
        send_quietly(send_order_placed_email, user["email"], user.get("name", ""), order)
        notify_user(user["user_id"], f"Your order #{order_id} has been placed successfully.", order_id, "Pending")

    return {
        "ok": True,
        "order": razorpay_order,
        "order_id": order_id,
        "total_amount": totals["total_amount"],
    }

# ------------------------------------------------------------
# ORDERS
# ------------------------------------------------------------

@app.post("/api/orders", status_code=201)
async def api_place_order(request: Request, payload: PlaceOrderIn):
    user = require_user(request)
    return place_order(user, payload, "COD")


@app.get("/api/orders")
async def admin_api_orders(request: Request):
    require_admin(request)
    return {"ok": True, "orders": list_all_orders()}


@app.get("/api/orders/myorders")
async def api_my_orders(request: Request):
    user = require_user(request)
    return {"ok": True, "orders": list_orders_for_user(user["user_id"])}


@app.get("/api/orders/{order_id}")
async def api_order_details(request: Request, order_id: int):
    user = require_user(request)

    order = get_order_with_user(order_id)
    # other people's orders look exactly like missing ones
    if not order or (order["user_id"] != user["user_id"] and user.get("role") != "admin"):
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.put("/api/orders/{order_id}/status")
async def admin_api_update_order_status(request: Request, order_id: int, payload: OrderStatusUpdateIn):
    require_admin(request)

    result = update_order_status(order_id, new_status=payload.status, refund_status=payload.refund_status)
    if not result.get("ok"):
        code = 404 if result.get("detail") == "Order not found" else 400
        return JSONResponse({"ok": False, "message": result.get("detail")}, status_code=code)

    order = result["order"]
    if result.get("status_changed"):
        owner = get_user_by_id(order["user_id"])
        if owner:
            send_quietly(send_status_update_email, owner["email"], owner.get("name", ""), order["order_id"], order["status"])
        notify_user(order["user_id"], f"Your order #{order['order_id']} is now {order['status']}.", order["order_id"], order["status"])

    return {"ok": True, "message": "Order updated", "order": order}


@app.put("/api/orders/{order_id}/cancel")
async def api_cancel_order(request: Request, order_id: int, payload: CancelOrderIn | None = None):
    user = require_user(request)

    reason = payload.reason if payload else None
    result = cancel_order_by_user(order_id, user["user_id"], reason)
    if not result.get("ok"):
        return JSONResponse({"ok": False, "message": result.get("detail")}, status_code=result.get("status_code", 400))

    notify_user(user["user_id"], f"Order #{order_id} was cancelled.", order_id, "Cancelled by User")
    return {"ok": True, "message": "Order cancelled", "order": result["order"]}


@app.post("/api/admin/orders/recalculate-pricing")
async def admin_api_recalculate_pricing(request: Request):
    require_admin(request)
    fixed = recalculate_missing_order_pricing()
    return {"ok": True, "fixed": fixed, "message": f"Recalculated pricing for {fixed} orders"}

# ------------------------------------------------------------
# PAYMENTS (Razorpay)
# ------------------------------------------------------------

@app.post("/api/payment/checkout")
async def api_payment_checkout(request: Request, payload: CheckoutIn):
    user = require_user(request)
    return place_order(user, payload, payload.payment_method)


@app.post("/api/payment/verify")
async def api_payment_verify(request: Request, payload: PaymentVerifyIn):
    user = require_user(request)

    if not verify_payment_signature(payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature):
        return JSONResponse({"ok": False, "message": "Invalid Signature"}, status_code=400)

    order = get_order_by_razorpay_order_id(payload.razorpay_order_id)
    if not order or order["user_id"] != user["user_id"]:
        raise HTTPException(status_code=404, detail="Order not found")

    if order.get("is_paid"):
        return {"ok": True, "message": "Payment already verified", "order_id": order["order_id"]}

    updated = mark_order_paid(order["order_id"], payload.razorpay_payment_id)
    logger.info("Payment %s captured for order #%s", payload.razorpay_payment_id, order["order_id"])

    send_quietly(send_order_placed_email, user["email"], user.get("name", ""), updated)
    notify_user(user["user_id"], f"Payment received. Your order #{order['order_id']} is being processed.", order["order_id"], "Processing")

    return {"ok": True, "message": "Payment verified", "order_id": order["order_id"]}


@app.put("/api/payment/refund")
async def admin_api_refund(request: Request, payload: RefundIn):
    require_admin(request)

    order = get_order_by_order_id(payload.order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    if not order.get("payment_id"):
        return JSONResponse({"ok": False, "message": "No online payment found for this order"}, status_code=400)

    if order.get("refund_status") in ("Processing", "Success"):
        return JSONResponse({"ok": False, "message": "Refund already initiated for this order"}, status_code=400)

    try:
        refund = refund_payment(order["payment_id"], order.get("total_amount"))
    except PaymentGatewayError as e:
        return JSONResponse({"ok": False, "message": str(e)}, status_code=502)

    updated = mark_order_refund_initiated(order["order_id"])
    logger.info("Refund %s initiated for order #%s", refund.get("id"), order["order_id"])

    notify_user(order["user_id"], f"A refund for order #{order['order_id']} has been initiated.", order["order_id"], "Cancelled")
    owner = get_user_by_id(order["user_id"])
    if owner:
        send_quietly(send_refund_email, owner["email"], owner.get("name", ""), order["order_id"], order.get("total_amount", 0))

    return {"ok": True, "message": "Refund initiated", "refund_id": refund.get("id"), "order": updated}

# ------------------------------------------------------------
# SPIN WHEEL
# ------------------------------------------------------------

@app.get("/api/spin/status")
async def api_spin_status(request: Request):
    user = require_user(request)
    return {
        "eligible": is_spin_eligible(user),
        "last_spin_time": user.get("last_spin_time"),
        "last_order_completion_time": user.get("last_order_completion_time"),
    }


@app.post("/api/spin/spin")
async def api_spin(request: Request):
    user = require_user(request)

    if not is_spin_eligible(user):
        return JSONResponse({"ok": False, "message": "You've already used your spin!"}, status_code=403)

    percent, max_discount = pick_spin_prize()
    record_spin(user["user_id"])

    if not percent:
        return {"ok": True, "result": "BETTER_LUCK", "message": "Better luck next time!"}

    coupon = create_spin_coupon(user["email"], percent, max_discount)
    logger.info("Spin reward %s (%s%%) for user %s", coupon["code"], percent, user["user_id"])

    return {
        "ok": True,
        "result": "COUPON",
        "discount_value": percent,
        "code": coupon["code"],
        "expires_at": coupon["expires_at"],
    }

# ------------------------------------------------------------
# NOTIFICATIONS
# ------------------------------------------------------------

@app.get("/api/notifications")
async def api_notifications(request: Request):
    user = require_user(request)
    return {"ok": True, "notifications": list_notifications(user["user_id"], limit=20)}


@app.put("/api/notifications/read-all")
async def api_notifications_read_all(request: Request):
    user = require_user(request)
    count = mark_all_notifications_read(user["user_id"])
    return {"ok": True, "updated": count}


@app.delete("/api/notifications/clear/all")
async def api_notifications_clear(request: Request):
    user = require_user(request)
    count = clear_notifications(user["user_id"])
    return {"ok": True, "deleted": count}


@app.delete("/api/notifications/{notification_id}")
async def api_notification_delete(request: Request, notification_id: int):
    user = require_user(request)
    if not delete_notification(user["user_id"], notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"ok": True, "message": "Notification deleted"}

# ------------------------------------------------------------
# CONTACT MESSAGES
# ------------------------------------------------------------

@app.post("/api/contact", status_code=201)
async def api_contact_submit(payload: ContactCreate):
    email = payload.email.strip()
    message = payload.message.strip()

    if not email or not message:
        return JSONResponse({"ok": False, "message": "Email and message are required"}, status_code=400)

    doc = create_contact_message(email, message)
    return {
        "ok": True,
        "message": "Your message has been received. Our team will reply by email soon.",
        "message_id": doc["message_id"],
    }


@app.get("/api/contact")
async def admin_api_contact_messages(request: Request):
    require_admin(request)
    return {"ok": True, "messages": list_contact_messages()}


@app.post("/api/contact/{message_id}/reply")
async def admin_api_contact_reply(request: Request, message_id: int, payload: AdminReplyIn):
    require_admin(request)

    msg = get_contact_message(message_id)
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")

    # Update DB first (so even if email fails, reply is recorded)
    updated = set_contact_reply(message_id, payload.subject, payload.message)

    send_quietly(send_contact_reply_email, msg["email"], payload.subject.strip(), payload.message.strip(), msg.get("message", ""))
    return {"ok": True, "message": "Reply sent", "contact": updated}

# ------------------------------------------------------------
# ADMIN: DASHBOARD & USERS
# ------------------------------------------------------------

@app.get("/api/admin")
async def admin_api_dashboard(request: Request, range_key: str = Query("6months", alias="range")):
    require_admin(request)
    return {"ok": True, **get_admin_dashboard(range_key)}


@app.get("/api/admin/users")
async def admin_api_users(request: Request):
    require_admin(request)
    return {"ok": True, "users": list_users_admin()}


@app.get("/api/admin/users/intelligence")
async def admin_api_users_intelligence(request: Request):
    require_admin(request)
    return {"ok": True, "users": get_users_intelligence()}


@app.put("/api/admin/users/{user_id}/role")
async def admin_api_set_role(request: Request, user_id: int, payload: RoleUpdateIn):
    require_admin(request)

    role = (payload.role or "").strip().lower()
    if role not in ("admin", "user"):
        return JSONResponse({"ok": False, "message": "Invalid role"}, status_code=400)

    updated = set_user_role(user_id, role)
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")

    update_session_user(user_id, role=role)
    logger.info("User %s role set to %s", user_id, role)
    return {"ok": True, "message": "Role updated", "user": updated}
