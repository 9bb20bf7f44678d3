import logging
import random
from datetime import timedelta

import database
from database import _utcnow, create_product, next_sequence, reserve_order_id
from pricing import compute_totals, items_subtotal

logger = logging.getLogger(__name__)

SEED_PRODUCTS = [
    {"name": "Tiger Prawns", "category": "Prawns", "base_price": 650, "unit": "kg", "trending": True,
     "desc": "Large wild-caught tiger prawns, cleaned and deveined on request."},
    {"name": "White Prawns", "category": "Prawns", "base_price": 420, "unit": "kg", "trending": False,
     "desc": "Sweet, tender white prawns from the Godavari delta."},
    {"name": "Blue Crab", "category": "Crab", "base_price": 540, "unit": "kg", "trending": True,
     "desc": "Live blue swimmer crabs, packed fresh the same morning."},
    {"name": "Mud Crab", "category": "Crab", "base_price": 980, "unit": "kg", "trending": False,
     "desc": "Meaty mud crabs, perfect for pepper fry and curries."},
    {"name": "Seer Fish (Vanjaram)", "category": "Fish", "base_price": 1100, "unit": "kg", "trending": True,
     "desc": "Steak-cut seer fish, firm and boneless."},
    {"name": "Pomfret", "category": "Fish", "base_price": 850, "unit": "kg", "trending": False,
     "desc": "Whole silver pomfret, scaled and gutted."},
    {"name": "Norwegian Salmon", "category": "Fish", "base_price": 2400, "unit": "kg", "trending": True,
     "desc": "Imported Atlantic salmon fillets, skin on."},
    {"name": "Lobster Tail", "category": "Lobster", "base_price": 1800, "unit": "500g", "trending": False,
     "desc": "Rock lobster tails, frozen at sea."},
    {"name": "Dry Fish (Anchovy)", "category": "Dry Fish", "base_price": 320, "unit": "250g", "trending": False,
     "desc": "Sun-dried anchovies from Kakinada, hand sorted."},
]

SAMPLE_STATES = ["Andhra Pradesh", "Telangana"]
SAMPLE_CITIES = ["Visakhapatnam", "Vijayawada", "Hyderabad", "Kakinada", "Warangal"]

STATUSES = ["Pending", "Processing", "Shipped", "Delivered", "Cancelled", "Cancelled by User"]


def seed_products() -> int:
    """
    Insert the demo catalogue. Products already present (by name) are skipped.
    Returns how many were inserted.
    """
    inserted = 0
    for p in SEED_PRODUCTS:
        if database.products.count_documents({"name": p["name"]}, limit=1):
            continue
        create_product({**p, "stock": "in", "image": None})
        inserted += 1
    logger.info("Seeded %s products", inserted)
    return inserted


def random_past_datetime(days_back=180):
    return _utcnow() - timedelta(
        days=random.randint(0, days_back),
        hours=random.randint(0, 23),
        minutes=random.randint(0, 59),
    )


def generate_sample_order(user_ids: list[int] | None = None, catalogue: list[dict] | None = None) -> dict:
    """
    Build (but do not insert) a random order for dashboard demos.
    Uses the real catalogue when available so popular products make sense.
    """
    catalogue = catalogue or list(database.products.find({}, {"_id": 0}))
    if not catalogue:
        catalogue = [{**p, "product_id": i + 1, "image": None} for i, p in enumerate(SEED_PRODUCTS)]

    picks = random.sample(catalogue, k=min(len(catalogue), random.randint(1, 3)))
    items = [
        {
            "product_id": p["product_id"],
            "name": p["name"],
            "price": float(p["base_price"]),
            "qty": random.randint(1, 4),
            "image": p.get("image"),
        }
        for p in picks
    ]

    status = random.choice(STATUSES)
    created_at = random_past_datetime()
    payment_method = random.choice(["COD", "Prepaid"])
    is_paid = payment_method == "Prepaid" and status not in ("Pending", "Cancelled by User")
    totals = compute_totals(items_subtotal(items), 0)

    return {
        "order_id": reserve_order_id(),
        "user_id": random.choice(user_ids) if user_ids else random.randint(1, 15),
        "items": items,
        **totals,
        "coupon_code": None,
        "payment_method": payment_method,
        "razorpay_order_id": None,
        "payment_id": f"pay_demo{next_sequence('demo_payment')}" if is_paid else None,
        "is_paid": is_paid,
        "paid_at": created_at + timedelta(minutes=5) if is_paid else None,
        "shipping_address": {
            "full_name": "Test Customer",
            "phone": "9876543210",
            "house_no": str(random.randint(1, 99)),
            "street": "Beach Road",
            "city": random.choice(SAMPLE_CITIES),
            "state": random.choice(SAMPLE_STATES),
            "zip": "530001",
        },
        "status": status,
        "refund_status": "None",
        "cancel_reason": "Changed my mind" if status == "Cancelled by User" else "",
        "delivered_at": created_at + timedelta(days=2) if status == "Delivered" else None,
        "created_at": created_at,
        "updated_at": created_at,
    }


def seed_orders(count=150) -> int:
    catalogue = list(database.products.find({}, {"_id": 0}))
    user_ids = [u["user_id"] for u in database.users.find({}, {"_id": 0, "user_id": 1})]
    docs = [generate_sample_order(user_ids=user_ids, catalogue=catalogue) for _ in range(count)]
    if docs:
        database.orders.insert_many(docs)
    logger.info("Inserted %s sample orders into 'orders' collection", len(docs))
    return len(docs)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    seed_products()
    seed_orders(150)
