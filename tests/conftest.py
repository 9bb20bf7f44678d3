"""Shared fixtures: mongomock database, fake Razorpay/Resend/Cloudinary, logged-in clients."""

import hashlib
import hmac
import os

# configuration is read at import time, so set it before the app modules load
os.environ["MONGO_URI"] = "mongodb://localhost:27017"
os.environ["MONGO_DB_NAME"] = "seabite_test"
os.environ["COOKIE_SECURE"] = "false"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_secret"
os.environ["RESEND_API_KEY"] = "re_test_key"
os.environ["LOG_LEVEL"] = "WARNING"

import cloudinary.uploader
import mongomock
import pytest
import resend
from fastapi.testclient import TestClient

import database
import payments
from main import app

PASSWORD = "secret123"

SHIPPING_ADDRESS = {
    "full_name": "Ravi Kumar",
    "phone": "9876543210",
    "house_no": "12-4",
    "street": "Beach Road",
    "city": "Visakhapatnam",
    "state": "Andhra Pradesh",
    "zip": "530001",
}


def razorpay_signature(order_id: str, payment_id: str, secret: str = "test_secret") -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def login(client: TestClient, email: str, password: str = PASSWORD):
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp


# ------------------------------------------------------------
# Outbound service fakes
# ------------------------------------------------------------

class FakeRazorpayOrders:
    def __init__(self):
        self.created = []
        self.fail = False

    def create(self, data):
        if self.fail:
            raise ConnectionError("gateway down")
        order = {"id": f"order_test{len(self.created) + 1}", "entity": "order", "status": "created", **data}
        self.created.append(order)
        return order


class FakeRazorpayPayments:
    def __init__(self):
        self.refunds = []
        self.fail = False

    def refund(self, payment_id, data=None):
        if self.fail:
            raise ConnectionError("gateway down")
        refund = {"id": f"rfnd_test{len(self.refunds) + 1}", "payment_id": payment_id, **(data or {})}
        self.refunds.append(refund)
        return refund


@pytest.fixture(autouse=True)
def mongo():
    db = mongomock.MongoClient()["seabite_test"]
    database.bind_database(db)
    database.ensure_indexes()
    yield db


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def fake_send(params):
        sent.append(params)
        return {"id": f"email_{len(sent)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return sent


@pytest.fixture(autouse=True)
def razorpay_fake(monkeypatch):
    orders = FakeRazorpayOrders()
    payments_resource = FakeRazorpayPayments()
    monkeypatch.setattr(payments.razorpay_client, "order", orders)
    monkeypatch.setattr(payments.razorpay_client, "payment", payments_resource)

    class Fake:
        pass

    fake = Fake()
    fake.orders = orders
    fake.payments = payments_resource
    return fake


@pytest.fixture(autouse=True)
def uploads(monkeypatch):
    calls = []

    def fake_upload(content, **options):
        calls.append({"size": len(content), **options})
        return {"secure_url": f"https://res.cloudinary.com/demo/image/upload/p{len(calls)}.jpg", "public_id": f"p{len(calls)}"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    return calls


# ------------------------------------------------------------
# Users and clients
# ------------------------------------------------------------

@pytest.fixture()
def anon_client():
    return TestClient(app)


@pytest.fixture()
def customer():
    return database.create_user("Ravi Kumar", "ravi@example.com", PASSWORD)


@pytest.fixture()
def other_customer():
    return database.create_user("Sita Devi", "sita@example.com", PASSWORD)


@pytest.fixture()
def admin():
    return database.create_user("Store Admin", "admin@seabite.co.in", PASSWORD, role="admin")


@pytest.fixture()
def user_client(customer):
    client = TestClient(app)
    login(client, customer["email"])
    return client


@pytest.fixture()
def other_client(other_customer):
    client = TestClient(app)
    login(client, other_customer["email"])
    return client


@pytest.fixture()
def admin_client(admin):
    client = TestClient(app)
    login(client, admin["email"])
    return client


# ------------------------------------------------------------
# Catalogue
# ------------------------------------------------------------

@pytest.fixture()
def catalogue():
    prawns = database.create_product({"name": "Tiger Prawns", "category": "Prawns", "base_price": 650, "unit": "kg"})
    crab = database.create_product({"name": "Blue Crab", "category": "Crab", "base_price": 540, "unit": "kg"})
    salmon = database.create_product({"name": "Norwegian Salmon", "category": "Fish", "base_price": 2400, "unit": "kg"})
    pomfret = database.create_product({"name": "Pomfret", "category": "Fish", "base_price": 850, "unit": "kg", "stock": "out"})
    return {"prawns": prawns, "crab": crab, "salmon": salmon, "pomfret": pomfret}


@pytest.fixture()
def place_cod_order(user_client, catalogue):
    """Place a COD order for the logged-in customer and return its order_id."""

    def _place(items=None, coupon_code=None, client=None):
        items = items or [{"product_id": catalogue["prawns"]["product_id"], "qty": 2}]
        body = {"items": items, "shipping_address": SHIPPING_ADDRESS}
        if coupon_code:
            body["coupon_code"] = coupon_code
        resp = (client or user_client).post("/api/orders", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()["order_id"]

    return _place
