"""COD order placement, order queries, admin status changes and customer cancellation."""

import database
from conftest import SHIPPING_ADDRESS


class TestPlaceOrder:
    def test_cod_order_is_repriced_and_stored(self, user_client, customer, catalogue, outbox, mongo):
        resp = user_client.post(
            "/api/orders",
            json={
                "items": [
                    {"product_id": catalogue["prawns"]["product_id"], "qty": 2},
                    {"product_id": catalogue["crab"]["product_id"], "qty": 1},
                ],
                "shipping_address": SHIPPING_ADDRESS,
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["ok"] is True
        assert data["order"] is None
        assert data["order_id"] >= 1000

        order = database.get_order_by_order_id(data["order_id"])
        assert order["user_id"] == customer["user_id"]
        assert order["items_price"] == 1840
        assert order["shipping_price"] == 0
        assert order["tax_price"] == 92
        assert order["total_amount"] == 1932 == data["total_amount"]
        assert order["status"] == "Pending"
        assert order["is_paid"] is False
        assert order["payment_method"] == "COD"
        assert order["items"][0] == {
            "product_id": catalogue["prawns"]["product_id"],
            "name": "Tiger Prawns",
            "price": 650,
            "qty": 2,
            "image": None,
        }

        assert any(m["subject"] == f"Order Confirmed: #{data['order_id']}" for m in outbox)
        assert mongo["notifications"].count_documents({"user_id": customer["user_id"], "order_id": data["order_id"]}) == 1

    def test_order_ids_are_sequential(self, place_cod_order):
        first = place_cod_order()
        second = place_cod_order()
        assert first == 1000
        assert second == 1001

    def test_small_order_pays_shipping(self, place_cod_order, catalogue):
        order_id = place_cod_order(items=[{"product_id": catalogue["crab"]["product_id"], "qty": 1}])
        order = database.get_order_by_order_id(order_id)
        assert order["shipping_price"] == 99
        assert order["tax_price"] == 27
        assert order["total_amount"] == 540 + 99 + 27

    def test_coupon_is_applied_and_redeemed(self, place_cod_order, catalogue):
        database.create_coupon({"code": "FLAT100", "discount_type": "flat", "value": 100, "max_uses": 5})
        order_id = place_cod_order(coupon_code="flat100")

        order = database.get_order_by_order_id(order_id)
        assert order["discount"] == 100
        assert order["coupon_code"] == "FLAT100"
        assert order["tax_price"] == 60
        assert order["total_amount"] == 1300 - 100 + 60
        assert database.get_coupon_by_code("FLAT100")["used_count"] == 1

    def test_invalid_coupon_rejects_order(self, user_client, catalogue, mongo):
        resp = user_client.post(
            "/api/orders",
            json={
                "items": [{"product_id": catalogue["prawns"]["product_id"], "qty": 1}],
                "shipping_address": SHIPPING_ADDRESS,
                "coupon_code": "MISSING",
            },
        )
        assert resp.status_code == 400
        assert mongo["orders"].count_documents({}) == 0

    def test_out_of_stock_product(self, user_client, catalogue):
        resp = user_client.post(
            "/api/orders",
            json={
                "items": [{"product_id": catalogue["pomfret"]["product_id"], "qty": 1}],
                "shipping_address": SHIPPING_ADDRESS,
            },
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Pomfret is out of stock."

    def test_delivery_outside_service_area(self, user_client, catalogue):
        resp = user_client.post(
            "/api/orders",
            json={
                "items": [{"product_id": catalogue["prawns"]["product_id"], "qty": 1}],
                "shipping_address": {**SHIPPING_ADDRESS, "state": "Kerala"},
            },
        )
        assert resp.status_code == 400

    def test_empty_cart(self, user_client):
        resp = user_client.post("/api/orders", json={"items": [], "shipping_address": SHIPPING_ADDRESS})
        assert resp.status_code == 422

    def test_requires_login(self, anon_client, catalogue):
        resp = anon_client.post(
            "/api/orders",
            json={"items": [{"product_id": 1, "qty": 1}], "shipping_address": SHIPPING_ADDRESS},
        )
        assert resp.status_code == 401


class TestCartTotals:
    def test_totals_from_catalogue(self, anon_client, catalogue):
        resp = anon_client.post(
            "/api/cart/totals",
            json={"items": [{"product_id": catalogue["crab"]["product_id"], "qty": 1}]},
        )
        data = resp.json()
        assert data["items_price"] == 540
        assert data["shipping_price"] == 99
        assert data["tax_price"] == 27
        assert data["total_amount"] == 666
        assert data["coupon_message"] is None

    def test_invalid_coupon_returns_undiscounted_totals(self, anon_client, catalogue):
        resp = anon_client.post(
            "/api/cart/totals",
            json={"items": [{"product_id": catalogue["crab"]["product_id"], "qty": 1}], "coupon_code": "NOPE"},
        )
        assert resp.status_code == 200
        assert resp.json()["discount"] == 0
        assert resp.json()["coupon_message"] == "No valid discount found for this account."

    def test_valid_coupon(self, anon_client, catalogue):
        database.create_coupon({"code": "TEN", "value": 10})
        resp = anon_client.post(
            "/api/cart/totals",
            json={"items": [{"product_id": catalogue["prawns"]["product_id"], "qty": 2}], "coupon_code": "TEN"},
        )
        assert resp.json()["discount"] == 130
        assert resp.json()["total_amount"] == 1300 - 130 + 0 + 59


class TestOrderQueries:
    def test_my_orders_only_own(self, user_client, other_client, place_cod_order):
        mine = place_cod_order()
        theirs = place_cod_order(client=other_client)

        resp = user_client.get("/api/orders/myorders")
        assert [o["order_id"] for o in resp.json()["orders"]] == [mine]

        resp = other_client.get("/api/orders/myorders")
        assert [o["order_id"] for o in resp.json()["orders"]] == [theirs]

    def test_order_details_owner_only(self, user_client, other_client, admin_client, place_cod_order):
        order_id = place_cod_order()

        assert user_client.get(f"/api/orders/{order_id}").status_code == 200
        assert other_client.get(f"/api/orders/{order_id}").status_code == 404
        assert admin_client.get(f"/api/orders/{order_id}").status_code == 200

    def test_order_details_include_customer(self, user_client, customer, place_cod_order):
        order_id = place_cod_order()

        order = user_client.get(f"/api/orders/{order_id}").json()
        assert order["user"] == {"user_id": customer["user_id"], "name": "Ravi Kumar", "email": "ravi@example.com"}

    def test_admin_list_includes_user(self, admin_client, customer, place_cod_order):
        order_id = place_cod_order()

        resp = admin_client.get("/api/orders")
        assert resp.status_code == 200
        order = resp.json()["orders"][0]
        assert order["order_id"] == order_id
        assert order["user"] == {"user_id": customer["user_id"], "name": "Ravi Kumar", "email": "ravi@example.com"}

    def test_admin_list_forbidden_for_users(self, user_client):
        assert user_client.get("/api/orders").status_code == 403


class TestStatusUpdates:
    def test_skip_ahead_to_shipped(self, admin_client, place_cod_order, outbox, mongo):
        order_id = place_cod_order()

        resp = admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Shipped"})
        assert resp.status_code == 200
        assert resp.json()["order"]["status"] == "Shipped"
        assert any(m["subject"] == f"Order #{order_id} Update: Shipped" for m in outbox)
        assert mongo["notifications"].count_documents({"order_id": order_id, "status_type": "Shipped"}) == 1

    def test_backwards_transition_rejected(self, admin_client, place_cod_order):
        order_id = place_cod_order()
        admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Shipped"})

        resp = admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Processing"})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid transition: Shipped -> Processing"

    def test_same_status_rejected(self, admin_client, place_cod_order):
        order_id = place_cod_order()
        resp = admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Pending"})
        assert resp.status_code == 400

    def test_terminal_status(self, admin_client, place_cod_order):
        order_id = place_cod_order()
        admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Cancelled"})
        resp = admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Processing"})
        assert resp.status_code == 400

    def test_unknown_status_value(self, admin_client, place_cod_order):
        order_id = place_cod_order()
        assert admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Lost"}).status_code == 422

    def test_delivered_unlocks_spin(self, admin_client, customer, place_cod_order):
        order_id = place_cod_order()

        resp = admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Delivered"})
        assert resp.status_code == 200
        assert resp.json()["order"]["delivered_at"] is not None

        user = database.get_user_by_id(customer["user_id"])
        assert user["last_order_completion_time"] is not None

    def test_refund_success_marks_unpaid(self, admin_client, place_cod_order, mongo, outbox):
        order_id = place_cod_order()
        mongo["orders"].update_one({"order_id": order_id}, {"$set": {"is_paid": True}})
        sent_before = len(outbox)

        resp = admin_client.put(f"/api/orders/{order_id}/status", json={"refund_status": "Success"})
        assert resp.status_code == 200
        assert resp.json()["order"]["refund_status"] == "Success"
        assert resp.json()["order"]["is_paid"] is False
        # no status change, no status email
        assert len(outbox) == sent_before

    def test_unknown_order(self, admin_client):
        assert admin_client.put("/api/orders/4242/status", json={"status": "Shipped"}).status_code == 404

    def test_users_cannot_update_status(self, user_client, place_cod_order):
        order_id = place_cod_order()
        assert user_client.put(f"/api/orders/{order_id}/status", json={"status": "Shipped"}).status_code == 403


class TestCancel:
    def test_owner_cancels_with_default_reason(self, user_client, place_cod_order, mongo):
        order_id = place_cod_order()

        resp = user_client.put(f"/api/orders/{order_id}/cancel")
        assert resp.status_code == 200
        order = resp.json()["order"]
        assert order["status"] == "Cancelled by User"
        assert order["cancel_reason"] == "No reason provided"
        assert mongo["notifications"].count_documents({"order_id": order_id, "status_type": "Cancelled by User"}) == 1

    def test_reason_is_stored(self, user_client, place_cod_order):
        order_id = place_cod_order()
        resp = user_client.put(f"/api/orders/{order_id}/cancel", json={"reason": "Ordered twice"})
        assert resp.json()["order"]["cancel_reason"] == "Ordered twice"

    def test_other_user_forbidden(self, other_client, place_cod_order):
        order_id = place_cod_order()
        assert other_client.put(f"/api/orders/{order_id}/cancel").status_code == 403

    def test_in_transit_cannot_cancel(self, user_client, admin_client, place_cod_order):
        order_id = place_cod_order()
        admin_client.put(f"/api/orders/{order_id}/status", json={"status": "Shipped"})

        resp = user_client.put(f"/api/orders/{order_id}/cancel")
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot cancel an order already in transit."

    def test_already_cancelled(self, user_client, place_cod_order):
        order_id = place_cod_order()
        user_client.put(f"/api/orders/{order_id}/cancel")
        assert user_client.put(f"/api/orders/{order_id}/cancel").status_code == 400

    def test_unknown_order(self, user_client):
        assert user_client.put("/api/orders/4242/cancel").status_code == 404


class TestRecalculatePricing:
    def test_backfills_missing_breakdown(self, admin_client, customer, mongo):
        mongo["orders"].insert_one({
            "order_id": 5000,
            "user_id": customer["user_id"],
            "items": [{"product_id": 1, "name": "Tiger Prawns", "price": 650, "qty": 1, "image": None}],
            "items_price": 0,
            "status": "Delivered",
            "created_at": database._utcnow(),
        })

        resp = admin_client.post("/api/admin/orders/recalculate-pricing")
        assert resp.status_code == 200
        assert resp.json()["fixed"] == 1

        order = database.get_order_by_order_id(5000)
        assert order["items_price"] == 650
        assert order["shipping_price"] == 99
        assert order["tax_price"] == 33
        assert order["total_amount"] == 650 + 99 + 33

    def test_leaves_priced_orders_alone(self, admin_client, place_cod_order):
        place_cod_order()
        assert admin_client.post("/api/admin/orders/recalculate-pricing").json()["fixed"] == 0
