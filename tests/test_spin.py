"""Spin-the-wheel eligibility and reward coupons."""

from datetime import timedelta

import pytest

import database
import main


@pytest.fixture()
def prize(monkeypatch):
    def _set(percent, cap=0):
        monkeypatch.setattr(main, "pick_spin_prize", lambda: (percent, cap))

    return _set


class TestEligibility:
    def test_new_user_can_spin(self, user_client):
        resp = user_client.get("/api/spin/status")
        assert resp.status_code == 200
        assert resp.json()["eligible"] is True
        assert resp.json()["last_spin_time"] is None

    def test_spin_once_then_locked(self, user_client, prize):
        prize(0)
        assert user_client.post("/api/spin/spin").status_code == 200

        assert user_client.get("/api/spin/status").json()["eligible"] is False
        resp = user_client.post("/api/spin/spin")
        assert resp.status_code == 403
        assert resp.json()["message"] == "You've already used your spin!"

    def test_delivery_after_spin_unlocks(self, user_client, customer, prize):
        prize(0)
        user_client.post("/api/spin/spin")

        spun_at = database.get_user_by_id(customer["user_id"])["last_spin_time"]
        database.mark_order_completion(customer["user_id"], spun_at + timedelta(minutes=1))

        assert user_client.get("/api/spin/status").json()["eligible"] is True

    def test_delivery_before_spin_does_not_unlock(self, customer):
        database.mark_order_completion(customer["user_id"], database._utcnow() - timedelta(days=1))
        database.record_spin(customer["user_id"])

        assert database.is_spin_eligible(database.get_user_by_id(customer["user_id"])) is False

    def test_requires_login(self, anon_client):
        assert anon_client.get("/api/spin/status").status_code == 401
        assert anon_client.post("/api/spin/spin").status_code == 401


class TestRewards:
    def test_no_prize(self, user_client, prize, mongo):
        prize(0)
        resp = user_client.post("/api/spin/spin")
        assert resp.json()["result"] == "BETTER_LUCK"
        assert mongo["coupons"].count_documents({}) == 0

    def test_coupon_bound_to_spinner(self, user_client, prize):
        prize(20)
        data = user_client.post("/api/spin/spin").json()

        assert data["result"] == "COUPON"
        assert data["discount_value"] == 20
        assert data["code"].startswith("SB20-")
        assert len(data["code"]) == len("SB20-") + 6

        coupon = database.get_coupon_by_code(data["code"])
        assert coupon["is_spin_coupon"] is True
        assert coupon["user_email"] == "ravi@example.com"
        assert coupon["max_uses"] == 1
        assert coupon["expires_at"] > database._utcnow() + timedelta(hours=23)

    def test_reward_found_by_auto_check(self, user_client, prize):
        prize(10)
        code = user_client.post("/api/spin/spin").json()["code"]

        resp = user_client.post("/api/coupons/validate", json={"cart_total": 2000, "is_auto_check": True})
        assert resp.status_code == 200
        assert resp.json()["code"] == code
        assert resp.json()["discount_amount"] == 200

    def test_big_prize_is_capped(self, user_client, prize):
        prize(50, 500)
        code = user_client.post("/api/spin/spin").json()["code"]

        resp = user_client.post("/api/coupons/validate", json={"code": code, "cart_total": 4000})
        assert resp.json()["discount_amount"] == 500

    def test_reward_is_single_use(self, user_client, prize, place_cod_order):
        prize(5)
        code = user_client.post("/api/spin/spin").json()["code"]
        place_cod_order(coupon_code=code)

        resp = user_client.post("/api/coupons/validate", json={"code": code, "cart_total": 2000})
        assert resp.status_code == 400


class TestPrizeTable:
    def test_weights_sum_to_hundred(self):
        assert sum(w for w, _, _ in database.SPIN_PRIZES) == 100

    def test_pick_returns_known_prize(self):
        known = {(p, cap) for _, p, cap in database.SPIN_PRIZES}
        for _ in range(50):
            assert database.pick_spin_prize() in known
