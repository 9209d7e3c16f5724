import pytest
import stripe

from expense_tracker import models
from expense_tracker.errors import InvalidStateError, UpstreamError
from expense_tracker.payments import StripeGateway


def buy(client, headers):
    r = client.get("/buypremium", headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_buy_premium_creates_pending_order(client, db_session, signup):
    headers = signup()
    data = buy(client, headers)
    assert data["key_id"] == "pk_test_fake"
    assert data["order"]["amount"] == 4500
    assert data["order"]["currency"] == "inr"

    order = db_session.query(models.Order).one()
    assert order.order_id == data["order"]["id"]
    assert order.status == "pending"


def test_success_callback_upgrades_user(client, db_session, signup, gateway):
    headers = signup()
    client.post("/expense/addexpense", json={"amount": 80, "category": "Food", "date": "2024-03-01"}, headers=headers)
    order_id = buy(client, headers)["order"]["id"]
    gateway.pay(order_id)

    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=headers)
    assert r.status_code == 200
    new_token = r.json()["token"]

    me = client.get("/user/me", headers={"Authorization": f"Bearer {new_token}"}).json()
    assert me["is_premium"] is True
    assert me["total_amount"] == 80

    # replay changes nothing
    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=headers)
    assert r.status_code == 200
    me = client.get("/user/me", headers=headers).json()
    assert me["is_premium"] is True
    assert me["total_amount"] == 80
    order = db_session.query(models.Order).one()
    assert order.status == "success"
    assert order.payment_id == "pay_1"


def test_unpaid_order_is_rejected(client, db_session, signup):
    headers = signup()
    order_id = buy(client, headers)["order"]["id"]

    # the client claims success with an invented payment id; the intent is still unpaid
    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_made_up"}, headers=headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Payment not completed"
    assert client.get("/user/me", headers=headers).json()["is_premium"] is False
    order = db_session.query(models.Order).one()
    assert order.status == "pending"
    assert order.payment_id is None


def test_underpaid_order_is_rejected(client, signup, gateway):
    headers = signup()
    order_id = buy(client, headers)["order"]["id"]
    gateway.pay(order_id, amount=1)

    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Payment does not match the order"
    assert client.get("/user/me", headers=headers).json()["is_premium"] is False


def test_gateway_outage_on_confirmation(client, signup, gateway):
    headers = signup()
    order_id = buy(client, headers)["order"]["id"]
    del gateway.intents[order_id]

    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=headers)
    assert r.status_code == 502
    assert client.get("/user/me", headers=headers).json()["is_premium"] is False


def test_unknown_and_foreign_orders(client, signup, gateway):
    alice = signup(email="alice@example.com")
    mallory = signup(email="mallory@example.com", name="Mallory")
    order_id = buy(client, alice)["order"]["id"]
    gateway.pay(order_id)

    r = client.post("/updatetransaction", json={"order_id": "pi_missing", "payment_id": "pay_1"}, headers=alice)
    assert r.status_code == 404
    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=mallory)
    assert r.status_code == 403
    assert client.get("/user/me", headers=mallory).json()["is_premium"] is False


def test_failure_callback(client, db_session, signup, gateway):
    headers = signup()
    order_id = buy(client, headers)["order"]["id"]

    r = client.post("/updatefailure", json={"order_id": order_id}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "failed"

    # a failed order cannot be completed afterwards
    gateway.pay(order_id)
    r = client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=headers)
    assert r.status_code == 409
    assert client.get("/user/me", headers=headers).json()["is_premium"] is False


def test_failure_never_downgrades_success(client, signup, gateway):
    headers = signup()
    order_id = buy(client, headers)["order"]["id"]
    gateway.pay(order_id)
    client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_1"}, headers=headers)
    r = client.post("/updatefailure", json={"order_id": order_id}, headers=headers)
    assert r.status_code == 409


def test_leaderboard_is_premium_only(client, signup, gateway):
    rich = signup(email="rich@example.com", name="Rich")
    poor = signup(email="poor@example.com", name="Poor")
    client.post("/expense/addexpense", json={"amount": 900, "category": "Travel", "date": "2024-03-01"}, headers=rich)
    client.post("/expense/addexpense", json={"amount": 15, "category": "Food", "date": "2024-03-01"}, headers=poor)

    assert client.get("/premium/leaderboard", headers=poor).status_code == 403

    order_id = buy(client, poor)["order"]["id"]
    gateway.pay(order_id)
    client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_9"}, headers=poor)
    r = client.get("/premium/leaderboard", headers=poor)
    assert r.status_code == 200
    assert r.json() == [
        {"rank": 1, "name": "Rich", "total_expenses": 900},
        {"rank": 2, "name": "Poor", "total_expenses": 15},
    ]


def test_download_csv(client, signup, gateway):
    headers = signup()
    client.post(
        "/expense/addexpense",
        json={"amount": 42, "category": "Food", "date": "2024-03-01", "description": "Lunch, with team"},
        headers=headers,
    )
    assert client.get("/user/download", headers=headers).status_code == 403

    order_id = buy(client, headers)["order"]["id"]
    gateway.pay(order_id)
    client.post("/updatetransaction", json={"order_id": order_id, "payment_id": "pay_2"}, headers=headers)
    r = client.get("/user/download", headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment" in r.headers["content-disposition"]
    lines = r.text.splitlines()
    assert lines[0] == "Date,Description,Amount,Category"
    assert lines[1] == '2024-03-01,"Lunch, with team",42,Food'


# -------------------- Stripe gateway --------------------

class _Intent:
    def __init__(self, **fields):
        self.__dict__.update(fields)


def test_stripe_gateway_reads_intent_back(monkeypatch):
    calls = []

    def retrieve(order_id, **kwargs):
        calls.append((order_id, kwargs))
        return _Intent(id=order_id, status="succeeded", amount=4500, currency="inr", latest_charge="ch_1")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)
    gateway = StripeGateway(secret_key="sk_test_x", publishable_key="pk_test_x")

    intent = gateway.confirm_payment("pi_1", 4500, "INR")
    assert intent["status"] == "succeeded"
    assert calls == [("pi_1", {"api_key": "sk_test_x"})]


@pytest.mark.parametrize("status", ["requires_payment_method", "processing", "canceled"])
def test_stripe_gateway_rejects_unsettled_intents(monkeypatch, status):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "retrieve",
        lambda order_id, **kwargs: _Intent(id=order_id, status=status, amount=4500, currency="inr"),
    )
    gateway = StripeGateway(secret_key="sk_test_x")
    with pytest.raises(InvalidStateError):
        gateway.confirm_payment("pi_1", 4500, "inr")


def test_stripe_gateway_wraps_api_errors(monkeypatch):
    def retrieve(order_id, **kwargs):
        raise stripe.StripeError("No such payment_intent")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)
    gateway = StripeGateway(secret_key="sk_test_x")
    with pytest.raises(UpstreamError):
        gateway.confirm_payment("pi_missing", 4500, "inr")


def test_stripe_gateway_requires_configuration():
    gateway = StripeGateway()
    with pytest.raises(UpstreamError):
        gateway.retrieve_order("pi_1")
    with pytest.raises(UpstreamError):
        gateway.key_id
