from typing import Generator

import pytest

from expense_tracker import config
from expense_tracker.config import Settings

# Must be in place before the app's lifespan reads it
config.set_settings(Settings(database_url="sqlite://", reset_base_url="http://testserver", jwt_secret="test-secret"))

from expense_tracker.db import Database
from expense_tracker.errors import UpstreamError
from expense_tracker.main import app, get_db, get_notifier, get_payment_gateway
from expense_tracker.payments import StripeGateway


class FakeNotifier:
    """Records reset links instead of mailing them."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send_password_reset(self, to_email: str, reset_url: str) -> None:
        if self.fail:
            raise UpstreamError("failed to send notification")
        self.sent.append((to_email, reset_url))

    @property
    def last_token(self) -> str:
        return self.sent[-1][1].rsplit("/", 1)[1]


class FakeGateway(StripeGateway):
    """Stripe gateway that keeps payment intents in memory instead of calling the API."""

    def __init__(self):
        super().__init__(secret_key="sk_test_fake", publishable_key="pk_test_fake")
        self.intents = {}

    def create_order(self, amount, currency, notes=None):
        order_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[order_id] = {
            "id": order_id,
            "status": "requires_payment_method",
            "amount": amount,
            "currency": currency,
            "latest_charge": None,
        }
        return {"id": order_id, "amount": amount, "currency": currency, "client_secret": "secret"}

    def retrieve_order(self, order_id):
        if order_id not in self.intents:
            raise UpstreamError("failed to verify payment")
        return dict(self.intents[order_id])

    def pay(self, order_id, amount=None):
        """Settle an intent the way the customer's card would."""
        intent = self.intents[order_id]
        intent["status"] = "succeeded"
        intent["latest_charge"] = f"ch_{order_id}"
        if amount is not None:
            intent["amount"] = amount


@pytest.fixture(autouse=True)
def settings() -> Generator:
    original = config.get_settings()
    yield original
    config.set_settings(original)


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    database = Database("sqlite://")
    database.create_all()
    db = database.session()
    try:
        yield db
    finally:
        db.close()
        database.dispose()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(scope="function")
def client(db_session, notifier, gateway):
    # Override dependencies to use the same session and the fakes
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Create an account and return auth headers for it."""
    def _signup(email="alice@example.com", password="secret1", name="Alice"):
        r = client.post("/user/signup", json={"name": name, "email": email, "password": password})
        assert r.status_code == 201, r.text
        r = client.post("/user/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['token']}"}
    return _signup
