"""Fixtures for API tests.

The app's database dependency is overridden with the in-memory ``test_db``
session, and every outbound client (assistant gateway, Paystack, PayPal,
mail) is rebuilt on an ``httpx.MockTransport`` so no request leaves the
process.
"""

import json
from collections.abc import Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from linescout.api.deps import (
    get_ai_gateway,
    get_app_config,
    get_notifier,
    get_paypal,
    get_paystack,
)
from linescout.api.main import app
from linescout.config import (
    GatewayConfig,
    LineScoutConfig,
    PayPalConfig,
    PaystackConfig,
)
from linescout.db.connection import get_db
from linescout.db.models import Agent, User
from linescout.services.ai_gateway import AIGateway
from linescout.services.notifications import Notifier
from linescout.services.payment_providers import PayPalClient, PaystackClient
from tests.factories import make_session

PAYSTACK_SECRET = "sk_test_secret"


class FakeProvider:
    """Programmable stand-in for a provider HTTP API.

    ``routes`` maps a URL path to the JSON body (or a callable returning an
    ``httpx.Response``); ``requests`` records every call.
    """

    def __init__(self) -> None:
        self.routes: dict[str, dict | Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"message": f"no route {request.url.path}"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def json_body(self, path: str) -> dict:
        request = next(r for r in self.requests if r.url.path == path)
        return json.loads(request.content)


@pytest.fixture
def api_config() -> LineScoutConfig:
    return LineScoutConfig(
        paystack=PaystackConfig(secret_key=PAYSTACK_SECRET),
        paypal=PayPalConfig(client_id="cid", client_secret="secret", webhook_id="WH-1"),
        gateway=GatewayConfig(base_url="http://gateway.test"),
    )


@pytest.fixture
def gateway() -> FakeProvider:
    fake = FakeProvider()
    fake.routes["/webhook/linescout-chat"] = {"reply": "Happy to help with that."}
    fake.routes["/webhook/linescout-events"] = {"ok": True}
    return fake


@pytest.fixture
def paystack() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def paypal() -> FakeProvider:
    fake = FakeProvider()
    fake.routes["/v1/oauth2/token"] = {"access_token": "tok"}
    return fake


@pytest.fixture
def client(
    test_db: Session,
    api_config: LineScoutConfig,
    gateway: FakeProvider,
    paystack: FakeProvider,
    paypal: FakeProvider,
) -> Generator[TestClient, None, None]:
    """Create a test client with every dependency pointed at test doubles."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_config] = lambda: api_config
    app.dependency_overrides[get_ai_gateway] = lambda: AIGateway(
        api_config.gateway, transport=gateway.transport()
    )
    app.dependency_overrides[get_notifier] = lambda: Notifier(api_config.mail, api_config.push)
    app.dependency_overrides[get_paystack] = lambda: PaystackClient(
        api_config.paystack, transport=paystack.transport()
    )
    app.dependency_overrides[get_paypal] = lambda: PayPalClient(
        api_config.paypal, transport=paypal.transport()
    )

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(test_db: Session, user: User) -> dict[str, str]:
    return _bearer(make_session(test_db, "user", user.id))


@pytest.fixture
def other_user_headers(test_db: Session, other_user: User) -> dict[str, str]:
    return _bearer(make_session(test_db, "user", other_user.id))


@pytest.fixture
def agent_headers(test_db: Session, agent: Agent) -> dict[str, str]:
    return _bearer(make_session(test_db, "agent", agent.id))


@pytest.fixture
def other_agent_headers(test_db: Session, other_agent: Agent) -> dict[str, str]:
    return _bearer(make_session(test_db, "agent", other_agent.id))


@pytest.fixture
def admin_headers(test_db: Session, admin: Agent) -> dict[str, str]:
    return _bearer(make_session(test_db, "agent", admin.id))
