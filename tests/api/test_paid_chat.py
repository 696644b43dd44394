"""Tests for the sourcing-fee checkout and paid chat routes."""

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.db.models import Agent, Conversation, Handoff, SourcingPayment, User
from tests.factories import make_paid_conversation

API = "/api/v1"
FEE_KOBO = 10_000_000


def _paystack_success(reference: str, amount_minor: int = FEE_KOBO) -> dict:
    return {
        "status": True,
        "data": {
            "status": "success",
            "reference": reference,
            "amount": amount_minor,
            "currency": "NGN",
        },
    }


def _checkout(client: TestClient, headers: dict, paystack, route_type: str = "machine_sourcing"):
    paystack.routes["/transaction/initialize"] = {
        "status": True,
        "data": {"authorization_url": "https://checkout.paystack.test/src"},
    }
    return client.post(
        f"{API}/paid-chat/checkout",
        json={"route_type": route_type, "provider": "paystack"},
        headers=headers,
    )


class TestCheckout:
    def test_paystack_checkout(
        self, client: TestClient, test_db: Session, user: User, user_headers: dict, paystack
    ) -> None:
        response = _checkout(client, user_headers, paystack)
        assert response.status_code == 200
        body = response.json()
        assert body["redirect_url"] == "https://checkout.paystack.test/src"
        assert body["amount_minor"] == FEE_KOBO
        assert body["currency"] == "NGN"
        assert body["reference"].startswith(f"LSS_{user.id}_")

        sent = paystack.json_body("/transaction/initialize")
        assert sent["amount"] == FEE_KOBO
        assert sent["email"] == user.email
        assert sent["metadata"]["route_type"] == "machine_sourcing"

        primary = test_db.get(Conversation, body["conversation_id"])
        assert primary.conversation_kind == "primary"
        assert primary.chat_mode == "ai_only"

    def test_requires_user(self, client: TestClient) -> None:
        response = client.post(
            f"{API}/paid-chat/checkout", json={"route_type": "machine_sourcing"}
        )
        assert response.status_code == 401

    def test_paypal_order_replaces_local_reference(
        self, client: TestClient, test_db: Session, user_headers: dict, paypal
    ) -> None:
        paypal.routes["/v2/checkout/orders"] = {
            "id": "ORDER-SRC",
            "links": [{"rel": "approve", "href": "https://paypal.test/approve/ORDER-SRC"}],
        }
        response = client.post(
            f"{API}/paid-chat/checkout",
            json={"route_type": "white_label", "provider": "paypal"},
            headers=user_headers,
        )
        body = response.json()
        assert body["reference"] == "ORDER-SRC"
        assert body["currency"] == "GBP"
        order = paypal.json_body("/v2/checkout/orders")
        assert order["purchase_units"][0]["amount"] == {"currency_code": "GBP", "value": "75.00"}

        test_db.expire_all()
        stored = test_db.execute(select(SourcingPayment)).scalar_one()
        assert (stored.provider_ref, stored.status) == ("ORDER-SRC", "pending")

    def test_provider_failure_marks_payment_failed(
        self, client: TestClient, test_db: Session, user_headers: dict, paystack
    ) -> None:
        paystack.routes["/transaction/initialize"] = lambda r: httpx.Response(
            400, json={"status": False, "message": "Invalid key"}
        )
        response = client.post(
            f"{API}/paid-chat/checkout",
            json={"route_type": "machine_sourcing"},
            headers=user_headers,
        )
        assert response.status_code == 502

        test_db.expire_all()
        statuses = test_db.execute(select(SourcingPayment.status)).scalars().all()
        assert statuses == ["failed"]

    def test_active_paid_project_conflicts(
        self, client: TestClient, test_db: Session, user: User, user_headers: dict, paystack
    ) -> None:
        make_paid_conversation(test_db, user)
        response = _checkout(client, user_headers, paystack)
        assert response.status_code == 409
        assert paystack.requests == []


class TestVerify:
    def test_paystack_verify_opens_paid_chat(
        self,
        client: TestClient,
        test_db: Session,
        user_headers: dict,
        agent_headers: dict,
        agent: Agent,
        paystack,
    ) -> None:
        reference = _checkout(client, user_headers, paystack).json()["reference"]
        paystack.routes[f"/transaction/verify/{reference}"] = _paystack_success(reference)

        first = client.post(
            f"{API}/paid-chat/paystack/verify", json={"reference": reference}, headers=user_headers
        )
        assert first.status_code == 200
        body = first.json()
        assert body["status"] == "paid"
        assert body["already_processed"] is False

        again = client.post(
            f"{API}/paid-chat/paystack/verify", json={"reference": reference}, headers=user_headers
        )
        assert again.json()["handoff_id"] == body["handoff_id"]
        assert again.json()["already_processed"] is True
        assert paystack.paths().count(f"/transaction/verify/{reference}") == 1

        test_db.expire_all()
        assert len(test_db.execute(select(Handoff)).scalars().all()) == 1

        claimed = client.post(f"{API}/handoffs/{body['handoff_id']}/claim", headers=agent_headers)
        assert claimed.status_code == 200
        reply = client.post(
            f"{API}/agent/conversations/{body['conversation_id']}/messages",
            json={"message_text": "Hi, I'm your sourcing specialist."},
            headers=agent_headers,
        )
        assert reply.status_code == 200

        paid_chat = client.get(
            f"{API}/paid-chat", params={"handoff_id": body["handoff_id"]}, headers=user_headers
        ).json()["conversation"]
        assert paid_chat["id"] == body["conversation_id"]
        assert paid_chat["chat_mode"] == "paid_human"
        assert paid_chat["payment_status"] == "paid"

    def test_not_completed(
        self, client: TestClient, test_db: Session, user_headers: dict, paystack
    ) -> None:
        reference = _checkout(client, user_headers, paystack).json()["reference"]
        paystack.routes[f"/transaction/verify/{reference}"] = {
            "status": True,
            "data": {"status": "abandoned", "reference": reference},
        }
        response = client.post(
            f"{API}/paid-chat/paystack/verify", json={"reference": reference}, headers=user_headers
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "E-4002"

    def test_other_users_reference_forbidden(
        self,
        client: TestClient,
        user_headers: dict,
        other_user_headers: dict,
        paystack,
    ) -> None:
        reference = _checkout(client, user_headers, paystack).json()["reference"]
        response = client.post(
            f"{API}/paid-chat/paystack/verify",
            json={"reference": reference},
            headers=other_user_headers,
        )
        assert response.status_code == 403
        assert paystack.paths().count(f"/transaction/verify/{reference}") == 0

    def test_paypal_capture(
        self, client: TestClient, test_db: Session, user_headers: dict, paypal
    ) -> None:
        paypal.routes["/v2/checkout/orders"] = {"id": "ORDER-SRC-2", "links": []}
        client.post(
            f"{API}/paid-chat/checkout",
            json={"route_type": "simple_sourcing", "provider": "paypal"},
            headers=user_headers,
        )
        paypal.routes["/v2/checkout/orders/ORDER-SRC-2/capture"] = {
            "status": "COMPLETED",
            "purchase_units": [
                {
                    "payments": {
                        "captures": [{"amount": {"value": "75.00", "currency_code": "GBP"}}]
                    }
                }
            ],
        }
        response = client.post(
            f"{API}/paid-chat/paypal/verify", json={"order_id": "ORDER-SRC-2"}, headers=user_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "paid"

        test_db.expire_all()
        conversation = test_db.get(Conversation, response.json()["conversation_id"])
        assert conversation.route_type == "simple_sourcing"
        assert conversation.chat_mode == "paid_human"


class TestPaidChatLookup:
    def test_unknown_handoff(self, client: TestClient, user_headers: dict) -> None:
        response = client.get(f"{API}/paid-chat", params={"handoff_id": 999}, headers=user_headers)
        assert response.status_code == 404
