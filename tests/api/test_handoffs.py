"""Tests for handoff routes."""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from linescout.db.models import Agent, Conversation, HandoffStatus, User
from tests.factories import make_handoff, make_paid_conversation

API = "/api/v1"


def _status(client: TestClient, handoff_id: int, headers: dict, **body):
    return client.post(f"{API}/handoffs/{handoff_id}/status", json=body, headers=headers)


def _claimed(db: Session, user: User, agent: Agent):
    return make_handoff(db, user, status=HandoffStatus.claimed.value, claimed_by=agent.id)


class TestCreateHandoff:
    def test_links_conversation(
        self, client: TestClient, test_db: Session, user: User, user_headers: dict
    ) -> None:
        conversation = make_paid_conversation(test_db, user)
        response = client.post(
            f"{API}/handoffs",
            json={
                "route_type": "machine_sourcing",
                "context": "Bottling line, 2000 bph",
                "conversation_id": conversation.id,
            },
            headers=user_headers,
        )
        assert response.status_code == 201
        handoff = response.json()["handoff"]
        assert handoff["status"] == "pending"
        assert handoff["user_id"] == user.id

        test_db.expire_all()
        assert test_db.get(Conversation, conversation.id).handoff_id == handoff["id"]

    def test_foreign_conversation_rejected(
        self, client: TestClient, test_db: Session, other_user: User, user_headers: dict
    ) -> None:
        conversation = make_paid_conversation(test_db, other_user)
        response = client.post(
            f"{API}/handoffs", json={"conversation_id": conversation.id}, headers=user_headers
        )
        assert response.status_code == 404


class TestClaimHandoff:
    def test_claim_assigns_linked_conversations(
        self,
        client: TestClient,
        test_db: Session,
        user: User,
        agent: Agent,
        agent_headers: dict,
        other_agent_headers: dict,
    ) -> None:
        handoff = make_handoff(test_db, user)
        conversation = make_paid_conversation(test_db, user, handoff_id=handoff.id)

        response = client.post(f"{API}/handoffs/{handoff.id}/claim", headers=agent_headers)
        assert response.status_code == 200
        assert response.json()["handoff"]["status"] == "claimed"
        assert response.json()["handoff"]["claimed_by"] == agent.id

        test_db.expire_all()
        assert test_db.get(Conversation, conversation.id).assigned_agent_id == agent.id

        again = client.post(f"{API}/handoffs/{handoff.id}/claim", headers=other_agent_headers)
        assert again.status_code == 409


class TestUpdateStatus:
    def test_full_pipeline(
        self,
        client: TestClient,
        test_db: Session,
        user: User,
        agent: Agent,
        agent_headers: dict,
        gateway,
    ) -> None:
        handoff = _claimed(test_db, user, agent)

        found = _status(client, handoff.id, agent_headers, status="manufacturer_found")
        assert found.json()["changed"] is True
        assert found.json()["notified"] is True
        assert found.json()["handoff"]["manufacturer_found_at"]

        _status(client, handoff.id, agent_headers, status="paid")

        missing = _status(client, handoff.id, agent_headers, status="shipped", shipper="DHL")
        assert missing.status_code == 400
        assert missing.json()["error"] == "Missing tracking_number"

        shipped = _status(
            client,
            handoff.id,
            agent_headers,
            status="shipped",
            shipper="DHL",
            tracking_number="JD014600",
        ).json()["handoff"]
        assert shipped["shipper"] == "DHL"
        assert shipped["tracking_number"] == "JD014600"

        delivered = _status(client, handoff.id, agent_headers, status="delivered")
        assert delivered.json()["handoff"]["delivered_at"]

        terminal = _status(
            client, handoff.id, agent_headers, status="cancelled", cancel_reason="Late"
        )
        assert terminal.status_code == 400
        assert terminal.json()["error_code"] == "E-2003"

        event = gateway.json_body("/webhook/linescout-events")
        assert event["event"] == "handoff.status_changed"
        assert event["previous_status"] == "claimed"
        assert event["status"] == "manufacturer_found"

    def test_skipping_a_step(
        self, client: TestClient, test_db: Session, user: User, agent: Agent, agent_headers: dict
    ) -> None:
        handoff = _claimed(test_db, user, agent)
        response = _status(client, handoff.id, agent_headers, status="shipped")
        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "E-2002"
        assert body["allowed"] == ["cancelled", "manufacturer_found"]

    def test_same_status_is_noop(
        self,
        client: TestClient,
        test_db: Session,
        user: User,
        agent: Agent,
        agent_headers: dict,
        gateway,
    ) -> None:
        handoff = _claimed(test_db, user, agent)
        body = _status(client, handoff.id, agent_headers, status="claimed").json()
        assert body["changed"] is False
        assert body["notified"] is False
        assert gateway.requests == []

    def test_unclaimed_milestone(
        self, client: TestClient, test_db: Session, user: User, agent_headers: dict
    ) -> None:
        handoff = make_handoff(test_db, user)
        response = _status(client, handoff.id, agent_headers, status="manufacturer_found")
        assert response.status_code == 400
        assert response.json()["error_code"] == "E-2004"

    def test_other_agents_handoff(
        self,
        client: TestClient,
        test_db: Session,
        user: User,
        other_agent: Agent,
        agent_headers: dict,
        admin_headers: dict,
    ) -> None:
        handoff = make_handoff(
            test_db, user, status=HandoffStatus.claimed.value, claimed_by=other_agent.id
        )
        blocked = _status(client, handoff.id, agent_headers, status="manufacturer_found")
        assert blocked.status_code == 403
        assert blocked.json()["error"] == "This handoff is claimed by another agent."

        allowed = _status(client, handoff.id, admin_headers, status="manufacturer_found")
        assert allowed.status_code == 200

    def test_cancel_cascades_to_conversations(
        self, client: TestClient, test_db: Session, user: User, agent_headers: dict
    ) -> None:
        handoff = make_handoff(test_db, user)
        conversation = make_paid_conversation(test_db, user, handoff_id=handoff.id)

        missing = _status(client, handoff.id, agent_headers, status="cancelled")
        assert missing.status_code == 400

        response = _status(
            client, handoff.id, agent_headers, status="cancelled", cancel_reason="Budget cut"
        )
        assert response.json()["handoff"]["cancel_reason"] == "Budget cut"
        test_db.expire_all()
        assert test_db.get(Conversation, conversation.id).project_status == "cancelled"

    def test_invalid_status_value(
        self, client: TestClient, test_db: Session, user: User, agent_headers: dict
    ) -> None:
        handoff = make_handoff(test_db, user)
        response = _status(client, handoff.id, agent_headers, status="teleported")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid status: teleported"


class TestHandoffPayments:
    def test_empty_history(
        self, client: TestClient, test_db: Session, user: User, agent_headers: dict
    ) -> None:
        handoff = make_handoff(test_db, user)
        body = client.get(f"{API}/handoffs/{handoff.id}/payments", headers=agent_headers).json()
        assert body == {"ok": True, "items": [], "total_minor": 0}

    def test_unknown_handoff(self, client: TestClient, agent_headers: dict) -> None:
        assert client.get(f"{API}/handoffs/404/payments", headers=agent_headers).status_code == 404
