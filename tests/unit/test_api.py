"""Unit tests for HTTP and websocket endpoints."""
import json

from callrelay.services.session.models import CallSession


class TestHealth:
    """Test service endpoints."""

    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "active_calls": 0}

    def test_root(self, test_client):
        assert test_client.get("/").json()["message"] == "Call Relay API"


class TestOutboundCall:
    """Test POST /outbound-call."""

    BODY = {
        "properties": {
            "phoneNumber": "+61400000000",
            "customerReference": "ref-123",
            "customerName": "Jo Smith",
        }
    }

    def test_creates_ticket_then_dials(self, test_client, registry, ticketing, telephony):
        response = test_client.post("/outbound-call", json=self.BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert telephony.dialed == [("+61400000000", "ref-123")]
        assert ticketing.created == ["ref-123"]

        session = registry._sessions["ref-123"]
        assert session.ticket_id == "KD0001"
        assert session.call_sid == data["callSid"]
        assert session.customer_data["customerName"] == "Jo Smith"

        history = test_client.get("/api/calls/history").json()
        assert history[0]["call_sid"] == data["callSid"]
        assert history[0]["status"] == "dialing"

    def test_ticket_failure_is_502(self, test_client, registry, ticketing, telephony):
        ticketing.fail_create = True

        response = test_client.post("/outbound-call", json=self.BODY)

        assert response.status_code == 502
        assert telephony.dialed == []
        assert len(registry) == 0

    def test_dial_failure_is_502(self, test_client, registry, telephony):
        telephony.fail_dial = True

        response = test_client.post("/outbound-call", json=self.BODY)

        assert response.status_code == 502
        assert len(registry) == 0

    def test_missing_phone_number_is_422(self, test_client):
        response = test_client.post("/outbound-call", json={"properties": {"customerReference": "ref-1"}})

        assert response.status_code == 422


class TestAssignmentCallback:
    """Test POST /assignment-callback."""

    def _form(self, interaction_sid="KD0001"):
        return {
            "WorkspaceSid": "WS1",
            "WorkerSid": "WK1",
            "TaskSid": "WT1",
            "ReservationSid": "WR1",
            "TaskAttributes": json.dumps(
                {
                    "flexInteractionSid": interaction_sid,
                    "flexInteractionChannelSid": "UO0001",
                    "conversationSid": "CH0001",
                }
            ),
        }

    def test_attaches_ticket_to_session(self, test_client, registry, ticketing):
        registry._sessions["ref-123"] = CallSession(
            correlation_token="ref-123", destination_number="+61400000000", ticket_id="KD0001"
        )

        response = test_client.post("/assignment-callback", data=self._form())

        assert response.status_code == 200
        assert response.json()["matched"] is True
        session = registry._sessions["ref-123"]
        assert session.has_ticket
        assert session.transcript_destination == "CH0001"
        assert session.task_id == "WT1"
        assert len(ticketing.accepted) == 1

    def test_unmatched_interaction(self, test_client):
        response = test_client.post("/assignment-callback", data=self._form("KD9999"))

        assert response.status_code == 200
        assert response.json()["matched"] is False

    def test_assignment_before_ticket_id_is_stored(self, test_client, registry):
        """Reservation data that beats the outbound request is applied once the ticket id is known."""
        early = test_client.post("/assignment-callback", data=self._form("KD0001"))
        assert early.json()["matched"] is False

        response = test_client.post("/outbound-call", json=TestOutboundCall.BODY)

        assert response.status_code == 200
        session = registry._sessions["ref-123"]
        assert session.has_ticket
        assert session.ticket_channel_id == "UO0001"
        assert session.transcript_destination == "CH0001"
        assert session.task_id == "WT1"

    def test_invalid_attributes_is_502(self, test_client):
        form = self._form()
        form["TaskAttributes"] = "not json"

        response = test_client.post("/assignment-callback", data=form)

        assert response.status_code == 502


class TestVoiceConnect:
    def test_returns_twiml(self, test_client):
        response = test_client.post("/voice/connect", params={"customerReference": "ref-123"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "ref-123" in response.text


class TestTools:
    """Test business tool endpoints."""

    def test_status_update(self, test_client):
        response = test_client.post(
            "/tools/status-update", json={"customerReference": "ref-1", "status": "in progress"}
        )

        assert response.status_code == 200
        assert response.json() == {"Customer Reference": "ref-1", "Status": "in progress"}

    def test_status_update_rejects_unknown_status(self, test_client):
        response = test_client.post(
            "/tools/status-update", json={"customerReference": "ref-1", "status": "lost"}
        )

        assert response.status_code == 422

    def test_verify_send_then_code(self, test_client, telephony, verification_store):
        response = test_client.post("/tools/verify-send", json={"from": "+61400000000"})
        assert response.status_code == 200
        assert telephony.sms[0][0] == "+61400000000"

        code = verification_store.pending("+61400000000")
        assert code in telephony.sms[0][1]

        wrong = test_client.post("/tools/verify-code", json={"code": "0000" if code != "0000" else "1111", "from": "+61400000000"})
        assert wrong.json() == {"verified": False}

        right = test_client.post("/tools/verify-code", json={"code": code, "from": "+61400000000"})
        assert right.json() == {"verified": True}

        reused = test_client.post("/tools/verify-code", json={"code": code, "from": "+61400000000"})
        assert reused.json() == {"verified": False}

    def test_verify_code_requires_code(self, test_client):
        response = test_client.post("/tools/verify-code", json={"from": "+61400000000"})

        assert response.status_code == 422


class TestAgentMessage:
    def test_unknown_call_is_404(self, test_client):
        response = test_client.post(
            "/agent-message", json={"correlationToken": "ref-404", "message": "Hello"}
        )

        assert response.status_code == 404


class TestConversationRelaySocket:
    """Test the relay websocket."""

    def test_unknown_reference_gets_error(self, test_client):
        with test_client.websocket_connect("/conversation-relay") as websocket:
            websocket.send_json(
                {
                    "type": "setup",
                    "callSid": "CA1",
                    "customParameters": {"customerReference": "unknown"},
                }
            )
            message = websocket.receive_json()

        assert message["type"] == "error"
        assert "unknown" in message["description"]

    def test_forwarder_failure_still_records_outcome(self, test_client, monkeypatch):
        from callrelay.api import relay

        async def failing_forwarder(websocket, orchestrator):
            raise ValueError("send path broke")

        recorded = []

        async def record(orchestrator):
            recorded.append(orchestrator.end_reason)

        monkeypatch.setattr(relay, "_forward_events", failing_forwarder)
        monkeypatch.setattr(relay, "_record_outcome", record)

        with test_client.websocket_connect("/conversation-relay") as websocket:
            websocket.send_json(
                {
                    "type": "setup",
                    "callSid": "CA1",
                    "customParameters": {"customerReference": "unknown"},
                }
            )

        assert recorded == ["setup-failed"]
        assert relay.active_call_count() == 0
