"""Testes de integração do envio individual, em lote e validação de telefone."""

from __future__ import annotations

import pytest

from zaprelay.domain.errors import RateLimited, RecipientUnreachable, TransientTransportError


@pytest.fixture()
def connected_client(client, pair_session):
    client.post("/session/initialize")
    pair_session(client)
    return client


class TestValidatePhone:
    def test_valid_local_number(self, client):
        response = client.post("/phone/validate", json={"phone_number": "0300-1234567"})

        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is True
        assert body["canonical_address"] == "923001234567"
        assert body["routing_id"] == "923001234567@c.us"

    def test_only_zeros(self, client):
        body = client.post("/phone/validate", json={"phone_number": "0000"}).json()

        assert body["is_valid"] is False
        assert "zeros" in body["reason"]

    def test_non_string_is_required_error(self, client):
        body = client.post("/phone/validate", json={"phone_number": 3001234567}).json()

        assert body["is_valid"] is False
        assert body["reason"] == "Phone number is required"

    def test_does_not_need_session(self, client, memory_factory):
        client.post("/phone/validate", json={"phone_number": "03001234567"})
        assert memory_factory.created == []


class TestSendMessage:
    def test_not_ready_returns_503(self, client):
        response = client.post(
            "/messages/send", json={"phone_number": "03001234567", "message": "Olá"}
        )

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "NOT_READY"
        assert detail["outcome"]["attempts"] == 0

    def test_sent(self, connected_client, memory_factory):
        response = connected_client.post(
            "/messages/send", json={"phone_number": "03001234567", "message": "Olá"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "SENT"
        assert body["success"] is True
        assert body["attempts"] == 1
        assert body["canonical_address"] == "923001234567"
        assert body["message_id"] == memory_factory.current.sent[0].message_id

    def test_empty_message_returns_400(self, connected_client):
        response = connected_client.post(
            "/messages/send", json={"phone_number": "03001234567", "message": "  "}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Message text cannot be empty"

    def test_missing_phone_returns_400(self, connected_client):
        response = connected_client.post("/messages/send", json={"message": "Olá"})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VALIDATION"

    def test_unregistered_returns_404(self, connected_client, memory_factory):
        memory_factory.current.mark_unreachable("923001234567@c.us")

        response = connected_client.post(
            "/messages/send", json={"phone_number": "03001234567", "message": "Olá"}
        )

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "RECIPIENT_UNREACHABLE"
        assert memory_factory.current.send_calls == 0

    def test_rate_limit_recovers(self, connected_client, memory_factory):
        memory_factory.current.script_send_errors(RateLimited("slow"), RateLimited("slow"))

        response = connected_client.post(
            "/messages/send", json={"phone_number": "03001234567", "message": "Olá"}
        )

        assert response.status_code == 200
        assert response.json()["attempts"] == 3

    def test_exhausted_returns_502(self, connected_client, memory_factory):
        memory_factory.current.script_send_errors(
            *(TransientTransportError("Protocol error") for _ in range(6))
        )

        response = connected_client.post(
            "/messages/send", json={"phone_number": "03001234567", "message": "Olá"}
        )

        assert response.status_code == 502
        outcome = response.json()["detail"]["outcome"]
        assert outcome["status"] == "FAILED"
        assert outcome["attempts"] == 6
        assert outcome["error"] == "TRANSIENT_TRANSPORT"


class TestBulkSend:
    def test_mixed_batch(self, connected_client, memory_factory):
        memory_factory.current.script_send_errors(RecipientUnreachable("gone"))
        payload = {
            "recipients": [
                {"phone_number": "03001234567", "message": "Olá A", "reference": "c-1"},
                {"phone_number": None, "message": "Olá B", "reference": "c-2"},
                {"phone_number": "03001234568", "message": "Olá C", "reference": "c-3"},
            ]
        }

        response = connected_client.post("/messages/bulk", json=payload)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert body["sent_count"] == 1
        assert body["failed_count"] == 2
        assert [o["reference"] for o in body["outcomes"]] == ["c-1", "c-2", "c-3"]
        assert [o["status"] for o in body["outcomes"]] == ["REJECTED", "REJECTED", "SENT"]
        assert body["outcomes"][1]["error_message"] == "No phone number"
        assert [m.text for m in memory_factory.current.sent] == ["Olá C"]

    def test_batch_too_large(self, client, app_settings):
        count = app_settings.bulk_max_batch_size + 1
        payload = {"recipients": [{"phone_number": "03001234567", "message": "x"}] * count}

        response = client.post("/messages/bulk", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VALIDATION"

    def test_empty_batch(self, client):
        body = client.post("/messages/bulk", json={"recipients": []}).json()

        assert body == {"total": 0, "sent_count": 0, "failed_count": 0, "outcomes": []}
