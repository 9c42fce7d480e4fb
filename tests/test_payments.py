"""
Tests for the Paystack payment webhook and payment service.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest


def _post(client, body: bytes, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["x-paystack-signature"] = signature
    return client.post("/webhooks/paystack", content=body, headers=headers)


class TestSignatureVerification:
    """Tests for HMAC-SHA512 signature checks."""

    def test_valid_signature_accepted(self, charge_success_body, sign_paystack):
        from services.payment_service import verify_paystack_signature

        signature = sign_paystack(charge_success_body)
        assert verify_paystack_signature(charge_success_body, signature, "sk_test_paystack_secret")

    def test_single_bit_change_in_body_rejected(self, charge_success_body, sign_paystack):
        """Flipping one bit of the body invalidates the signature."""
        from services.payment_service import verify_paystack_signature

        signature = sign_paystack(charge_success_body)
        mutated = bytearray(charge_success_body)
        mutated[10] ^= 0x01

        assert not verify_paystack_signature(bytes(mutated), signature, "sk_test_paystack_secret")

    def test_wrong_secret_rejected(self, charge_success_body, sign_paystack):
        from services.payment_service import verify_paystack_signature

        signature = sign_paystack(charge_success_body, secret="sk_live_other")
        assert not verify_paystack_signature(charge_success_body, signature, "sk_test_paystack_secret")

    def test_missing_signature_rejected(self, charge_success_body):
        from services.payment_service import verify_paystack_signature

        assert not verify_paystack_signature(charge_success_body, None, "sk_test_paystack_secret")
        assert not verify_paystack_signature(charge_success_body, "", "sk_test_paystack_secret")

    def test_uppercase_hex_rejected(self, charge_success_body, sign_paystack):
        """Comparison is byte-for-byte against the lowercase hex digest."""
        from services.payment_service import verify_paystack_signature

        signature = sign_paystack(charge_success_body).upper()
        assert not verify_paystack_signature(charge_success_body, signature, "sk_test_paystack_secret")


class TestPaystackWebhook:
    """Tests for POST /webhooks/paystack."""

    def test_charge_success_marks_payment_paid(
        self, client, backend, pending_payment, charge_success_body, sign_paystack
    ):
        response = _post(client, charge_success_body, sign_paystack(charge_success_body))

        assert response.status_code == 200
        assert response.json()["received"] is True
        assert response.json()["outcome"] == "marked_paid"

        payment = backend.tables["payments"][0]
        assert payment["status"] == "Paid"

    def test_charge_success_notifies_user(
        self, client, backend, pending_payment, charge_success_body, sign_paystack
    ):
        _post(client, charge_success_body, sign_paystack(charge_success_body))

        notifications = backend.tables["notifications"]
        assert len(notifications) == 1
        assert notifications[0]["user_id"] == "user-1"
        assert notifications[0]["type"] == "payment_success"
        assert notifications[0]["title"] == "Payment Successful"
        assert notifications[0]["description"] == "Your payment of NGN 5000.00 was successful."

    def test_invalid_signature_returns_401_without_backend_access(
        self, client, backend, pending_payment, charge_success_body
    ):
        backend.select_one = AsyncMock()
        backend.update = AsyncMock()

        response = _post(client, charge_success_body, "0" * 128)

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_error"
        backend.select_one.assert_not_called()
        backend.update.assert_not_called()

    def test_missing_signature_header_returns_401(self, client, backend, pending_payment, charge_success_body):
        response = _post(client, charge_success_body, None)

        assert response.status_code == 401
        assert backend.tables["payments"][0]["status"] == "Pending"

    def test_mutated_body_rejected(self, client, backend, pending_payment, charge_success_body, sign_paystack):
        signature = sign_paystack(charge_success_body)
        tampered = charge_success_body.replace(b"500000", b"900000")

        response = _post(client, tampered, signature)

        assert response.status_code == 401
        assert backend.tables["payments"][0]["status"] == "Pending"

    def test_unknown_reference_returns_404(self, client, backend, sign_paystack):
        body = json.dumps({"event": "charge.success", "data": {"reference": "nope", "amount": 100}}).encode()

        response = _post(client, body, sign_paystack(body))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
        assert backend.tables["notifications"] == []

    def test_missing_reference_returns_404(self, client, backend, sign_paystack):
        body = json.dumps({"event": "charge.success", "data": {"amount": 100}}).encode()

        response = _post(client, body, sign_paystack(body))

        assert response.status_code == 404

    def test_already_paid_is_not_updated_again(self, client, backend, charge_success_body, sign_paystack):
        backend.seed(
            "payments",
            {"id": "pay-1", "transaction_id": "abc123", "amount": 500000, "status": "Paid", "user_id": "user-1"},
        )

        response = _post(client, charge_success_body, sign_paystack(charge_success_body))

        assert response.status_code == 200
        assert response.json()["outcome"] == "already_paid"
        assert backend.tables["notifications"] == []

    def test_redelivery_sends_one_notification(
        self, client, backend, pending_payment, charge_success_body, sign_paystack
    ):
        signature = sign_paystack(charge_success_body)

        first = _post(client, charge_success_body, signature)
        second = _post(client, charge_success_body, signature)

        assert first.json()["outcome"] == "marked_paid"
        assert second.json()["outcome"] == "already_paid"
        assert len(backend.tables["notifications"]) == 1

    def test_fractional_stored_amount_still_marked_paid(self, client, backend, sign_paystack):
        backend.seed(
            "payments",
            {"id": "pay-2", "transaction_id": "ref-frac", "amount": 1500.5, "status": "Pending", "user_id": "user-2"},
        )
        body = json.dumps(
            {"event": "charge.success", "data": {"reference": "ref-frac", "amount": 150050}}
        ).encode()

        response = _post(client, body, sign_paystack(body))

        assert response.status_code == 200
        assert response.json()["outcome"] == "marked_paid"
        assert backend.tables["payments"][0]["status"] == "Paid"
        assert backend.tables["notifications"][0]["description"] == "Your payment of NGN 1500.50 was successful."

    def test_failed_payment_can_be_paid(self, client, backend, charge_success_body, sign_paystack):
        backend.seed(
            "payments",
            {"id": "pay-1", "transaction_id": "abc123", "amount": 5000, "status": "Failed", "user_id": "user-1"},
        )

        response = _post(client, charge_success_body, sign_paystack(charge_success_body))

        assert response.json()["outcome"] == "marked_paid"
        assert backend.tables["payments"][0]["status"] == "Paid"

    def test_notification_failure_still_returns_200(
        self, client, backend, pending_payment, charge_success_body, sign_paystack
    ):
        backend.fail_writes["notifications"] = RuntimeError("notifications table unavailable")

        response = _post(client, charge_success_body, sign_paystack(charge_success_body))

        assert response.status_code == 200
        assert backend.tables["payments"][0]["status"] == "Paid"

    def test_other_events_acknowledged_and_ignored(self, client, backend, pending_payment, sign_paystack):
        body = json.dumps({"event": "transfer.success", "data": {"reference": "abc123"}}).encode()

        response = _post(client, body, sign_paystack(body))

        assert response.status_code == 200
        assert response.json()["received"] is True
        assert response.json()["outcome"] == "ignored"
        assert backend.tables["payments"][0]["status"] == "Pending"

    def test_invalid_json_returns_400(self, client, backend, sign_paystack):
        body = b"{not json"

        response = _post(client, body, sign_paystack(body))

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_backend_failure_returns_500(
        self, client, backend, pending_payment, charge_success_body, sign_paystack
    ):
        from services.backend import BackendError

        backend.fail_writes["payments"] = BackendError("connection refused", table="payments")

        response = _post(client, charge_success_body, sign_paystack(charge_success_body))

        assert response.status_code == 500
        assert response.json()["error"] == "backend_error"

    def test_missing_secret_returns_500(self, client, backend, pending_payment, charge_success_body, sign_paystack):
        with patch("routes.payments.settings") as mock_settings:
            mock_settings.paystack_secret_key = ""
            response = _post(client, charge_success_body, sign_paystack(charge_success_body))

        assert response.status_code == 500
        assert response.json()["error"] == "configuration_error"
        assert backend.tables["payments"][0]["status"] == "Pending"


class TestHandleEvent:
    """Tests for payment_service.handle_event."""

    @pytest.mark.asyncio
    async def test_notification_uses_event_amount(self, backend, pending_payment):
        from models.records import PaystackEvent
        from services.payment_service import PaymentOutcome, handle_event

        event = PaystackEvent.model_validate(
            {"event": "charge.success", "data": {"reference": "abc123", "amount": 150050}}
        )

        with patch("services.payment_service.notification_service") as mock_notifications:
            mock_notifications.notify_payment_success = AsyncMock()
            outcome = await handle_event(backend, event)

        assert outcome == PaymentOutcome.MARKED_PAID
        mock_notifications.notify_payment_success.assert_awaited_once_with(backend, "user-1", 150050)

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_notify_once(self, backend, pending_payment):
        import asyncio

        from models.records import PaystackEvent
        from services.payment_service import handle_event

        event = PaystackEvent.model_validate(
            {"event": "charge.success", "data": {"reference": "abc123", "amount": 500000}}
        )

        # Both deliveries read the row before either writes
        real_select_one = backend.select_one
        reads = []

        async def select_one(table, filters):
            row = await real_select_one(table, filters)
            reads.append(row["status"])
            while len(reads) < 2:
                await asyncio.sleep(0)
            return row

        backend.select_one = select_one

        outcomes = await asyncio.gather(handle_event(backend, event), handle_event(backend, event))

        assert reads == ["Pending", "Pending"]
        assert sorted(o.value for o in outcomes) == ["already_paid", "marked_paid"]
        assert len(backend.tables["notifications"]) == 1
        assert backend.tables["payments"][0]["status"] == "Paid"

    @pytest.mark.asyncio
    async def test_update_publishes_change_event(self, backend, pending_payment):
        from models.records import PaystackEvent
        from services.payment_service import handle_event

        events = []
        backend.subscribe("payments", events.append)

        event = PaystackEvent.model_validate(
            {"event": "charge.success", "data": {"reference": "abc123", "amount": 500000}}
        )
        await handle_event(backend, event)

        assert len(events) == 1
        assert events[0].event_type.value == "UPDATE"
        assert events[0].record["status"] == "Paid"

    def test_parse_event_rejects_non_object(self):
        from services.payment_service import InvalidPayloadError, parse_event

        with pytest.raises(InvalidPayloadError):
            parse_event(b"[1, 2, 3]")
