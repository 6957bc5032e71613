import json
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import SubscriptionAuditLog, WebhookEventLog
from billing.services.payment_gateway import StripeConfigurationError, StripeWebhookSignatureError
from billing.services.subscription_lifecycle import create_subscription
from billing.tasks import cleanup_webhook_event_logs, process_gateway_event_async, record_event_log
from billing.tests.factories import create_user, seed_plans

WEBHOOK_URL = "/api/billing/webhook/stripe/"


def succeeded_event(intent_id: str = "pi_hook", event_id: str = "evt_hook") -> dict:
    return {
        "id": event_id,
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "object": "payment_intent", "status": "succeeded"}},
    }


def post_webhook(payload: dict, signature: str = "t=1,v1=abc"):
    client = APIClient()
    return client.post(
        WEBHOOK_URL,
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature,
    )


@pytest.mark.django_db
def test_event_task_settles_payment_and_logs_once(settings):
    settings.BILLING_VERIFY_GATEWAY_PAYMENTS = False
    plans = seed_plans()
    user = create_user()
    create_subscription(user, plans["Monthly"].pk, "pi_hook")

    outcome = process_gateway_event_async(succeeded_event())

    assert outcome["status"] == "processed"
    log_entry = WebhookEventLog.objects.get(event_id="evt_hook")
    assert log_entry.status == WebhookEventLog.Status.PROCESSED
    assert log_entry.handled is True
    assert log_entry.account_id == user.pk
    assert len(log_entry.payload_hash) == 64
    assert SubscriptionAuditLog.objects.get(payment_reference="pi_hook").payment_status == "completed"

    assert process_gateway_event_async(succeeded_event()) == {"status": "skipped"}


@pytest.mark.django_db
def test_event_task_marks_unmatched_event_ignored():
    outcome = process_gateway_event_async(succeeded_event("pi_unknown", "evt_unknown"))

    assert outcome["status"] == "not_found"
    log_entry = WebhookEventLog.objects.get(event_id="evt_unknown")
    assert log_entry.status == WebhookEventLog.Status.IGNORED
    assert log_entry.handled is True
    assert "pi_unknown" in log_entry.last_error


@pytest.mark.django_db
def test_cleanup_removes_only_old_handled_events():
    old_time = timezone.now() - timedelta(days=10)
    WebhookEventLog.objects.create(
        event_id="evt_old", status=WebhookEventLog.Status.PROCESSED, handled=True, processed_at=old_time
    )
    WebhookEventLog.objects.create(
        event_id="evt_recent", status=WebhookEventLog.Status.PROCESSED, handled=True, processed_at=timezone.now()
    )
    WebhookEventLog.objects.create(event_id="evt_failed", status=WebhookEventLog.Status.FAILED, handled=False)

    deleted = cleanup_webhook_event_logs(days=7)

    assert deleted == 1
    assert set(WebhookEventLog.objects.values_list("event_id", flat=True)) == {"evt_recent", "evt_failed"}


@pytest.mark.django_db
def test_webhook_queues_verified_event():
    event = succeeded_event()
    with patch("billing.views_webhook.parse_event", return_value=event) as parse, patch(
        "billing.views_webhook.process_gateway_event_async.delay"
    ) as delay:
        response = post_webhook(event)

    assert response.status_code == 202
    assert response.json() == {"status": "queued"}
    parse.assert_called_once()
    delay.assert_called_once_with(event)
    assert WebhookEventLog.objects.get(event_id="evt_hook").status == WebhookEventLog.Status.RECEIVED


@pytest.mark.django_db
def test_webhook_skips_already_handled_event():
    WebhookEventLog.objects.create(
        event_id="evt_hook", status=WebhookEventLog.Status.PROCESSED, handled=True, processed_at=timezone.now()
    )
    event = succeeded_event()
    with patch("billing.views_webhook.parse_event", return_value=event), patch(
        "billing.views_webhook.process_gateway_event_async.delay"
    ) as delay:
        response = post_webhook(event)

    assert response.status_code == 200
    assert response.json() == {"status": "processed"}
    delay.assert_not_called()


@pytest.mark.django_db
def test_webhook_rejects_bad_signature():
    with patch("billing.views_webhook.parse_event", side_effect=StripeWebhookSignatureError("bad")), patch(
        "billing.views_webhook.process_gateway_event_async.delay"
    ) as delay:
        response = post_webhook(succeeded_event())

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_signature"
    delay.assert_not_called()
    assert not WebhookEventLog.objects.exists()


@pytest.mark.django_db
def test_webhook_without_signature_header_is_rejected():
    client = APIClient()
    response = client.post(WEBHOOK_URL, data=json.dumps(succeeded_event()), content_type="application/json")

    assert response.status_code == 400
    assert response.json()["code"] == "missing_signature"


@pytest.mark.django_db
def test_webhook_reports_missing_secret():
    with patch("billing.views_webhook.parse_event", side_effect=StripeConfigurationError("no secret")):
        response = post_webhook(succeeded_event())

    assert response.status_code == 500
    assert response.json()["code"] == "payment_gateway_misconfigured"


@pytest.mark.django_db
def test_received_event_is_settled_on_the_same_log_row(settings):
    settings.BILLING_VERIFY_GATEWAY_PAYMENTS = False
    plans = seed_plans()
    user = create_user()
    create_subscription(user, plans["Monthly"].pk, "pi_hook")
    event = succeeded_event()

    with patch("billing.views_webhook.parse_event", return_value=event), patch(
        "billing.views_webhook.process_gateway_event_async.delay"
    ):
        post_webhook(event)
    received = WebhookEventLog.objects.get(event_id="evt_hook")

    process_gateway_event_async(event)

    settled = WebhookEventLog.objects.get(event_id="evt_hook")
    assert settled.pk == received.pk
    assert settled.payload_hash == received.payload_hash
    assert settled.status == WebhookEventLog.Status.PROCESSED


@pytest.mark.django_db
def test_event_without_identifier_is_not_logged():
    event = succeeded_event("pi_anon")
    event.pop("id")

    log_entry, already_handled = record_event_log(event, status=WebhookEventLog.Status.RECEIVED)

    assert (log_entry, already_handled) == (None, False)
    assert not WebhookEventLog.objects.exists()
