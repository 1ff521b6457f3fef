import pytest

from storefront.errors import OrderPersistenceError, WebhookPayloadError, WebhookSignatureError
from storefront.orders import service
from storefront.payments.metadata import encode_items
from storefront.referrals.repository import find_referrer_by_code as lookup_referrer

ITEMS = [
    {"id": "P1", "name": "Tote bag", "price": 20.0, "quantity": 2},
    {"id": "P2", "name": "Carnet", "price": 15.0, "quantity": 1},
]

def _session(**overrides):
    session = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": "payment",
        "payment_intent": "pi_1",
        "amount_total": 5500,
        "currency": "usd",
        "customer_details": {
            "email": "Buyer@Example.com",
            "name": "Buyer",
            "address": {"line1": "1 rue de la Paix", "city": "Paris", "postal_code": "75002", "country": "FR"},
        },
        "metadata": {"items": encode_items(ITEMS)},
    }
    session.update(overrides)
    return session

def _deliver(signed_webhook, make_completed_event, session, event_type=None):
    event = make_completed_event(session)
    if event_type:
        event["type"] = event_type
    body, headers = signed_webhook(event)
    return service.handle_webhook(body, headers["Stripe-Signature"])

def test_creates_order_from_verified_event(ledger, signed_webhook, make_completed_event):
    ledger.add_profile("buyer-id", "buyer@example.com")
    result = _deliver(signed_webhook, make_completed_event, _session())
    assert result["status"] == "created"
    assert result["referral_recorded"] is False

    order = ledger.orders[0]
    assert order["total_amount"] == 55.0
    assert order["discount_amount"] == 0.0
    assert order["status"] == "completed"
    assert order["user_id"] == "buyer-id"
    assert order["stripe_session_id"] == "cs_test_1"
    assert order["currency"] == "usd"
    assert order["items"] == [
        {"product_id": "P1", "name": "Tote bag", "price": 20.0, "quantity": 2, "color": None},
        {"product_id": "P2", "name": "Carnet", "price": 15.0, "quantity": 1, "color": None},
    ]
    assert order["shipping_address"] == {
        "line1": "1 rue de la Paix", "line2": "", "city": "Paris", "postal_code": "75002", "state": "", "country": "FR",
    }
    assert ledger.usage == []

def test_shipping_details_take_precedence_over_billing_address(ledger, signed_webhook, make_completed_event):
    session = _session(shipping_details={"name": "Gift", "address": {"line1": "5 High St", "city": "London", "country": "GB"}})
    _deliver(signed_webhook, make_completed_event, session)
    assert ledger.orders[0]["shipping_address"]["city"] == "London"

def test_duplicate_delivery_is_a_noop(ledger, signed_webhook, make_completed_event):
    first = _deliver(signed_webhook, make_completed_event, _session())
    second = _deliver(signed_webhook, make_completed_event, _session())
    assert first["status"] == "created"
    assert second == {"status": "duplicate"}
    assert len(ledger.orders) == 1

def test_concurrent_insert_detected_by_unique_constraint(ledger, signed_webhook, make_completed_event, monkeypatch):
    # La lecture préalable ne voit rien, l'insertion tombe sur la contrainte UNIQUE
    monkeypatch.setattr("storefront.orders.repository.find_order_by_payment_intent", lambda pi: None)
    ledger.orders.append({"id": "ord_other", "stripe_payment_intent_id": "pi_1"})
    result = _deliver(signed_webhook, make_completed_event, _session())
    assert result == {"status": "duplicate"}
    assert len(ledger.orders) == 1

def test_referral_creates_usage_with_commission_on_items_subtotal(ledger, signed_webhook, make_completed_event):
    ledger.add_profile("R", "referrer@example.com", referral_code="ABC123")
    session = _session(amount_total=4950)
    session["metadata"].update({"referral_code": "ABC123", "discount_amount": "5.50"})
    result = _deliver(signed_webhook, make_completed_event, session)

    assert result["referral_recorded"] is True
    order = ledger.orders[0]
    assert order["discount_amount"] == 5.5
    assert order["referrer_id"] == "R"
    assert order["referral_code_used"] == "ABC123"
    assert len(ledger.usage) == 1
    usage = ledger.usage[0]
    assert usage["referrer_id"] == "R"
    assert usage["order_id"] == order["id"]
    assert usage["commission_amount"] == 2.75
    assert usage["commission_percentage"] == 5
    assert usage["payout_status"] == "pending"
    assert usage["referee_email"] == "Buyer@Example.com"

def test_unresolved_referral_still_creates_order(ledger, signed_webhook, make_completed_event):
    session = _session()
    session["metadata"].update({"referral_code": "GONE42", "discount_amount": "5.50"})
    result = _deliver(signed_webhook, make_completed_event, session)
    assert result["status"] == "created"
    assert ledger.orders[0]["referrer_id"] is None
    assert ledger.usage == []

def test_referral_bookkeeping_failure_keeps_the_order(ledger, signed_webhook, make_completed_event):
    ledger.add_profile("R", "referrer@example.com", referral_code="ABC123")
    ledger.fail_referral_usage = True
    session = _session()
    session["metadata"].update({"referral_code": "ABC123", "discount_amount": "5.50"})
    result = _deliver(signed_webhook, make_completed_event, session)
    assert result["status"] == "created"
    assert result["referral_recorded"] is False
    assert len(ledger.orders) == 1

def test_bad_signature_is_rejected_without_side_effects(ledger, signed_webhook, make_completed_event):
    ledger.add_profile("R", "referrer@example.com", referral_code="ABC123")
    body, _ = signed_webhook(make_completed_event(_session()))
    _, forged = signed_webhook(make_completed_event(_session()), secret="whsec_attacker")
    with pytest.raises(WebhookSignatureError):
        service.handle_webhook(body, forged["Stripe-Signature"])
    with pytest.raises(WebhookSignatureError):
        service.handle_webhook(body, None)
    assert ledger.orders == [] and ledger.usage == []

def test_tampered_body_is_rejected(ledger, signed_webhook, make_completed_event):
    body, headers = signed_webhook(make_completed_event(_session()))
    tampered = body.replace(b"5500", b"1")
    with pytest.raises(WebhookSignatureError):
        service.handle_webhook(tampered, headers["Stripe-Signature"])
    assert ledger.orders == []

def test_missing_secret_rejects_everything(ledger, signed_webhook, make_completed_event, monkeypatch):
    body, headers = signed_webhook(make_completed_event(_session()))
    monkeypatch.setattr("storefront.payments.stripe_client.STRIPE_WEBHOOK_SECRET", "")
    with pytest.raises(WebhookSignatureError):
        service.handle_webhook(body, headers["Stripe-Signature"])

def test_other_events_and_subscription_sessions_are_ignored(ledger, signed_webhook, make_completed_event):
    assert _deliver(signed_webhook, make_completed_event, _session(), event_type="payment_intent.succeeded") == {"status": "ignored"}
    assert _deliver(signed_webhook, make_completed_event, _session(mode="subscription", payment_intent=None)) == {"status": "ignored"}
    assert ledger.orders == []

def test_missing_payment_intent_or_items_is_an_error(ledger, signed_webhook, make_completed_event):
    with pytest.raises(WebhookPayloadError):
        _deliver(signed_webhook, make_completed_event, _session(payment_intent=None))
    with pytest.raises(WebhookPayloadError):
        _deliver(signed_webhook, make_completed_event, _session(metadata={}))
    assert ledger.orders == []

def test_non_json_body_with_valid_signature_is_rejected(ledger, signed_webhook):
    body, headers = signed_webhook(b"not json")
    with pytest.raises(WebhookPayloadError):
        service.handle_webhook(body, headers["Stripe-Signature"])
    body, headers = signed_webhook(b"[1, 2]")
    with pytest.raises(WebhookPayloadError):
        service.handle_webhook(body, headers["Stripe-Signature"])

def test_persistence_failure_propagates_for_retry(ledger, signed_webhook, make_completed_event, monkeypatch):
    def boom(data):
        raise OrderPersistenceError("Enregistrement de la commande impossible")
    monkeypatch.setattr("storefront.orders.repository.insert_order", boom)
    with pytest.raises(OrderPersistenceError):
        _deliver(signed_webhook, make_completed_event, _session())
    assert ledger.usage == []

def test_is_session_confirmed(ledger):
    assert service.is_session_confirmed("cs_test_1") is False
    ledger.orders.append({"id": "ord_1", "stripe_payment_intent_id": "pi_1", "stripe_session_id": "cs_test_1"})
    assert service.is_session_confirmed("cs_test_1") is True

def test_referrer_read_failure_defers_order_until_redelivery(ledger, signed_webhook, make_completed_event, monkeypatch):
    ledger.add_profile("R", "referrer@example.com", referral_code="ABC123")
    session = _session()
    session["metadata"].update({"referral_code": "ABC123", "discount_amount": "5.50"})

    # Lecture réelle du parrain, base indisponible: aucune commande, Stripe doit relivrer
    def down():
        raise RuntimeError("supabase timeout")

    monkeypatch.setattr("storefront.referrals.repository.find_referrer_by_code", lookup_referrer)
    monkeypatch.setattr("storefront.referrals.repository.get_service_supabase", down)
    with pytest.raises(OrderPersistenceError):
        _deliver(signed_webhook, make_completed_event, session)
    assert ledger.orders == [] and ledger.usage == []

    # Base rétablie: la relivraison crée la commande et la commission
    monkeypatch.setattr("storefront.referrals.repository.find_referrer_by_code", ledger.find_referrer_by_code)
    result = _deliver(signed_webhook, make_completed_event, session)
    assert result["status"] == "created"
    assert result["referral_recorded"] is True
    assert len(ledger.usage) == 1
