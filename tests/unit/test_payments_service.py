import json

import pytest

from storefront.errors import CartEmptyError, CheckoutSessionNotFound, EmailRequiredError, PaymentProviderError
from storefront.payments import service

ITEMS = [
    {"id": "P1", "name": "Tote bag", "price": 20.0, "quantity": 2, "image_url": "https://img.test/p1.png"},
    {"id": "P2", "name": "Carnet", "price": 15.0, "quantity": 1},
]

def _one_time(**kwargs):
    return service.create_one_time_session(
        ITEMS, "USD", "https://shop.test/ok", "https://shop.test/ko", **kwargs
    )

def test_one_time_session_without_referral_has_no_coupon(stripe_gateway):
    result = _one_time()
    assert result["id"].startswith("cs_test_")
    assert result["url"].startswith("https://checkout.stripe.test/")

    assert stripe_gateway.calls_named("create_coupon") == []
    params = stripe_gateway.calls_named("create_session")[0]
    assert params["mode"] == "payment"
    assert "discounts" not in params
    assert "referral_code" not in params["metadata"]
    assert [li["quantity"] for li in params["line_items"]] == [2, 1]
    assert len(params["shipping_options"]) == 2
    assert "US" in params["shipping_address_collection"]["allowed_countries"]
    assert json.loads(params["metadata"]["items"])[0] == {"i": "P1", "n": "Tote bag", "p": 20.0, "q": 2}

def test_one_time_session_prices_and_products(stripe_gateway):
    _one_time()
    prices = stripe_gateway.calls_named("create_price")
    assert [p["unit_amount"] for p in prices] == [2000, 1500]
    assert all(p["currency"] == "usd" for p in prices)
    products = stripe_gateway.calls_named("create_product")
    assert products[0]["images"] == ["https://img.test/p1.png"]
    assert products[1]["description"] == "Product ID: P2"

def test_one_time_session_with_referral_attaches_single_use_coupon(stripe_gateway):
    _one_time(referral_code="ABC123", discount_amount=5.5, customer_email="buyer@example.com")
    coupon = stripe_gateway.calls_named("create_coupon")[0]
    assert coupon == {"amount_off": 550, "currency": "usd", "name": "Referral Discount - ABC123"}
    params = stripe_gateway.calls_named("create_session")[0]
    assert len(params["discounts"]) == 1
    assert params["discounts"][0]["coupon"].startswith("coupon_")
    assert params["metadata"]["referral_code"] == "ABC123"
    assert params["metadata"]["discount_amount"] == "5.50"
    assert params["customer_email"] == "buyer@example.com"

def test_stripe_failure_becomes_retryable_provider_error(stripe_gateway):
    stripe_gateway.fail_on = "create_session"
    with pytest.raises(PaymentProviderError) as exc:
        _one_time()
    assert exc.value.status_code == 502
    assert exc.value.detail == service.RETRY_MESSAGE

def test_oversized_cart_fails_before_any_stripe_call(stripe_gateway):
    items = [{"id": f"product-{i:04d}", "name": "x", "price": 1.0, "quantity": 1, "color": "Bleu nuit"} for i in range(40)]
    with pytest.raises(PaymentProviderError):
        service.create_one_time_session(items, "USD", "ok", "ko")
    assert stripe_gateway.calls == []

def test_empty_items_rejected(stripe_gateway):
    with pytest.raises(CartEmptyError):
        service.create_one_time_session([], "USD", "ok", "ko")

SELECTOR = {"product_id": "SUB1", "name": "Capsules café", "quantity_type": "10", "quantity": 10, "unit_price": 11.4, "discount_percent": 5}
USER = {"id": "u1", "email": "sub@example.com", "display_name": "Sub"}

def price_id(gateway):
    return list(gateway.prices.values())[0]["id"]

def test_subscription_session_creates_customer_price_and_metadata(stripe_gateway):
    result = service.create_subscription_session(USER, SELECTOR, "https://shop.test/profile", "https://shop.test/subs", "USD")
    assert result["url"]

    assert stripe_gateway.calls_named("create_customer")[0]["email"] == "sub@example.com"
    price = stripe_gateway.calls_named("create_price")[0]
    assert price["unit_amount"] == 11400
    assert price["recurring"] == {"interval": "month"}
    assert price["lookup_key"] == "SUB1-10-10-usd-11400"

    params = stripe_gateway.calls_named("create_session")[0]
    expected_meta = {"user_id": "u1", "plan_id": "SUB1-10-10", "quantity": "10", "quantity_type": "10"}
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": price_id(stripe_gateway), "quantity": 1}]
    assert params["metadata"] == expected_meta
    assert params["subscription_data"] == {"metadata": expected_meta}
    assert "shipping_options" not in params

def test_subscription_session_reuses_customer_and_cached_price(stripe_gateway):
    service.create_subscription_session(USER, SELECTOR, "ok", "ko", "USD")
    service.create_subscription_session(USER, SELECTOR, "ok", "ko", "USD")
    assert len(stripe_gateway.calls_named("create_customer")) == 1
    assert len(stripe_gateway.calls_named("create_price")) == 1
    # Cache mémoire: la seconde session ne consulte même plus Stripe
    assert len(stripe_gateway.calls_named("find_price_by_lookup_key")) == 1

def test_subscription_price_found_by_lookup_key_after_restart(stripe_gateway, monkeypatch):
    service.create_subscription_session(USER, SELECTOR, "ok", "ko", "USD")
    monkeypatch.setattr("storefront.payments.service._PRICE_CACHE", {})
    service.create_subscription_session(USER, SELECTOR, "ok", "ko", "USD")
    assert len(stripe_gateway.calls_named("create_price")) == 1
    assert len(stripe_gateway.calls_named("find_price_by_lookup_key")) == 2

def test_subscription_requires_email(stripe_gateway):
    with pytest.raises(EmailRequiredError):
        service.create_subscription_session({"id": "u1"}, SELECTOR, "ok", "ko", "USD")
    assert stripe_gateway.calls == []

def test_session_summary_and_not_found(stripe_gateway):
    created = _one_time()
    stripe_gateway.sessions[created["id"]].update({"payment_intent": "pi_1", "payment_status": "paid"})
    summary = service.get_session_summary(created["id"])
    assert summary["session_id"] == created["id"]
    assert summary["payment_intent"] == "pi_1"
    assert "items" in summary["metadata"]

    with pytest.raises(CheckoutSessionNotFound):
        service.get_session_summary("cs_unknown")
