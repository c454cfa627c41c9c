"""
Unit Tests for logging setup: request ids and credential masking
"""

import json
import logging

from storefront.core.logging_config import (
    CredentialMaskingFilter, JsonFormatter, RequestIdFilter, mask_credentials, set_request_id,
)


def make_record(msg, *args, **extra):
    record = logging.LogRecord("storefront.test", logging.ERROR, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCredentialMasking:

    def test_masks_gateway_keys_and_auth_headers(self):
        text = ('key rzp_live_AbC123 failed: {"Authorization": "Basic cnpwOnNlY3JldA==", '
                '"key_secret_inr": "s3cr3t", "razorpay_signature": "deadbeef"}')

        masked = mask_credentials(text)

        assert "AbC123" not in masked
        assert "cnpwOnNlY3JldA==" not in masked
        assert "s3cr3t" not in masked
        assert "deadbeef" not in masked
        assert "rzp_live_***" in masked

    def test_courier_token_header(self):
        assert mask_credentials("Authorization: Token abc.def") == "Authorization: Token ***"

    def test_plain_messages_untouched(self):
        text = "Invalid delivery webhook token for AWB 1234"
        assert mask_credentials(text) == text

    def test_filter_rewrites_formatted_message(self):
        record = make_record("Refund for %s used %s", "pay_001", "rzp_test_key")

        assert CredentialMaskingFilter().filter(record) is True
        assert record.getMessage() == "Refund for pay_001 used rzp_test_***"


class TestRequestIdAndJson:

    def test_request_id_is_stamped(self):
        set_request_id("req_abc")
        try:
            record = make_record("hello")
            RequestIdFilter().filter(record)
            assert record.request_id == "req_abc"
        finally:
            set_request_id(None)

        record = make_record("hello")
        RequestIdFilter().filter(record)
        assert record.request_id == "-"

    def test_json_formatter_includes_extra_fields(self):
        record = make_record("Checkout failed", order_id="order-1", request_id="req_1")

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Checkout failed"
        assert data["order_id"] == "order-1"
        assert data["request_id"] == "req_1"
        assert data["level"] == "ERROR"
        assert data["service"] == "Storefront"
