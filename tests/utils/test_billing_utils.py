"""
Tests for the error taxonomy, Sentry helpers and Stripe payload readers
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from realty_billing.utils import sentry_context
from realty_billing.utils.exceptions import (
    BillingError,
    InvalidSignature,
    InvalidTier,
    NoBillingAccount,
    ProviderUnavailable,
    RecordStoreUnavailable,
    Unauthorized,
)
from realty_billing.utils.stripe_objects import (
    coerce_to_bool,
    coerce_to_int,
    get_id,
    get_path,
    get_value,
    metadata_to_dict,
)


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "error,status,retryable",
        [
            (Unauthorized(), 401, False),
            (InvalidTier("gold"), 400, False),
            (NoBillingAccount(), 400, False),
            (InvalidSignature(), 400, False),
            (ProviderUnavailable(), 500, True),
            (RecordStoreUnavailable(), 503, True),
        ],
    )
    def test_status_and_retryable(self, error, status, retryable):
        assert isinstance(error, BillingError)
        assert error.status_code == status
        assert error.retryable is retryable

    def test_messages(self):
        assert InvalidTier("gold").message == "Invalid subscription tier: 'gold'"
        assert InvalidTier().message == "Invalid subscription tier"
        assert str(Unauthorized("Session expired")) == "Session expired"


class TestSentryContext:
    def test_capture_payment_error_sets_context(self):
        scope = MagicMock()
        scope_cm = MagicMock()
        scope_cm.__enter__.return_value = scope

        with (
            patch.object(sentry_context.sentry_sdk, "new_scope", return_value=scope_cm),
            patch.object(sentry_context.sentry_sdk, "capture_exception", return_value="evt") as cap,
        ):
            error = ValueError("declined")
            result = sentry_context.capture_payment_error(
                error, operation="checkout_session", user_id="user-1", details={"tier": "pro"}
            )

        assert result == "evt"
        cap.assert_called_once_with(error)
        context_type, context = scope.set_context.call_args.args
        assert context_type == "payment"
        assert context["operation"] == "checkout_session"
        assert context["tier"] == "pro"
        scope.set_tag.assert_any_call("provider", "stripe")

    def test_capture_database_error_tags_table(self):
        scope = MagicMock()
        scope_cm = MagicMock()
        scope_cm.__enter__.return_value = scope

        with (
            patch.object(sentry_context.sentry_sdk, "new_scope", return_value=scope_cm),
            patch.object(sentry_context.sentry_sdk, "capture_exception"),
        ):
            sentry_context.capture_database_error(
                RuntimeError("timeout"), operation="update_fields", table="users"
            )

        scope.set_tag.assert_any_call("table", "users")

    def test_capture_never_raises(self):
        with patch.object(sentry_context.sentry_sdk, "new_scope", side_effect=RuntimeError("x")):
            assert sentry_context.capture_error(ValueError("y")) is None


class TestStripeObjects:
    def test_get_value_dict_and_attr(self):
        assert get_value({"a": 1}, "a") == 1
        assert get_value({"a": 1}, "b") is None
        assert get_value(SimpleNamespace(a=2), "a") == 2
        assert get_value(None, "a") is None

    def test_get_path_reads_items_list(self):
        subscription = {"id": "sub_1", "items": {"object": "list", "data": [{"id": "si_1"}]}}

        assert get_path(subscription, "items", "data")[0]["id"] == "si_1"

    def test_get_path(self):
        payload = {"parent": {"subscription_details": {"subscription": "sub_1"}}}

        assert get_path(payload, "parent", "subscription_details", "subscription") == "sub_1"
        assert get_path(payload, "parent", "quote_details", "quote") is None

    def test_get_id(self):
        assert get_id("cus_1") == "cus_1"
        assert get_id({"id": "cus_2", "object": "customer"}) == "cus_2"
        assert get_id({"object": "customer"}) is None
        assert get_id(None) is None

    def test_metadata_to_dict(self):
        metadata = MagicMock()
        metadata.to_dict.return_value = {"tier": "pro"}

        assert metadata_to_dict(metadata) == {"tier": "pro"}
        assert metadata_to_dict({"a": "b"}) == {"a": "b"}
        assert metadata_to_dict(None) == {}

    @pytest.mark.parametrize(
        "value,expected",
        [(5, 5), (5.9, 5), ("1800000000", 1800000000), (" 7.0 ", 7), ("", None), ("x", None), (True, None), (None, None)],
    )
    def test_coerce_to_int(self, value, expected):
        assert coerce_to_int(value) == expected

    @pytest.mark.parametrize("value,expected", [(True, True), ("true", True), ("false", False), (None, False), (0, False)])
    def test_coerce_to_bool(self, value, expected):
        assert coerce_to_bool(value) is expected
