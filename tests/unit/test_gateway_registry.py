"""
Tests for payment gateway code resolution.
"""

import pytest

from freshmarket.core.exceptions import BusinessError, UnknownGatewayError
from freshmarket.core.gateway_registry import (
    GATEWAY_BY_CODE,
    display_name,
    from_code,
    is_mock,
    supported_codes,
)
from freshmarket.core.shared_enums import PaymentGateway


class TestGatewayRegistry:

    @pytest.mark.parametrize("gateway", list(PaymentGateway))
    def test_round_trip_by_code(self, gateway):
        assert from_code(gateway.code) is gateway

    @pytest.mark.parametrize("gateway", list(PaymentGateway))
    def test_lookup_ignores_case(self, gateway):
        assert from_code(gateway.code.upper()) is gateway

    def test_known_codes(self):
        assert supported_codes() == ["alipay", "mock", "unionpay", "wechat"]
        assert from_code("wechat") is PaymentGateway.WECHAT_PAY

    @pytest.mark.parametrize("bad_code", ["bogus", None, "", 42, "wechat_pay"])
    def test_unknown_codes_raise(self, bad_code):
        with pytest.raises(UnknownGatewayError) as exc_info:
            from_code(bad_code)
        assert exc_info.value.code == "UNKNOWN_GATEWAY"

    def test_unknown_gateway_error_is_business_and_value_error(self):
        with pytest.raises(ValueError, match="Unknown payment gateway code: bogus"):
            from_code("bogus")
        with pytest.raises(BusinessError, match="cannot be empty"):
            from_code("")

    def test_is_mock(self):
        assert is_mock(PaymentGateway.MOCK)
        assert not any(is_mock(g) for g in PaymentGateway if g is not PaymentGateway.MOCK)

    def test_display_names(self):
        assert display_name(PaymentGateway.ALIPAY) == "Alipay"
        assert display_name(PaymentGateway.WECHAT_PAY) == "WeChat Pay"
        assert all(display_name(g) for g in PaymentGateway)

    def test_registry_is_immutable(self):
        with pytest.raises(TypeError):
            GATEWAY_BY_CODE["paypal"] = PaymentGateway.MOCK
