"""
Immutable lookup from gateway code to PaymentGateway, built once at import.
"""

from types import MappingProxyType

from freshmarket.core.exceptions import UnknownGatewayError
from freshmarket.core.shared_enums import PaymentGateway


GATEWAY_BY_CODE = MappingProxyType({gateway.code: gateway for gateway in PaymentGateway})

GATEWAY_DISPLAY_NAMES = MappingProxyType({
    PaymentGateway.MOCK: "Mock Payment",
    PaymentGateway.ALIPAY: "Alipay",
    PaymentGateway.WECHAT_PAY: "WeChat Pay",
    PaymentGateway.UNIONPAY: "UnionPay",
})


def from_code(code) -> PaymentGateway:
    """
    Resolve a gateway code, ignoring case.

    Raises:
        UnknownGatewayError: code is missing, empty, not a string or unknown.
    """
    if not isinstance(code, str) or not code:
        raise UnknownGatewayError(code)

    gateway = GATEWAY_BY_CODE.get(code.lower())
    if gateway is None:
        raise UnknownGatewayError(code)
    return gateway


def is_mock(gateway: PaymentGateway) -> bool:
    return gateway is PaymentGateway.MOCK


def display_name(gateway: PaymentGateway) -> str:
    return GATEWAY_DISPLAY_NAMES[gateway]


def supported_codes() -> list:
    return sorted(GATEWAY_BY_CODE)
