"""
支付网关适配器；按配置选择具体实现
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway
from core.settings import PaymentSettings, payment_settings
from .base import BasePaymentClient, provider_alias


def get_payment_gateway(provider: Optional[str] = None, cfg: Optional[PaymentSettings] = None) -> PaymentGateway:
    cfg = cfg or payment_settings
    name = provider_alias(provider or cfg.default_provider)
    if name == "mock":
        from .mock_client import MockPaymentClient
        return MockPaymentClient(cfg)
    if name == "wechat":
        from .wechatpay_client import WechatPayClient
        return WechatPayClient(cfg)
    raise ValueError(f"Unsupported payment provider: {name}")


__all__ = ["BasePaymentClient", "get_payment_gateway", "provider_alias"]
