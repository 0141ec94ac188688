"""
支付网关配置（pydantic-settings，PAYMENT__ 前缀，嵌套键用 __ 分隔）

与 core.config.Settings 分开加载，便于单独轮换商户证书与密钥，例如：
PAYMENT__DEFAULT_PROVIDER=wechat
PAYMENT__WECHAT__MCH_ID=1900000001
PAYMENT__RETRY__MAX=3
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentRetry(BaseModel):
    # 仅对可恢复错误（超时/5xx）重试，0 表示不重试
    max: int = Field(default=2, ge=0)
    base_backoff: float = 0.2


class WechatSettings(BaseModel):
    """微信支付 v3 商户配置（JSAPI：小程序/公众号）"""

    appid: Optional[str] = None
    mch_id: Optional[str] = None
    mch_cert_serial_no: Optional[str] = None
    # 私钥文件路径；文件不存在时按 PEM 内容处理
    private_key_path: Optional[str] = None
    platform_cert_dir: Optional[str] = None
    api_v3_key: Optional[str] = None
    notify_url: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.appid and self.mch_id and self.mch_cert_serial_no and self.private_key_path and self.api_v3_key)


class MockGatewaySettings(BaseModel):
    # X-Mock-Signature = hex(HMAC-SHA256(webhook_secret, raw body))
    webhook_secret: str = "mock-webhook-secret"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="mock", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    currency: str = "CNY"
    # 单次网关调用的整体超时（秒）
    timeout_seconds: float = Field(default=5.0, gt=0)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)

    wechat: WechatSettings = Field(default_factory=WechatSettings)
    mock: MockGatewaySettings = Field(default_factory=MockGatewaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
