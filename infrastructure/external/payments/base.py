"""
网关适配器公共基类：阻塞 SDK 调用下放到线程、整体超时、可恢复错误重试、结构化日志。

重试只针对 recoverable=True 的 ExternalGatewayException（超时、5xx、网络错误）。
下单/查单/退款都以业务单号作为网关侧幂等键，重复提交不会产生第二笔交易。
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Optional

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from application.dtos.payments import (
    NotifyResult,
    PrepayRequest,
    PrepayResult,
    RefundRequest,
    RefundResult,
    TradeQueryResult,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.exceptions import ExternalGatewayException


logger = get_logger(__name__)


def _is_recoverable(exc: BaseException) -> bool:
    return isinstance(exc, ExternalGatewayException) and exc.recoverable


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(self, cfg: PaymentSettings) -> None:
        self._timeout = cfg.timeout_seconds
        self._max_retries = cfg.retry.max
        self._backoff = cfg.retry.base_backoff

    async def _in_thread(self, op: str, fn: Callable[..., Any], **kwargs) -> Any:
        """在线程中执行一次阻塞调用；超时与未知异常统一折算为可恢复的网关错误"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, **kwargs), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            self._log("gateway_call_timeout", op=op, timeout=self._timeout)
            raise ExternalGatewayException(
                f"{self.provider} {op} timed out", provider=self.provider, recoverable=True
            ) from exc
        except ExternalGatewayException:
            raise
        except Exception as exc:
            self._log("gateway_call_error", op=op, error=str(exc))
            raise ExternalGatewayException(
                f"{self.provider} {op} failed: {exc}", provider=self.provider, recoverable=True
            ) from exc

    async def _with_retry(self, op: str, call: Callable[[], Any]) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff, min=0.1, max=2.0),
            retry=retry_if_exception(_is_recoverable),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self._log("gateway_call_retry", op=op, attempt=attempt.retry_state.attempt_number)
                return await call()

    async def create_prepay(self, req: PrepayRequest) -> PrepayResult:  # type: ignore[override]
        raise NotImplementedError

    async def query_by_order_no(self, order_no: str) -> TradeQueryResult:  # type: ignore[override]
        raise NotImplementedError

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        raise NotImplementedError

    def parse_notify(self, headers: Mapping[str, Any], body: bytes) -> NotifyResult:  # type: ignore[override]
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    def _log(self, event: str, *, level: str = "info", **kwargs) -> None:
        getattr(logger, level)(event, provider=self.provider, **kwargs)


def provider_alias(name: Optional[str]) -> str:
    """网关别名归一：wechatpay / wx -> wechat"""
    key = (name or "").strip().lower()
    return "wechat" if key in {"wechat", "wechatpay", "wx"} else key
