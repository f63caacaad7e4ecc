"""
通知分发边界模块。

引擎只决定"通知谁、何时通知"，真正的发送交给注入的分发器：
- LoggingDispatcher：只写日志（默认）
- WebhookDispatcher：POST 到配置的 Webhook，带超时和失败重试
"""
import logging

import httpx

from alert_governance.schemas.escalation import NotificationRequest

logger = logging.getLogger(__name__)

# 发送最大重试次数
MAX_RETRIES = 3


class NotificationDispatcher:
    """通知分发器接口。"""

    async def dispatch(self, request: NotificationRequest) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LoggingDispatcher(NotificationDispatcher):
    """只记录日志的分发器。"""

    async def dispatch(self, request: NotificationRequest) -> bool:
        logger.info(
            f"[notify] alert={request.alert_id} level={request.level} severity={request.severity} "
            f"targets={request.targets} channels={request.channels}: {request.title}"
        )
        return True


class WebhookDispatcher(NotificationDispatcher):
    """Webhook 分发器，失败时最多重试 MAX_RETRIES 次。"""

    def __init__(self, url: str, timeout: float = 10.0, headers: dict | None = None, transport=None):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._transport = transport

    async def dispatch(self, request: NotificationRequest) -> bool:
        payload = request.model_dump()
        error = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(MAX_RETRIES):
                try:
                    resp = await client.post(self.url, json=payload, headers=self.headers)
                    if 200 <= resp.status_code < 300:
                        logger.info(f"Notification sent for alert {request.alert_id} (level {request.level})")
                        return True
                    error = f"HTTP {resp.status_code}"
                except httpx.HTTPError as e:
                    error = str(e)[:500]
                logger.debug(f"Webhook attempt {attempt + 1} failed for alert {request.alert_id}: {error}")
        logger.warning(f"Notification failed for alert {request.alert_id}: {error}")
        return False


def build_dispatcher(webhook_url: str = "", timeout: float = 10.0) -> NotificationDispatcher:
    """根据配置选择分发器。"""
    if webhook_url:
        return WebhookDispatcher(webhook_url, timeout=timeout)
    return LoggingDispatcher()
