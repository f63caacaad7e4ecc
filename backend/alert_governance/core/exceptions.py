"""
治理引擎异常模块 (Governance Exception Module)

治理操作只会产生四类可预期的错误：作用域/告警不存在、参数非法、升级状态冲突，
以及存储或分布式锁在限定时间内不可用。前三类映射为 4xx，后两类映射为 503 并带 Retry-After，
调用方可以稍后重试。其他未捕获异常统一返回结构化 500。

Governance operations produce four expected failures: unknown scope or alert,
invalid input, escalation state conflict, and the store or distributed lock being
unavailable within its bound. The first three map to 4xx; the last maps to 503 with
Retry-After so callers can retry. Anything else becomes a structured 500.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

from alert_governance.core.locks import LockAcquireTimeout

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5


class GovernanceError(Exception):
    """治理引擎异常基类 (Base governance exception)"""
    status_code: int = 400
    error: str = "governance_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(GovernanceError):
    """作用域、告警或升级记录不存在 (Unknown scope, alert or escalation)"""
    status_code = 404
    error = "not_found"


class ValidationError(GovernanceError):
    """信号或策略定义非法 (Invalid signals or policy definition)"""
    status_code = 422
    error = "validation_error"


class ConflictError(GovernanceError):
    """升级状态不允许该操作 (Escalation state forbids the operation)"""
    status_code = 409
    error = "conflict"


class PersistenceError(GovernanceError):
    """存储在持久化超时内不可用 (Store unavailable within the persistence timeout)"""
    status_code = 503
    error = "persistence_unavailable"


def error_body(error: str, message: str, status_code: int, detail: Optional[str] = None) -> dict:
    return {"error": error, "message": message, "detail": detail, "status_code": status_code}


def _unavailable(error: str, message: str, detail: Optional[str]) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=error_body(error, message, 503, detail),
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    注册异常处理器 (Register exception handlers)

    - GovernanceError → 对应状态码；PersistenceError 额外带 Retry-After
    - LockAcquireTimeout → 503 + Retry-After（redis 锁争用）
    - HTTPException → 统一响应格式
    - 其他异常 → 500，记录完整堆栈
    """

    @app.exception_handler(GovernanceError)
    async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
        if isinstance(exc, PersistenceError):
            logger.warning(f"存储不可用 {request.method} {request.url.path} | Store unavailable: {exc.message}")
            return _unavailable(exc.error, exc.message, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error, exc.message, exc.status_code, exc.detail),
        )

    @app.exception_handler(LockAcquireTimeout)
    async def lock_timeout_handler(request: Request, exc: LockAcquireTimeout) -> JSONResponse:
        logger.warning(f"获取锁超时 {request.method} {request.url.path} | {exc}")
        return _unavailable("lock_timeout", str(exc), None)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body("http_error", str(exc.detail), exc.status_code),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_server_error",
                "服务器内部错误，请稍后重试 (Internal server error, please try again later)",
                500,
            ),
        )
