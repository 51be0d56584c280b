"""
HTTP 错误映射 - 把业务异常翻译成统一的响应信封。

成功：{"success": true, "message": "...", "data": {...}}
失败：{"success": false, "message": "..."}

业务层只抛出带类型的异常（SessionNotFound / RoleNotFound / ProviderError ...），
状态码的决定只发生在这里。

| 异常                     | 状态码 |
|--------------------------|--------|
| SessionNotFound          | 404    |
| RoleNotFound             | 404    |
| RoleAlreadyExists        | 409    |
| CannotDeleteDefaultRole  | 400    |
| InvalidRoleProfile       | 422    |
| RoleConfigUnavailable    | 503    |
| ProviderError            | 502    |
| 请求体校验失败           | 400    |
| 其他                     | 500（生产环境隐藏细节）|
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from gembot.providers.base import ProviderError
from gembot.roles.errors import (
    CannotDeleteDefaultRole,
    InvalidRoleProfile,
    RoleAlreadyExists,
    RoleConfigUnavailable,
    RoleError,
    RoleNotFound,
)
from gembot.session.manager import SessionNotFound

_ROLE_ERROR_STATUS: dict[type[RoleError], int] = {
    RoleNotFound: 404,
    RoleAlreadyExists: 409,
    CannotDeleteDefaultRole: 400,
    InvalidRoleProfile: 422,
}


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """成功响应信封。"""
    return {"success": True, "message": message, "data": data}


def error_response(message: str, status_code: int, errors: Any = None) -> JSONResponse:
    """失败响应信封。"""
    body: dict[str, Any] = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


async def _session_not_found(request: Request, exc: SessionNotFound) -> JSONResponse:
    return error_response("Session not found or expired", 404)


async def _role_error(request: Request, exc: RoleError) -> JSONResponse:
    status_code = _ROLE_ERROR_STATUS.get(type(exc), 400)
    errors = exc.problems if isinstance(exc, InvalidRoleProfile) else None
    return error_response(exc.message, status_code, errors)


async def _role_config_unavailable(request: Request, exc: RoleConfigUnavailable) -> JSONResponse:
    logger.error(f"Refusing role change on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.message, 503)


async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
    logger.error(f"AI backend error on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.message, 502)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return error_response("Validation error", 400, problems)


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(str(exc.detail), exc.status_code)


def _unhandled_error_handler(production: bool):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        message = "Internal server error" if production else (str(exc) or "Internal server error")
        return error_response(message, 500)

    return handler


def register_exception_handlers(app: FastAPI, production: bool = False) -> None:
    """注册所有异常处理器。"""
    app.add_exception_handler(SessionNotFound, _session_not_found)
    app.add_exception_handler(RoleError, _role_error)
    app.add_exception_handler(RoleConfigUnavailable, _role_config_unavailable)
    app.add_exception_handler(ProviderError, _provider_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled_error_handler(production))
