"""错误响应 -- 统一的 {"error": {"code", "message"}} 结构"""

from starlette.responses import JSONResponse

NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
AUTH_FAILED = "AUTH_FAILED"
INVALID_REQUEST = "INVALID_REQUEST"
BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def not_authenticated(status: str) -> JSONResponse:
    return error_response(
        401,
        NOT_AUTHENTICATED,
        f"Session status is {status}; sign in first",
    )
