"""
Map internal/database errors to user-facing (Vietnamese) messages.

Raw error text is logged server-side and never returned to clients.
"""
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from app.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ERROR_MESSAGE = "Đã xảy ra lỗi không mong muốn. Vui lòng thử lại."

# Checked in order; first substring found in the error text wins
ERROR_MESSAGES = (
    ("PGRST116", "Không thể hoàn thành thao tác"),
    ("duplicate key", "Bản ghi này đã tồn tại"),
    ("foreign key", "Không thể hoàn thành do dữ liệu liên quan"),
    ("not found", "Không tìm thấy tài nguyên yêu cầu"),
    ("violates row-level security", "Bạn không có quyền thực hiện thao tác này"),
    ("permission denied", "Bạn không có quyền truy cập"),
    ("unique constraint", "Dữ liệu đã tồn tại trong hệ thống"),
    ("invalid input", "Dữ liệu nhập không hợp lệ"),
    ("connection", "Lỗi kết nối mạng, vui lòng thử lại"),
)


def _error_text(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, SQLAlchemyError) and getattr(error, "orig", None) is not None:
        return f"{error.orig} {error}"
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    return str(error)


def map_error_to_user_message(error: Any) -> str:
    """Return a safe, localized message for an arbitrary error."""
    text = _error_text(error)
    lowered = text.lower()
    for pattern, message in ERROR_MESSAGES:
        if pattern.lower() in lowered:
            return message
    return DEFAULT_ERROR_MESSAGE


# ============= EXCEPTION HANDLERS =============

async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    message = map_error_to_user_message(exc)
    if message == DEFAULT_ERROR_MESSAGE:
        message = "Dữ liệu đã tồn tại trong hệ thống"
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": message})


async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error(f"Database unavailable on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": map_error_to_user_message("connection")},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": map_error_to_user_message(exc)},
    )


def register_exception_handlers(app) -> None:
    """Install database error handlers on a FastAPI app."""
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(OperationalError, operational_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
