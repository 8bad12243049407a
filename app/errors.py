"""
Error types and JSON error responses shared by all routes
"""
import logging
from typing import Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class SquareAPIError(Exception):
    """A non-2xx response (or unusable state) from the Square API"""

    def __init__(
        self,
        status_code: int,
        errors: Optional[list[dict]] = None,
        message: Optional[str] = None,
    ):
        self.status_code = status_code
        self.errors = errors or []
        self.message = message or "Square API error"
        super().__init__(self.message)

    @property
    def code(self) -> Optional[str]:
        """Code of the first structured Square error, if any"""
        if self.errors:
            return self.errors[0].get("code")
        return None

    @property
    def detail(self) -> str:
        if self.errors and self.errors[0].get("detail"):
            return self.errors[0]["detail"]
        return self.message


def square_error_response(error: SquareAPIError, default_message: str = "An error occurred") -> JSONResponse:
    """
    Structured Square errors are passed through verbatim in an ``errors``
    array; anything else becomes ``{error, details}``.
    """
    if error.errors:
        return JSONResponse(status_code=error.status_code or 400, content={"errors": error.errors})
    return JSONResponse(
        status_code=error.status_code or 500,
        content={"error": default_message, "details": error.message},
    )


def raise_for_bookings_api(error: SquareAPIError) -> None:
    """403/404 from the Bookings API means Square Appointments is not enabled"""
    if error.status_code in (403, 404) and error.code in (None, "FORBIDDEN", "NOT_FOUND", "UNAUTHORIZED"):
        raise HTTPException(
            status_code=403, detail="Bookings API requires Square Appointments to be enabled"
        ) from error
    raise error
