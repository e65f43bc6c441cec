"""
Global error handling middleware.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

from app.domain.models import InvalidClaimTransitionError
from app.infrastructure.external_api_client import ExternalAPIError
from app.infrastructure.repositories import (
    ClaimNotFoundError,
    DuplicateClaimError,
    FarmerNotFoundError,
)
from app.infrastructure.weather_client import WeatherProviderError


logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": detail,
        }
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    Catches unhandled exceptions and returns consistent error responses.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        """
        Process the request and handle any exceptions.

        Args:
            request: The incoming request
            call_next: The next middleware or route handler

        Returns:
            Response object
        """
        extra = {
            "path": request.url.path,
            "method": request.method,
        }
        try:
            response = await call_next(request)
            return response

        except (ExternalAPIError, WeatherProviderError) as e:
            # Upstream weather or ledger services failed
            logger.error(f"External API error: {str(e)}", extra=extra)
            return _error_response(
                status.HTTP_502_BAD_GATEWAY,
                "External API error",
                str(e),
            )

        except (ClaimNotFoundError, FarmerNotFoundError) as e:
            logger.info(f"Not found: {str(e)}", extra=extra)
            return _error_response(status.HTTP_404_NOT_FOUND, "Not found", str(e))

        except (InvalidClaimTransitionError, DuplicateClaimError) as e:
            logger.warning(f"Conflict: {str(e)}", extra=extra)
            return _error_response(status.HTTP_409_CONFLICT, "Conflict", str(e))

        except ValueError as e:
            # Log validation errors
            logger.warning(f"Validation error: {str(e)}", extra=extra)
            return _error_response(
                status.HTTP_400_BAD_REQUEST,
                "Invalid request",
                str(e),
            )

        except Exception as e:
            # Log unexpected errors
            logger.exception(f"Unhandled exception: {str(e)}", extra=extra)
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal server error",
                "An unexpected error occurred",
            )
