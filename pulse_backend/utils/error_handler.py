# pulse_backend/utils/error_handler.py
"""
Centralized error handling utilities.
Provides user-friendly error messages and consistent error responses.
"""
from typing import Optional
import math
import logging

import stripe
from fastapi import HTTPException, status

from ..market_data.types import MarketDataError, ProviderRateLimitError, SymbolNotFoundError
from .circuit_breaker import CircuitOpenError

logger = logging.getLogger(__name__)


def handle_validation_error(field: str, reason: str) -> HTTPException:
    """
    Handle validation errors with clear messages.

    Args:
        field: Name of the field that failed validation
        reason: Reason for validation failure

    Returns:
        HTTPException with validation error message
    """
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"Validation error for '{field}': {reason}"
    )


def handle_not_found_error(resource: str, resource_id: Optional[str] = None) -> HTTPException:
    """
    Handle not found errors.

    Args:
        resource: Type of resource (e.g., "Provider", "Symbol")
        resource_id: Optional ID of the resource
    """
    if resource_id:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} '{resource_id}' not found."
        )
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource} not found."
    )


def handle_market_data_error(e: Exception, symbol: Optional[str] = None) -> HTTPException:
    """
    Handle market data provider errors.

    Args:
        e: The exception from market data provider
        symbol: Optional symbol that was being fetched

    Returns:
        HTTPException with user-friendly message
    """
    if isinstance(e, ProviderRateLimitError):
        retry_after = max(1, math.ceil(e.reset_in_ms / 1000))
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Market data rate limit exceeded. Please try again in a moment.",
            headers={"Retry-After": str(retry_after)},
        )

    if isinstance(e, CircuitOpenError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Market data service temporarily unavailable. Please try again later.",
        )

    error_msg = str(e).lower()

    if isinstance(e, SymbolNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Market data not found for {symbol or e.symbol}. Please check the symbol and try again."
        )

    if "rate limit" in error_msg or "429" in error_msg:
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Market data rate limit exceeded. Please try again in a moment."
        )
    elif "not found" in error_msg or "no data" in error_msg or "404" in error_msg:
        symbol_text = f" for {symbol}" if symbol else ""
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Market data not found{symbol_text}. Please check the symbol and try again."
        )
    elif "authentication" in error_msg or "401" in error_msg or "403" in error_msg:
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Market data service authentication failed. Please contact support."
        )
    else:
        if not isinstance(e, MarketDataError):
            logger.error(f"Market data error: {e}", exc_info=True)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Market data service temporarily unavailable. Please try again later."
        )


def handle_stripe_error(e: Exception, operation: str = "billing operation") -> HTTPException:
    """
    Handle Stripe API errors.

    Invalid requests surface their message; everything else is logged
    and reported as a generic upstream failure.
    """
    if isinstance(e, stripe.InvalidRequestError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid billing request: {e.user_message or str(e)}"
        )
    if isinstance(e, ValueError):
        # Missing configuration (e.g. STRIPE_SECRET_KEY)
        logger.error(f"Billing not configured during {operation}: {e}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not available right now. Please try again later."
        )
    logger.error(f"Stripe error during {operation}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Billing provider error. Please try again later."
    )
