"""
Error taxonomy for storefront operations.

Every user-initiated operation is one error boundary. Failures surface as a
ShopError subclass carrying a category and a short public message; the raw
cause is logged and never shown to the shopper.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class ShopError(Exception):
    category = "error"
    status_code = 400
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.public_message = message or self.default_message
        super().__init__(self.public_message)


class NotFound(ShopError):
    category = "not_found"
    status_code = 404
    default_message = "Not found"


class Unavailable(ShopError):
    """Stock is zero, the product is hidden, or a quantity would exceed stock or the cap."""
    category = "unavailable"
    status_code = 409
    default_message = "Item is currently unavailable"


class ValidationFailure(ShopError):
    category = "validation"
    status_code = 422
    default_message = "Please check the submitted details"


class LoginRequired(ShopError):
    category = "login_required"
    status_code = 401
    default_message = "Please login to continue"


class Forbidden(ShopError):
    category = "forbidden"
    status_code = 403
    default_message = "Admin access required"


class TransientIOFailure(ShopError):
    category = "transient"
    status_code = 503
    default_message = "Something went wrong. Please try again."


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Wrap database failures raised inside the block as TransientIOFailure."""
    try:
        yield
    except PyMongoError:
        logger.exception("Failed to %s", action)
        raise TransientIOFailure(f"Could not {action}. Please try again.")
