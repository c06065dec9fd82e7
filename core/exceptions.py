"""
Typed failures raised by the donation services and their HTTP rendering.

Services raise DonationError subclasses; views catch them at the request
boundary. ``api_exception_handler`` is installed as DRF's EXCEPTION_HANDLER
and renders anything that escapes a view, turning unexpected database errors
into an opaque 500.
"""

import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DonationError(Exception):
    """Base class for recoverable failures of the donation services."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'The request could not be processed.'

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = errors or {}
        super().__init__(self.message)

    def as_response_data(self):
        data = {'detail': self.message}
        if self.errors:
            data['errors'] = self.errors
        return data


class NotFound(DonationError):
    """The requested entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found.'


class Forbidden(DonationError):
    """The actor lacks rights for this entity or action."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You do not have permission to perform this action.'


class ValidationFailed(DonationError):
    """A lifecycle guard or field constraint was violated."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Validation failed.'


class Conflict(DonationError):
    """A uniqueness rule was violated."""

    status_code = status.HTTP_409_CONFLICT
    default_message = 'The request conflicts with the current state.'


def error_response(exc):
    """Build the Response for a DonationError."""
    return Response(exc.as_response_data(), status=exc.status_code)


def api_exception_handler(exc, context):
    """
    DRF exception handler.

    - DonationError: rendered with its own status and message
    - DatabaseError: logged, rendered as an opaque 500
    - Anything else: DRF's default handling (None means re-raise)
    """
    if isinstance(exc, DonationError):
        return error_response(exc)

    if isinstance(exc, DatabaseError):
        view = context.get('view')
        logger.error(
            f"Unexpected database error. View: {view.__class__.__name__ if view else None}, "
            f"Error: {exc}",
            exc_info=True
        )
        return Response(
            {'detail': 'An internal error occurred.'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return exception_handler(exc, context)
