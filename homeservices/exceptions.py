"""Error taxonomy for the booking/job engine.

The four caller-facing kinds subclass DRF's ``APIException`` so the HTTP layer
maps them to 400/404/403/409 without per-view handling. ``ExternalServiceError``
is raised only by collaborators and is always caught where it is triggered.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.exceptions import APIException


class MarketplaceError(APIException):
    """Base class for errors surfaced to callers of the core."""


class ValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'invalid'


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class AuthorizationError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to act on this record.'
    default_code = 'permission_denied'


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The record is not in a state that allows this action.'
    default_code = 'conflict'


class ExternalServiceError(Exception):
    """A pricing, push or OTP delivery dependency failed."""

    def __init__(self, service: str, message: str):
        super().__init__(f'{service}: {message}')
        self.service = service
