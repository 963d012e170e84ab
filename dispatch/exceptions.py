"""
Domain exceptions and the unified API error envelope.

Services raise DRF exceptions (``NotFound``, ``PermissionDenied``,
``ValidationError``) plus the two dispatch-specific ones below; the
exception handler turns all of them into
``{"ok": false, "error": {"code": ..., "message": ...}}``.
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class InvalidTransition(APIException):
    """The requested status edge is not part of the lifecycle."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid status transition.'
    default_code = 'invalid_transition'


class Conflict(APIException):
    """A conditional write lost the race against another writer."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Request was already taken or modified.'
    default_code = 'conflict'


class TransporterUnavailable(Conflict):
    """The chosen transporter stopped being ``available`` before the write."""
    default_detail = 'Transporter is no longer available.'


def _as_drf(exc):
    if isinstance(exc, DjangoValidationError):
        if hasattr(exc, 'error_dict'):
            return ValidationError(exc.message_dict)
        return ValidationError(exc.messages)
    return exc


def api_exception_handler(exc, context):
    exc = _as_drf(exc)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('Unhandled error in %s', context.get('view'), exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}}, status=500)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    code = getattr(exc, 'default_code', 'api_error')
    return Response({'ok': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code)
