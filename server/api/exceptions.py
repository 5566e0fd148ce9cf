import logging

from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError
from django.db import DatabaseError, IntegrityError
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def _validation_detail(exc: ValidationError):
    if hasattr(exc, "error_dict"):
        return exc.message_dict
    return {"non_field_errors": exc.messages}


def records_exception_handler(exc, context):
    """
    Translate the record layer's Django exceptions into HTTP answers, then let
    DRF's default handler render them.
    """
    if isinstance(exc, ValidationError):
        exc = exceptions.ValidationError(detail=_validation_detail(exc))
    elif isinstance(exc, ObjectDoesNotExist):
        exc = exceptions.NotFound(detail=str(exc) or "Not found.")
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied(detail=str(exc) or None)
    elif isinstance(exc, IntegrityError):
        logger.warning("Integrity conflict in %s: %s", context.get("view").__class__.__name__, exc)
        return Response({"detail": "The record conflicts with an existing one."}, status=status.HTTP_409_CONFLICT)
    elif isinstance(exc, DatabaseError):
        logger.exception("Database failure in %s", context.get("view").__class__.__name__)
        return Response({"detail": "The records store is unavailable."},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return exception_handler(exc, context)
