import logging

from django.db import DatabaseError
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from . import errors

logger = logging.getLogger("shop.api")


def api_exception_handler(exc, context):
    """모든 오류를 {"success": false, "error": ...} 형태로 맞춘다."""
    if isinstance(exc, DatabaseError):
        view = context.get("view")
        logger.exception(f"storage error in {view.__class__.__name__ if view else 'view'}: {exc}")
        exc = errors.StorageError()
    elif isinstance(exc, Http404):
        exc = errors.NotFoundError()

    response = exception_handler(exc, context)
    if response is None:
        return None

    body = {"success": False}
    if isinstance(exc, exceptions.ValidationError):
        body["error"] = errors.ValidationError.default_detail
        body["details"] = response.data
    else:
        body["error"] = str(exc.detail) if hasattr(exc, "detail") else str(exc)
    if isinstance(exc, errors.StructuralError):
        body["details"] = exc.details

    response.data = body
    if response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        response.data["error"] = errors.StorageError.default_detail
    return response


def success(data=None, *, message=None, status_code=status.HTTP_200_OK, **extra):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    body.update(extra)
    return Response(body, status=status_code)
