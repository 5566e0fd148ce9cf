from __future__ import annotations
import logging
import uuid
from django.utils.deprecation import MiddlewareMixin
from django.http import HttpRequest
from main.tenancy.threadlocals import clear_current_request, get_current_request, set_current_request


class RequestIDMiddleware(MiddlewareMixin):
    """Attach a stable request id; helpful for audit trails/log correlation."""
    header = "HTTP_X_REQUEST_ID"
    response_header = "X-Request-ID"

    def process_request(self, request: HttpRequest):
        rid = request.META.get(self.header) or uuid.uuid4().hex
        request.request_id = rid
        set_current_request(request)

    def process_response(self, request: HttpRequest, response):
        rid = getattr(request, "request_id", None)
        if rid:
            response[self.response_header] = rid
        clear_current_request()
        return response


class RequestContextFilter(logging.Filter):
    """Stamp request id and acting user on every record (outside a request: '-')."""

    def filter(self, record):
        request = get_current_request()
        user = getattr(request, "user", None) if request is not None else None

        record.request_id = getattr(request, "request_id", "-") if request is not None else "-"
        if user is not None and getattr(user, "is_authenticated", False):
            record.user_id = str(user.pk)
        else:
            record.user_id = "anonymous"
        return True
