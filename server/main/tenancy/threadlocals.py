# ==============================================
# File: main/tenancy/threadlocals.py
# Purpose: Per-request context for log correlation
# ==============================================
from __future__ import annotations
import threading

_thread_locals = threading.local()


def set_current_request(request) -> None:
    """Store the current HttpRequest in thread-local storage.
    Lets log filters stamp the request id and user without passing the request around.
    """
    _thread_locals.request = request


def get_current_request():
    """Return the current HttpRequest or None."""
    return getattr(_thread_locals, "request", None)


def clear_current_request() -> None:
    _thread_locals.request = None
