# pyBackupGW Module - Exceptions
# -*- coding: utf-8 -*-
from typing import Optional


class GatewayError(Exception):
    pass


class ConfigInvalid(GatewayError):
    pass


class ConnectFailed(GatewayError):
    pass


class PollFailed(GatewayError):
    pass


class RequestTimeout(GatewayError):
    pass


class GatewayConnectionError(GatewayError):
    pass


class HttpStatusError(GatewayError):
    def __init__(self, message: str, status_code: int, endpoint: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class AuthorizationFailed(HttpStatusError):
    pass


class MalformedResponse(GatewayError):
    pass


class LoginFailed(GatewayError):
    pass


class NoCredentialsConfigured(LoginFailed):
    pass


class LoginInProgress(GatewayError):
    pass


def innermost_message(exc: BaseException) -> str:
    """Return the message of the innermost exception in a cause chain"""
    seen = set()
    while id(exc) not in seen:
        seen.add(id(exc))
        inner = exc.__cause__
        if inner is None and not exc.__suppress_context__:
            inner = exc.__context__
        if inner is None:
            break
        exc = inner
    return str(exc) or exc.__class__.__name__
