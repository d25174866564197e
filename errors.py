import logging
from enum import Enum
from typing import Optional

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger("edge.backend")


GENERIC_SERVER_ERROR = "Something went wrong on the server."


class ErrorKind(str, Enum):
    BAD_REQUEST = "BAD_REQUEST"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    INTERNAL = "INTERNAL"


# Kinds resolved locally keep their message; everything else is opaque
_STATUS_BY_KIND = {
    ErrorKind.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.PAYLOAD_TOO_LARGE: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UPSTREAM_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class EdgeError(Exception):
    """
    Typed failure carried through the request pipeline.
    """

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self.kind]

    @property
    def is_opaque(self) -> bool:
        return self.status_code >= 500


def error_response(exc: EdgeError, headers: Optional[dict] = None) -> JSONResponse:
    """
    Map an error kind to the client-facing JSON body.
    Server-side detail never leaves the process.
    """
    message = GENERIC_SERVER_ERROR if exc.is_opaque else exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=headers,
    )


def error_sink(exc: BaseException) -> JSONResponse:
    """
    Terminal handler for anything the router let escape.
    Always answers 500, whatever the kind.
    """
    message = exc.message if isinstance(exc, EdgeError) else str(exc)
    logger.error(f"Error: {message}")

    return error_response(EdgeError(ErrorKind.INTERNAL, message))
