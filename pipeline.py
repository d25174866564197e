import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Sequence, Union

from fastapi import Request, Response
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from errors import EdgeError, ErrorKind, error_response, error_sink

logger = logging.getLogger("edge.pipeline")


# ======================================================
# Request Context (one per request)
# ======================================================

class RequestContext(BaseModel):
    method: str
    path: str
    headers: Dict[str, str]
    client_ip: str

    body: Any = None
    # Headers collected by stages, applied to whatever response is sent
    response_headers: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            method=request.method.upper(),
            path=request.url.path,
            headers=dict(request.headers),
            client_ip=request.client.host if request.client else "unknown",
        )

    def apply_headers(self, response: Response) -> Response:
        for k, v in self.response_headers.items():
            if k.lower() not in response.headers:
                response.headers[k] = v
        return response


class AccessLogEntry(BaseModel):
    timestamp: str
    method: str
    path: str
    ip: str
    status_code: int
    latency_ms: int


# ======================================================
# Stage results
# ======================================================

class Continue:
    def __repr__(self) -> str:
        return "CONTINUE"


CONTINUE = Continue()


class Respond:
    def __init__(self, response: Response):
        self.response = response

    def __repr__(self) -> str:
        return f"Respond(status_code={self.response.status_code})"


StageResult = Union[Continue, Respond]


class Stage(Protocol):
    name: str

    async def __call__(self, request: Request, ctx: RequestContext) -> StageResult:
        ...


async def run_chain(
    stages: Sequence[Stage],
    request: Request,
    ctx: RequestContext,
) -> StageResult:
    """
    Run stages in order, stopping at the first Respond.
    """
    for stage in stages:
        result = await stage(request, ctx)
        if isinstance(result, Respond):
            logger.debug(f"{stage.name} answered {ctx.method} {ctx.path}")
            return result
    return CONTINUE


# ======================================================
# Body Parser
# ======================================================

def _is_json(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class BodyParser:
    """
    Decode JSON request bodies onto the context.

    Only objects and arrays are accepted at the top level.
    """

    name = "body_parser"

    def __init__(self, max_bytes: int = 100 * 1024):
        self.max_bytes = max_bytes

    async def __call__(self, request: Request, ctx: RequestContext) -> StageResult:
        if not _is_json(request.headers.get("content-type")):
            return CONTINUE

        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            return self._reject(ErrorKind.PAYLOAD_TOO_LARGE, "Request body too large.")

        raw = await request.body()
        if len(raw) > self.max_bytes:
            return self._reject(ErrorKind.PAYLOAD_TOO_LARGE, "Request body too large.")

        if not raw:
            ctx.body = {}
            return CONTINUE

        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return self._reject(ErrorKind.BAD_REQUEST, "Malformed JSON body.")

        if not isinstance(parsed, (dict, list)):
            return self._reject(ErrorKind.BAD_REQUEST, "Malformed JSON body.")

        ctx.body = parsed
        return CONTINUE

    def _reject(self, kind: ErrorKind, message: str) -> Respond:
        return Respond(error_response(EdgeError(kind, message)))


# ======================================================
# Middleware
# ======================================================

class PipelineMiddleware(BaseHTTPMiddleware):
    """
    Runs the stage chain, then the router. Anything raised on the way
    is funneled to the error sink, so exactly one response goes out.
    """

    def __init__(self, app: ASGIApp, stages: Sequence[Stage]):
        super().__init__(app)
        self.stages = list(stages)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        ctx = RequestContext.from_request(request)

        try:
            result = await run_chain(self.stages, request, ctx)
            if isinstance(result, Respond):
                response = result.response
            else:
                response = await call_next(request)
        except Exception as exc:
            response = error_sink(exc)

        ctx.apply_headers(response)

        entry = AccessLogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            method=ctx.method,
            path=ctx.path,
            ip=ctx.client_ip,
            status_code=response.status_code,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )
        logger.info(entry.model_dump_json())

        return response
