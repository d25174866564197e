from typing import Dict, Iterable, Optional

from fastapi import Request, Response, status

from pipeline import CONTINUE, RequestContext, Respond, StageResult


# =========================
# HARDENING HEADERS
# =========================

HARDENING_HEADERS: Dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeaders:
    """
    Attach a fixed set of hardening headers to every response.
    Content-Security-Policy is only sent when a policy is configured.
    """

    name = "security_headers"

    def __init__(self, content_security_policy: str = ""):
        self.headers = dict(HARDENING_HEADERS)
        if content_security_policy:
            self.headers["Content-Security-Policy"] = content_security_policy

    async def __call__(self, request: Request, ctx: RequestContext) -> StageResult:
        ctx.response_headers.update(self.headers)
        return CONTINUE


# =========================
# CORS
# =========================

class CorsPolicy:
    """
    Static-origin CORS. Preflights are answered here and never reach
    the rate limiter or the router.
    """

    name = "cors"

    def __init__(self, origin: str = "*", methods: Optional[Iterable[str]] = None):
        self.origin = origin
        self.methods = [m.upper() for m in (methods or ["GET", "POST", "PUT", "DELETE"])]

    def _origin_headers(self) -> Dict[str, str]:
        headers = {"Access-Control-Allow-Origin": self.origin}
        if self.origin != "*":
            headers["Vary"] = "Origin"
        return headers

    def preflight_headers(self, request: Request) -> Dict[str, str]:
        headers = self._origin_headers()
        headers["Access-Control-Allow-Methods"] = ",".join(self.methods)

        requested = request.headers.get("access-control-request-headers")
        if requested:
            headers["Access-Control-Allow-Headers"] = requested
            vary = headers.get("Vary")
            headers["Vary"] = f"{vary}, Access-Control-Request-Headers" if vary else "Access-Control-Request-Headers"

        return headers

    async def __call__(self, request: Request, ctx: RequestContext) -> StageResult:
        if ctx.method == "OPTIONS":
            return Respond(
                Response(
                    status_code=status.HTTP_204_NO_CONTENT,
                    headers=self.preflight_headers(request),
                )
            )

        ctx.response_headers.update(self._origin_headers())
        return CONTINUE
