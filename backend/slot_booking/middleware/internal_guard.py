import hmac
import ipaddress
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


class InternalGuardMiddleware(BaseHTTPMiddleware):
    """
    Gate for the interviewer/staff routes: a shared API key header, or loopback callers
    when ``allow_localhost`` is set. Without a configured key only loopback is let through.
    """

    def __init__(
        self,
        app,
        *,
        api_key: str,
        allow_localhost: bool = True,
        protected_prefixes: Iterable[str] = ("/staff",),
        header_name: str = "x-internal-api-key",
    ) -> None:
        super().__init__(app)
        self._api_key = (api_key or "").strip()
        self._allow_localhost = allow_localhost
        self._protected_prefixes = tuple(protected_prefixes)
        self._header_name = header_name.lower()

    def _is_loopback(self, request: Request) -> bool:
        host = request.client.host if request.client else ""
        try:
            return ipaddress.ip_address(host).is_loopback
        except ValueError:
            return host == "localhost"

    async def dispatch(self, request: Request, call_next):
        path = request.url.path or "/"
        if not path.startswith(self._protected_prefixes):
            return await call_next(request)

        supplied = request.headers.get(self._header_name, "").strip()
        if self._api_key and supplied and hmac.compare_digest(supplied, self._api_key):
            return await call_next(request)

        if self._allow_localhost and self._is_loopback(request):
            return await call_next(request)

        return JSONResponse({"detail": {"error": "forbidden", "message": "Staff access only."}}, status_code=403)
