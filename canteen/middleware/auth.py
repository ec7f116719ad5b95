"""
Canteen Service - Bearer token middleware

Every route outside PUBLIC_PATHS needs a JWT whose claims carry a subject
and a known role (admin or parent). The claims land on request.state.user;
route dependencies in canteen.api.deps turn them into a CurrentUser.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from canteen.core.security import Role, decode_token

PUBLIC_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})
KNOWN_ROLES = frozenset(role.value for role in Role)


def is_public(request: Request) -> bool:
    path = request.url.path
    return request.method == "OPTIONS" or path in PUBLIC_PATHS or path.startswith("/metrics")


def bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    # EventSource cannot set headers, so streams may pass ?access_token=
    if request.url.path.startswith("/streams"):
        return request.query_params.get("access_token") or None
    return None


def _reject(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": detail, "code": "unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if is_public(request):
            return await call_next(request)

        token = bearer_token(request)
        if token is None:
            return _reject("Missing or invalid Authorization header. Expected: Bearer <token>")

        try:
            claims = decode_token(token)
        except JWTError as exc:
            return _reject(f"Invalid or expired JWT: {exc}")

        if not claims.get("sub") or claims.get("role") not in KNOWN_ROLES:
            return _reject("Token must carry a subject and a known role.")

        request.state.user = claims
        return await call_next(request)
