"""
Security middleware for FastAPI:
- Audit logging of rejected (401/403) requests
"""

from datetime import datetime

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

AUDITED_STATUS_CODES = (401, 403)


class AuthorizationAuditMiddleware(BaseHTTPMiddleware):
    """
    Log every request the authorization gate rejected.
    """
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if response.status_code in AUDITED_STATUS_CODES:
            client_ip = request.client.host if request.client else "unknown"
            user_agent = request.headers.get("user-agent", "unknown")
            logger.warning(
                f"[AUDIT] {response.status_code} for {request.method} {request.url.path} | "
                f"IP: {client_ip} | Agent: {user_agent} | "
                f"Time: {datetime.utcnow().isoformat()}"
            )

        return response
