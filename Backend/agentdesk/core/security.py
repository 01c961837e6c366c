"""
Caller identity for the HTTP boundary.

Credentials are verified by the gateway in front of this service, which
forwards the authenticated email in the ``X-User-Email`` header. This
module only turns that identity into a role.
"""
import logging
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

logger = logging.getLogger(__name__)

AGENT_EMAIL_SUFFIX = "@agent.com"

@dataclass
class CurrentUser:
    email: str
    role: str  # "admin" or "agent"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

def role_for_email(email: str) -> str:
    return "agent" if email.lower().strip().endswith(AGENT_EMAIL_SUFFIX) else "admin"

async def get_current_user(x_user_email: str | None = Header(default=None)) -> CurrentUser:
    if not x_user_email or not x_user_email.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    email = x_user_email.strip().lower()
    return CurrentUser(email=email, role=role_for_email(email))

async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        logger.warning(f"Admin-only route refused for {user.email}")
        raise HTTPException(status_code=403, detail="Access denied. Required role: admin")
    return user
