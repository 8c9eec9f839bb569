import logging
import os
import secrets
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger("starflow.api")

_admin_token_warned = False


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    global _admin_token_warned
    admin_token = os.getenv("ADMIN_TOKEN", "").strip()
    if not admin_token:
        if not _admin_token_warned:
            logger.warning(
                "ADMIN_TOKEN is not set. Admin endpoints are unprotected. "
                "Set ADMIN_TOKEN environment variable for production use."
            )
            _admin_token_warned = True
        return
    if not secrets.compare_digest(x_admin_token or "", admin_token):
        raise HTTPException(status_code=401, detail="Admin token required")


def _normalized_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None
