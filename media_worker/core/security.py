"""Shared-secret authentication for worker endpoints."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from media_worker.core.config import settings
from media_worker.core.logging import log_warning

logger = logging.getLogger(__name__)

# API Key header scheme
api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def key_prefix(key: Optional[str]) -> str:
    """Loggable form of a credential: never more than its first 8 characters."""
    if not key:
        return "(none)"
    return f"{key[:8]}..."


def is_valid_api_key(candidate: Optional[str], expected: str) -> bool:
    """Constant-time comparison of a supplied key against the configured one."""
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


async def require_api_key(api_key: Optional[str] = Depends(api_key_header)) -> str:
    """Reject the request before any processing unless the key matches."""
    if not is_valid_api_key(api_key, settings.WORKER_API_KEY):
        log_warning(logger, "Rejected request with invalid api key", received=key_prefix(api_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing x-api-key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key
