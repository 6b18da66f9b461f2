from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Query, Security, status
from fastapi.security import APIKeyHeader

ADMIN_SECRET_HEADER = "x-admin-secret"

admin_secret_header = APIKeyHeader(name=ADMIN_SECRET_HEADER, auto_error=False)


@dataclass
class AdminContext:
    secret_source: str


def check_admin_secret(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset expected secret rejects everything."""
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


class AdminAuth:
    """FastAPI dependency guarding the manual plan override endpoint.

    The secret may arrive in the ``x-admin-secret`` header or, for support
    links pasted into a browser, the ``secret`` query parameter.
    """

    def __init__(self, expected_secret: Optional[str]) -> None:
        self.expected_secret = expected_secret

    def __call__(
        self,
        header_secret: Optional[str] = Security(admin_secret_header),
        query_secret: Optional[str] = Query(None, alias="secret"),
    ) -> AdminContext:
        if check_admin_secret(header_secret, self.expected_secret):
            return AdminContext(secret_source="header")
        if check_admin_secret(query_secret, self.expected_secret):
            return AdminContext(secret_source="query")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
