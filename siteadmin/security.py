"""Bearer-token guard for the admin endpoints."""
from __future__ import annotations

import logging
import os
import secrets
from typing import Dict, Iterable, Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

TOKENS_ENV_VAR = "SITEADMIN_API_TOKENS"

logger = logging.getLogger("siteadmin.security")


def parse_token_entries(entries: Iterable[str]) -> Dict[str, str]:
    """Map each token to the operator label it identifies.

    Entries are either ``label:token`` or a bare token, in which case the
    label is ``admin``.
    """

    tokens: Dict[str, str] = {}
    for entry in entries:
        cleaned = entry.strip()
        if not cleaned:
            continue
        label, sep, token = cleaned.partition(":")
        if not sep:
            label, token = "admin", cleaned
        label, token = label.strip() or "admin", token.strip()
        if token:
            tokens[token] = label
    return tokens


class TokenAuth:
    """Resolve the calling operator from a bearer token (constant-time compare)."""

    def __init__(self, tokens: Iterable[str]):
        self._tokens = parse_token_entries(tokens)
        if not self._tokens:
            raise ValueError("At least one admin token must be provided")
        self._bearer = HTTPBearer(auto_error=False)

    @classmethod
    def from_env(cls, env_value: Optional[str] = None) -> "TokenAuth":
        raw = env_value if env_value is not None else os.getenv(TOKENS_ENV_VAR, "")
        return cls(raw.split(","))

    async def __call__(self, request: Request) -> str:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        provided = credentials.credentials
        matched: Optional[str] = None
        for token, label in self._tokens.items():
            if secrets.compare_digest(provided, token):
                matched = label

        if matched is None:
            logger.warning("Rejected admin request to %s with an unknown token", request.url.path)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin token")
        return matched


__all__ = ["TOKENS_ENV_VAR", "TokenAuth", "parse_token_entries"]
