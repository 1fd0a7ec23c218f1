from __future__ import annotations

from typing import Dict

from fastapi import Header, HTTPException, status

ANONYMOUS = "anonymous"


def parse_api_keys(raw: str) -> Dict[str, str]:
    """Parse ``key[:principal]`` pairs separated by commas."""
    keys: Dict[str, str] = {}
    for entry in filter(None, (part.strip() for part in raw.split(","))):
        key, _, principal = entry.partition(":")
        keys[key] = principal or "api"
    return keys


class ApiKeyAuth:
    """Resolves the ``x-api-key`` header to the principal recorded on changes."""

    def __init__(self, principals: Dict[str, str]) -> None:
        self.principals = principals

    def __call__(self, x_api_key: str | None = Header(default=None)) -> str:
        if not self.principals:
            return ANONYMOUS
        if not x_api_key or x_api_key not in self.principals:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
        return self.principals[x_api_key]
