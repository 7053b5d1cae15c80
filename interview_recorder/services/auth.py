"""Shared-secret token checks."""

from __future__ import annotations

import hmac
from typing import FrozenSet, Iterable, Optional

from ..errors import AuthError


class TokenAuthenticator:
    """Validate presented tokens against an allow-list fixed at construction."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens: FrozenSet[str] = frozenset(token for token in tokens if token)

    def authenticate(self, token: Optional[str]) -> bool:
        if not token or not isinstance(token, str):
            return False
        candidate = token.strip().encode("utf-8")
        matched = False
        for known in self._tokens:
            # no early exit
            if hmac.compare_digest(candidate, known.encode("utf-8")):
                matched = True
        return matched

    def require(self, token: Optional[str]) -> None:
        if not self.authenticate(token):
            raise AuthError("invalid token")


__all__ = ["TokenAuthenticator"]
