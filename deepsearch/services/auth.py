"""Bearer token authorization."""

import os
from dataclasses import dataclass

from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """An authenticated caller."""

    user_id: str


def parse_tokens(raw: str) -> dict[str, str]:
    """Parse `token:user_id` pairs separated by commas."""
    tokens: dict[str, str] = {}
    for entry in raw.split(","):
        token, sep, user_id = entry.strip().partition(":")
        if not sep or not token or not user_id:
            if entry.strip():
                logger.warning("Ignoring malformed entry in DEEPSEARCH_API_TOKENS")
            continue
        tokens[token] = user_id
    return tokens


class TokenAuthorizer:
    """Maps static bearer tokens to user identities."""

    def __init__(self, tokens: dict[str, str] | None = None):
        """Initialize authorizer.

        Args:
            tokens: Token to user ID mapping (defaults to DEEPSEARCH_API_TOKENS env var)
        """
        self.tokens = tokens if tokens is not None else parse_tokens(os.getenv("DEEPSEARCH_API_TOKENS", ""))

    def authorize(self, authorization: str | None) -> Identity | None:
        """Resolve an Authorization header to an identity, or None to reject."""
        if not authorization:
            return None

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None

        user_id = self.tokens.get(token.strip())
        return Identity(user_id=user_id) if user_id else None


_authorizer: TokenAuthorizer | None = None


def get_authorizer() -> TokenAuthorizer:
    """Get or create authorizer instance."""
    global _authorizer
    if _authorizer is None:
        _authorizer = TokenAuthorizer()
    return _authorizer
