"""Resolves caller identity from request credentials."""

import logging

logger = logging.getLogger(__name__)


class TokenAuthenticator:
    """Maps static bearer tokens to user ids."""

    def __init__(self, tokens: dict[str, str]):
        """Initialize the authenticator.

        Args:
            tokens: Mapping of bearer token to user id.
        """
        self._tokens = dict(tokens)

    def authenticate(self, authorization: str | None) -> str | None:
        """Resolve an Authorization header to a user id.

        Args:
            authorization: Raw header value, e.g. "Bearer abc123".

        Returns:
            The user id, or None if the header is missing or unknown.
        """
        if not authorization:
            return None

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            logger.debug("Rejected malformed Authorization header")
            return None

        user_id = self._tokens.get(token.strip())
        if user_id is None:
            logger.info("Rejected unknown bearer token")
        return user_id
