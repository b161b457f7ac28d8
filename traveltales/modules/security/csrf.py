import hashlib
import hmac
import logging
import secrets
from typing import Optional

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "XSRF-TOKEN"
CSRF_HEADER_NAME = "X-CSRF-Token"

# Binding used for tokens handed out before login
ANONYMOUS_BINDING = "anonymous"


class CsrfGuard:
    """
    Double-submit CSRF tokens.

    A token is ``nonce.signature`` where the signature is an HMAC of the
    session id and nonce, so a token minted for one session is useless in
    another. The client echoes the ``XSRF-TOKEN`` cookie in the
    ``X-CSRF-Token`` header; both must match and verify.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("A CSRF signing secret is required")
        self._secret = secret.encode("utf-8")

    def _sign(self, binding: str, nonce: str) -> str:
        message = f"{binding}:{nonce}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def mint(self, session_id: Optional[str] = None) -> str:
        nonce = secrets.token_urlsafe(16)
        return f"{nonce}.{self._sign(session_id or ANONYMOUS_BINDING, nonce)}"

    def validate(
        self,
        cookie_token: Optional[str],
        header_token: Optional[str],
        session_id: Optional[str],
    ) -> bool:
        """
        Check a submitted token pair against the session it must belong to.

        Returns:
            True only if cookie and header are present, equal, and signed
            for this session
        """
        if not cookie_token or not header_token:
            return False
        if not secrets.compare_digest(cookie_token, header_token):
            return False

        nonce, _, signature = header_token.partition(".")
        if not nonce or not signature:
            return False

        expected = self._sign(session_id or ANONYMOUS_BINDING, nonce)
        return hmac.compare_digest(expected, signature)
