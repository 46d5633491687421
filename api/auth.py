"""
Operator Sessions - who is the `sender` of an HTTP protocol call.

Every state-changing endpoint acts as one account (governance, a marshal,
or a depositing user). The caller proves control of that account once by
signing a login message (EIP-191 personal_sign) and receives a bearer
token bound to it. The token says nothing about rights: the hub and its
registry decide on every call whether that sender may act.

Flow:
  1. GET  /auth/message          -> "Charter operator login. Timestamp: {ts}"
  2. wallet signs the message
  3. POST /auth                  -> recover signer, open a session
  4. Authorization: Bearer <token> on every write endpoint

Token format: base64url(payload json) "." hex(HMAC-SHA256(secret, payload)).
The signer refuses short secrets, so a deployment cannot run on a
guessable placeholder key.
"""

import re
import time
import hmac
import json
import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from eth_utils import to_checksum_address

logger = logging.getLogger("charter.api.auth")

AUTH_MESSAGE_PREFIX = "Charter operator login. Timestamp: "
MAX_MESSAGE_AGE_SECONDS = 300
MAX_CLOCK_SKEW_SECONDS = 60
SESSION_TTL_SECONDS = 3600
MIN_SECRET_LENGTH = 16


# ============================================================
# LOGIN MESSAGE
# ============================================================

def create_auth_message(timestamp: Optional[int] = None) -> str:
    ts = timestamp or int(time.time())
    return f"{AUTH_MESSAGE_PREFIX}{ts}"


def message_is_fresh(message: str, now: Optional[float] = None) -> bool:
    match = re.fullmatch(re.escape(AUTH_MESSAGE_PREFIX) + r"(\d+)", message)
    if not match:
        return False
    age = (now or time.time()) - int(match.group(1))
    return -MAX_CLOCK_SKEW_SECONDS <= age <= MAX_MESSAGE_AGE_SECONDS


def recover_sender(message: str, signature: str) -> Optional[str]:
    """Checksummed account that signed `message`, or None for a bad signature."""
    from eth_account import Account
    from eth_account.messages import encode_defunct

    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.warning(f"Signature recovery failed: {type(e).__name__}: {e}")
        return None


# ============================================================
# SESSIONS
# ============================================================

@dataclass(frozen=True)
class OperatorSession:
    sender: str
    issued_at: int
    expires_at: int


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class SessionSigner:
    """
    Issues and opens bearer tokens for operator sessions.

    One signer per app; the secret never leaves the instance.
    """

    def __init__(self, secret: str, ttl_seconds: int = SESSION_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        if len(secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"session secret must be at least {MIN_SECRET_LENGTH} characters")
        self._key = secret.encode()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _mac(self, body: str) -> str:
        return hmac.new(self._key, body.encode(), hashlib.sha256).hexdigest()

    def issue(self, sender: str) -> tuple[str, OperatorSession]:
        now = int(self._clock())
        session = OperatorSession(to_checksum_address(sender), now, now + self.ttl_seconds)
        payload = {"sub": session.sender, "iat": session.issued_at, "exp": session.expires_at}
        body = _b64encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode())
        return f"{body}.{self._mac(body)}", session

    def open(self, token: str) -> Optional[OperatorSession]:
        """Session for an authentic, unexpired token; None otherwise."""
        body, _, mac = token.partition(".")
        if not body or not hmac.compare_digest(mac, self._mac(body)):
            logger.warning("Rejected session token: bad signature")
            return None
        try:
            payload = json.loads(_b64decode(body))
            session = OperatorSession(to_checksum_address(payload["sub"]), int(payload["iat"]), int(payload["exp"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Rejected session token: malformed payload ({e})")
            return None
        if self._clock() > session.expires_at:
            logger.info(f"Session expired for {session.sender[:10]}...")
            return None
        return session
