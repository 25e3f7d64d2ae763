from __future__ import annotations

import base64
import hmac
import json
import time
from typing import Callable, Optional

import bcrypt

from .errors import AuthError


def _base64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _base64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class CredentialManager:
    """Password hashing plus HS256 bearer tokens carrying only the user id."""

    def __init__(
        self,
        secret: str,
        token_ttl_seconds: int = 7 * 24 * 3600,
        rounds: int = 10,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._secret = secret.encode()
        self.token_ttl_seconds = token_ttl_seconds
        self.rounds = rounds
        self._clock = clock or time.time

    # ---- passwords ----

    def hash_password(self, plaintext: str) -> str:
        return bcrypt.hashpw(plaintext.encode(), bcrypt.gensalt(rounds=self.rounds)).decode()

    def verify_password(self, plaintext: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plaintext.encode(), hashed.encode())
        except ValueError:
            return False

    # ---- tokens ----

    def issue_token(self, user_id: int) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {"sub": str(user_id), "exp": int(self._clock()) + self.token_ttl_seconds}
        header_b64 = _base64url_encode(json.dumps(header).encode())
        payload_b64 = _base64url_encode(json.dumps(payload).encode())
        signature = self._sign(f"{header_b64}.{payload_b64}")
        return f"{header_b64}.{payload_b64}.{_base64url_encode(signature)}"

    def verify_token(self, token: str) -> int:
        try:
            header_b64, payload_b64, signature_b64 = token.split(".")
        except ValueError as exc:
            raise AuthError("invalid token structure") from exc

        try:
            header = json.loads(_base64url_decode(header_b64))
            payload = json.loads(_base64url_decode(payload_b64))
            provided_sig = _base64url_decode(signature_b64)
        except ValueError as exc:
            raise AuthError("invalid token encoding") from exc

        if not isinstance(header, dict) or header.get("alg") != "HS256":
            raise AuthError("unsupported token algorithm")
        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), provided_sig):
            raise AuthError("invalid token signature")
        if not isinstance(payload, dict):
            raise AuthError("invalid token payload")

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise AuthError("token missing expiry")
        if self._clock() > exp:
            raise AuthError("token expired")
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError("token missing subject") from exc

    def _sign(self, signing_input: str) -> bytes:
        return hmac.new(self._secret, signing_input.encode(), "sha256").digest()
