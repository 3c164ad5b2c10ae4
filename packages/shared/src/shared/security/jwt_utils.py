from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any


def _urlsafe_b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _urlsafe_b64decode(raw: str) -> bytes:
    padding = "=" * ((4 - len(raw) % 4) % 4)
    return base64.urlsafe_b64decode((raw + padding).encode("ascii"))


@dataclass(frozen=True)
class AuthTokenPayload:
    sub: str
    exp: int
    iat: int
    jti: str

    def to_dict(self) -> dict[str, Any]:
        return {"sub": self.sub, "exp": self.exp, "iat": self.iat, "jti": self.jti}


class JWTManager:
    """HS256-only access token utility without external dependency."""

    def __init__(self, secret: str, access_minutes: int = 60) -> None:
        if not secret:
            raise ValueError("JWT secret cannot be empty")
        self._secret = secret.encode("utf-8")
        self._access_minutes = access_minutes

    def issue_access_token(self, subject: str, jti: str) -> str:
        now = datetime.now(timezone.utc)
        payload = AuthTokenPayload(
            sub=subject,
            iat=int(now.timestamp()),
            exp=int((now + timedelta(minutes=self._access_minutes)).timestamp()),
            jti=jti,
        )
        return self._encode(payload.to_dict())

    def decode(self, token: str) -> AuthTokenPayload:
        try:
            header_raw, payload_raw, sig_raw = token.split(".")
        except ValueError as exc:
            raise ValueError("malformed token") from exc
        expected = self._sign(f"{header_raw}.{payload_raw}")
        if not hmac.compare_digest(expected.encode("ascii"), sig_raw.encode("utf-8")):
            raise ValueError("invalid token signature")
        payload_obj = json.loads(_urlsafe_b64decode(payload_raw))
        exp = int(payload_obj.get("exp", 0))
        if exp <= int(datetime.now(timezone.utc).timestamp()):
            raise ValueError("token expired")
        subject = str(payload_obj.get("sub", ""))
        if not subject:
            raise ValueError("token subject missing")
        return AuthTokenPayload(
            sub=subject,
            exp=exp,
            iat=int(payload_obj.get("iat", 0)),
            jti=str(payload_obj.get("jti", "")),
        )

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode("utf-8"), hashlib.sha256).digest()
        return _urlsafe_b64encode(digest)

    def _encode(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_raw = _urlsafe_b64encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
        payload_raw = _urlsafe_b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{header_raw}.{payload_raw}.{self._sign(f'{header_raw}.{payload_raw}')}"
