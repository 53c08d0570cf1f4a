"""
Signed, expiring identity tokens (HS256 JWT).

Claims: ``sub`` (user id as string), ``role``, ``iat`` and ``exp`` in epoch
seconds. Expiry is checked here against the injected clock rather than by
the JWT library, so callers can pass an explicit ``now``.
"""
import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from jose import jwt as jose_jwt, JWTError

from .errors import TokenExpired, TokenMalformed, TokenBadSignature
from .policy import Principal, Role

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenSettings:
    secret: str
    lifetime_seconds: int = 86400
    algorithm: str = JWT_ALGORITHM

    @classmethod
    def from_config(cls, config) -> "TokenSettings":
        secret = config.get('JWT_SECRET') or config.get('SECRET_KEY')
        if not secret:
            raise ValueError("JWT_SECRET must be configured")
        return cls(
            secret=secret,
            lifetime_seconds=int(config.get('JWT_LIFETIME_SECONDS', 86400)),
        )


class IdentityToken:
    def __init__(self, settings: TokenSettings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.clock = clock

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def issue(self, subject_id: int, role, now: float = None) -> Tuple[str, int]:
        """Issue a token for subject_id/role. Returns (token, expires_at)."""
        issued_at = int(self._now(now))
        expires_at = issued_at + self.settings.lifetime_seconds
        payload = {
            "sub": str(subject_id),
            "role": Role.parse(role).value,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jose_jwt.encode(payload, self.settings.secret, algorithm=self.settings.algorithm)
        return token, expires_at

    def verify(self, token: str, now: float = None) -> Principal:
        if not token or not isinstance(token, str):
            raise TokenMalformed()

        try:
            jose_jwt.get_unverified_claims(token)
        except JWTError:
            raise TokenMalformed()

        try:
            claims = jose_jwt.decode(
                token,
                self.settings.secret,
                algorithms=[self.settings.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.warning(f"Rejected token: {e}")
            raise TokenBadSignature()

        try:
            subject_id = int(claims["sub"])
            role = Role.parse(claims["role"])
            expires_at = float(claims["exp"])
        except (KeyError, TypeError, ValueError):
            raise TokenMalformed()

        if expires_at < self._now(now):
            raise TokenExpired()

        return Principal(subject_id=subject_id, role=role)

    def refresh(self, token: str, now: float = None) -> Tuple[str, int]:
        """Re-issue a still-valid token with the same claims and a new expiry."""
        principal = self.verify(token, now=now)
        return self.issue(principal.subject_id, principal.role, now=now)
