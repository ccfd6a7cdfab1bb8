from datetime import datetime, timedelta, timezone

import jwt

from telehealth.core import config
from telehealth.scheduling.state_machine import Actor

REQUIRED_CLAIMS = ["sub", "role", "exp"]


def create_access_token(actor: Actor, expires_minutes: int | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    payload = {
        "sub": actor.id,
        "role": actor.role.value,
        "iat": issued_at,
        "exp": expire,
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry. Role and subject are checked by the caller."""
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
