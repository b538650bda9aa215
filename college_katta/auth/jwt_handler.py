from datetime import datetime, timedelta, timezone

import jwt

from college_katta.core import config


def create_access_token(subject: str, claims: dict | None = None, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = dict(claims or {})
    payload.update({"sub": subject, "exp": now + timedelta(minutes=expire_minutes), "iat": now})
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def create_user_token(user) -> str:
    return create_access_token(
        subject=str(user.id),
        claims={"username": user.username, "role": user.role},
    )


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
