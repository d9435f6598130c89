from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from citadel.core.config import settings


@dataclass
class SessionUser:
    """Identity carried by a verified session token."""
    id: int
    email: str
    role: str
    member_id: Optional[str] = None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_token(user_id: int, email: str, role: str, member_id: Optional[str]) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {
        "id": user_id,
        "email": email,
        "role": role,
        "memberId": member_id,
        "exp": expires,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[SessionUser]:
    """Verify signature and expiry; None for anything that does not check out."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        return None
    try:
        return SessionUser(
            id=int(payload["id"]),
            email=payload.get("email", ""),
            role=payload["role"],
            member_id=payload.get("memberId"),
        )
    except (KeyError, TypeError, ValueError):
        return None
