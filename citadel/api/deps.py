from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from citadel.core.config import settings
from citadel.core.database import get_db
from citadel.core.security import SessionUser, decode_token
from citadel.services.catalog import CatalogService
from citadel.services.circulation import CirculationService
from citadel.services.errors import Forbidden, Unauthorized
from citadel.services.members import MemberService
from citadel.services.store import CatalogStore

bearer_scheme = HTTPBearer(auto_error=False)


def get_clock() -> Callable[[], datetime]:
    return datetime.utcnow


def get_store(db: Session = Depends(get_db)) -> CatalogStore:
    return CatalogStore(db)


def get_circulation(store: CatalogStore = Depends(get_store),
                    clock: Callable[[], datetime] = Depends(get_clock)) -> CirculationService:
    return CirculationService(store, clock)


def get_catalog(store: CatalogStore = Depends(get_store),
                clock: Callable[[], datetime] = Depends(get_clock)) -> CatalogService:
    return CatalogService(store, clock)


def get_members(store: CatalogStore = Depends(get_store),
                clock: Callable[[], datetime] = Depends(get_clock)) -> MemberService:
    return MemberService(store, clock)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
    if forwarded:
        return forwarded
    return request.client.host if request.client else "unknown"


def get_current_user(request: Request,
                     credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> SessionUser:
    """Session from the Bearer header, falling back to the session cookie."""
    token = credentials.credentials if credentials else request.cookies.get(settings.cookie_name)
    if not token:
        raise Unauthorized()
    user = decode_token(token)
    if user is None:
        raise Unauthorized()
    return user


def require_role(*roles: str):
    def checker(user: SessionUser = Depends(get_current_user)) -> SessionUser:
        if user.role not in roles:
            raise Forbidden()
        return user
    return checker
