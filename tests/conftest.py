import os

os.environ.setdefault("CITADEL_DB", "sqlite://")
os.environ["CITADEL_JWT_SECRET"] = "test-secret"
os.environ["CITADEL_EMAIL_DOMAIN"] = "nitj.ac.in"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from citadel.api.deps import get_clock
from citadel.core.database import Base, get_db
from citadel.core.security import create_token, hash_password
from citadel.main import app
from citadel.models import models
from citadel.services.circulation import CirculationService
from citadel.services.identifiers import format_copy_id
from citadel.services.store import CatalogStore


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return CatalogStore(db)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 10, 12, 0, 0))


@pytest.fixture
def circulation(store, clock):
    return CirculationService(store, clock)


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_member(store):
    def make(member_id="MEM-2025-0001", user_type=models.ROLE_STUDENT, total_fine=0,
             is_active=True, is_blocked=False, full_name="Asha Verma", password=None):
        return store.insert_user(
            member_id=member_id,
            full_name=full_name,
            email=f"{member_id.lower()}@nitj.ac.in",
            phone="9876543210",
            password_hash=hash_password(password) if password else None,
            user_type=user_type,
            role=user_type,
            total_fine=total_fine,
            is_active=is_active,
            is_blocked=is_blocked,
        )
    return make


@pytest.fixture
def make_book(store):
    """Insert a title with ``copies`` Available copies from batch ``batch``."""
    def make(title="Clean Code", author="Robert C. Martin", copies=2, batch=1, year=2025,
             isbn=None, category_id=None, shelf_location="CS-A1"):
        book = store.insert_book(
            title=title,
            author=author,
            isbn=isbn,
            publisher="Prentice Hall",
            publication_year=2008,
            category_id=category_id,
            total_copies=copies,
            available_copies=copies,
            shelf_location=shelf_location,
        )
        copy_ids = [format_copy_id(year, batch, n) for n in range(1, copies + 1)]
        store.insert_copies(
            dict(book_id=book.id, copy_number=n, book_copy_id=copy_id, status=models.COPY_AVAILABLE)
            for n, copy_id in enumerate(copy_ids, start=1)
        )
        return book, copy_ids
    return make


@pytest.fixture
def librarian(store):
    return store.insert_user(
        member_id="MEM-2024-0099",
        full_name="Ravi Librarian",
        email="librarian@nitj.ac.in",
        user_type=None,
        role=models.ROLE_LIBRARIAN,
    )


@pytest.fixture
def headers_for():
    def headers(user):
        token = create_token(user.id, user.email, user.role, user.member_id)
        return {"Authorization": f"Bearer {token}"}
    return headers


@pytest.fixture
def staff_headers(librarian, headers_for):
    return headers_for(librarian)
