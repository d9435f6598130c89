import logging
import re
from datetime import datetime
from typing import Callable, Optional

from citadel.core import security
from citadel.core.config import settings
from citadel.models import models
from citadel.schemas import schemas
from citadel.services import audit, policy
from citadel.services.audit import AuditRecorder
from citadel.services.errors import (
    DuplicateIdentifier, Forbidden, NotFound, Unauthorized, ValidationFailed,
)
from citadel.services.identifiers import IdentifierGenerator
from citadel.services.store import CatalogStore

logger = logging.getLogger(__name__)

_NAME = re.compile(r"^[a-zA-Z ]+$")
_PHONE = re.compile(r"^\d{10}$")
MIN_PASSWORD_LENGTH = 8
DUE_SOON_DAYS = 7


class MemberService:
    def __init__(self, store: CatalogStore, clock: Callable[[], datetime] = datetime.utcnow,
                 id_retries: int = None):
        self.store = store
        self.clock = clock
        self.ids = IdentifierGenerator(store, clock)
        self.audit = AuditRecorder(store)
        self.id_retries = id_retries if id_retries is not None else settings.id_retries

    def signup(self, signup_in: schemas.SignupRequest, ip_address: Optional[str] = None) -> schemas.SignupResult:
        full_name = (signup_in.full_name or "").strip()
        email = (signup_in.email or "").strip().lower()
        phone = signup_in.phone or ""
        password = signup_in.password or ""
        user_type = signup_in.user_type

        if not (full_name and email and phone and password and user_type):
            raise ValidationFailed("All fields are required")
        if settings.email_domain and not email.endswith("@" + settings.email_domain):
            raise ValidationFailed(f"Only {settings.email_domain} email allowed (@{settings.email_domain})")
        if not _NAME.match(full_name):
            raise ValidationFailed("Name can only contain letters and spaces")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be {MIN_PASSWORD_LENGTH}+ characters")
        if not _PHONE.match(phone):
            raise ValidationFailed("Phone must be 10 digits")
        if user_type not in models.MEMBER_TYPES:
            raise ValidationFailed("User type must be Student or Faculty")
        if self.store.find_user_by_email(email):
            raise ValidationFailed("Email already registered")

        user = self._create_user(
            full_name=full_name,
            email=email,
            phone=phone,
            password_hash=security.hash_password(password),
            user_type=user_type,
            role=user_type,
            is_active=True,
        )
        self.audit.record(user.id, audit.REGISTER_MEMBER,
                          f"Registered {user.full_name} ({user.member_id})", ip_address)
        return schemas.SignupResult(member_id=user.member_id)

    def create_staff(self, full_name: str, email: str, password: str,
                     role: str = models.ROLE_ADMIN) -> models.User:
        if role not in models.STAFF_ROLES:
            raise ValidationFailed(f"Staff role must be one of {', '.join(models.STAFF_ROLES)}")
        return self._create_user(
            full_name=full_name,
            email=email.strip().lower(),
            password_hash=security.hash_password(password),
            user_type=None,
            role=role,
            is_active=True,
        )

    def _create_user(self, **fields) -> models.User:
        attempts = max(self.id_retries, 1)
        for attempt in range(1, attempts + 1):
            member_id = self.ids.next_member_id()
            try:
                user = self.store.insert_user(member_id=member_id, **fields)
            except DuplicateIdentifier:
                if self.store.find_user_by_email(fields["email"]):
                    raise ValidationFailed("Email already registered")
                logger.warning("Member id %s already taken (attempt %d/%d)", member_id, attempt, attempts)
                continue
            logger.info("Created user %s role=%s", user.member_id, user.role)
            return user
        raise DuplicateIdentifier("Failed to allocate a member id")

    def login(self, email: Optional[str], password: Optional[str]):
        """Check credentials; returns the result payload and the signed token."""
        if not email or not password:
            raise ValidationFailed("Email & password required")
        user = self.store.find_user_by_email(email.strip().lower())
        if user is None or not user.password_hash:
            raise Unauthorized("Invalid credentials")
        if not security.verify_password(password, user.password_hash):
            self.store.record_login(user.id, success=False)
            raise Unauthorized("Invalid credentials")
        if user.is_blocked:
            raise Forbidden("Account blocked")
        if user.failed_login_attempts:
            self.store.record_login(user.id, success=True)

        token = security.create_token(user.id, user.email, user.role, user.member_id)
        return schemas.LoginResult(token=token, role=user.role, email=user.email, member_id=user.member_id), token

    def dashboard(self, user_pk: int) -> schemas.Dashboard:
        user = self.store.get_user(user_pk)
        if user is None:
            raise NotFound("User not found")
        if not user.is_active:
            raise Forbidden("Account is inactive")

        today = self.clock().date()
        borrowed = []
        for txn in self.store.issued_loans(user.id):
            days_left = policy.days_until_due(txn.due_date, today)
            borrowed.append(schemas.BorrowedBook(
                transaction_id=txn.transaction_id,
                book_title=txn.copy.book.title,
                book_author=txn.copy.book.author,
                book_copy_id=txn.copy.book_copy_id,
                issue_date=txn.issue_date,
                due_date=txn.due_date,
                status=txn.status,
                days_until_due=days_left,
                is_overdue=days_left < 0,
            ))

        limit = policy.borrow_limit(user.user_type)
        total_fine = user.total_fine or 0
        stats = schemas.DashboardStats(
            books_borrowed=len(borrowed),
            due_in_next7_days=sum(1 for b in borrowed if 0 <= b.days_until_due <= DUE_SOON_DAYS),
            total_fines=total_fine,
            borrow_limit=limit,
            available_slots=limit - len(borrowed),
        )
        return schemas.Dashboard(
            stats=stats,
            borrowed_books=borrowed,
            user_info=schemas.MemberInfo(
                member_id=user.member_id,
                full_name=user.full_name,
                user_type=user.user_type,
                total_fine=total_fine,
            ),
        )
