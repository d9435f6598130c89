"""Catalog store adapter.

Thin query interface over the ORM tables. Every mutating call commits on its
own, so a multi-step workflow gets no all-or-nothing guarantee from here and
must compensate for itself. Any SQLAlchemy failure is rolled back and surfaces
as ``StoreError``.

State transitions are conditional updates and counters are changed with a
single arithmetic statement, so two requests racing on the same row cannot
both win.
"""
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from citadel.models import models
from citadel.services.errors import DuplicateIdentifier, StoreError

logger = logging.getLogger(__name__)


class CatalogStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _reading(self, what: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store read failed (%s): %s", what, exc)
            raise StoreError(f"Failed to {what}") from exc

    @contextmanager
    def _writing(self, what: str, unique: bool = False):
        try:
            yield
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Store write conflict (%s): %s", what, exc)
            if unique:
                raise DuplicateIdentifier(f"Failed to {what}: identifier already in use") from exc
            raise StoreError(f"Failed to {what}") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Store write failed (%s): %s", what, exc)
            raise StoreError(f"Failed to {what}") from exc

    # ---- identifiers

    def latest_identifier(self, column, prefix: str, suffix: str = "") -> Optional[str]:
        """Highest identifier of the form ``prefix...suffix``.

        Identifiers are zero-padded, so ordering by length then text is a
        numeric ordering on the sequence part as long as everything after it
        has a fixed width. ``suffix`` pins that tail.
        """
        with self._reading("read latest identifier"):
            row = (self.db.query(column)
                   .filter(column.like(f"{prefix}%{suffix}"))
                   .order_by(func.length(column).desc(), column.desc())
                   .first())
        return row[0] if row else None

    # ---- users

    def get_user(self, user_pk: int) -> Optional[models.User]:
        with self._reading("fetch user"):
            return self.db.query(models.User).filter(models.User.id == user_pk).first()

    def find_member(self, member_id: str) -> Optional[models.User]:
        with self._reading("fetch member"):
            return self.db.query(models.User).filter(models.User.member_id == member_id).first()

    def find_user_by_email(self, email: str) -> Optional[models.User]:
        with self._reading("fetch user"):
            return self.db.query(models.User).filter(models.User.email == email).first()

    def insert_user(self, **fields) -> models.User:
        user = models.User(**fields)
        with self._writing("create user", unique=True):
            self.db.add(user)
        self.db.refresh(user)
        return user

    def record_login(self, user_pk: int, success: bool) -> None:
        query = self.db.query(models.User).filter(models.User.id == user_pk)
        with self._writing("record login attempt"):
            if success:
                query.update({models.User.failed_login_attempts: 0}, synchronize_session=False)
            else:
                query.update(
                    {models.User.failed_login_attempts: models.User.failed_login_attempts + 1},
                    synchronize_session=False,
                )

    def add_to_fine(self, user_pk: int, amount: int) -> bool:
        with self._writing("update member fine"):
            rows = (self.db.query(models.User)
                    .filter(models.User.id == user_pk)
                    .update({models.User.total_fine: models.User.total_fine + amount},
                            synchronize_session=False))
        return rows == 1

    # ---- books & copies

    def get_book(self, book_pk: int) -> Optional[models.Book]:
        with self._reading("fetch book"):
            return self.db.query(models.Book).filter(models.Book.id == book_pk).first()

    def find_book_by_isbn(self, isbn: str) -> Optional[models.Book]:
        with self._reading("fetch book"):
            return self.db.query(models.Book).filter(models.Book.isbn == isbn).first()

    def insert_book(self, **fields) -> models.Book:
        book = models.Book(**fields)
        with self._writing("add book to database"):
            self.db.add(book)
        self.db.refresh(book)
        return book

    def delete_book(self, book_pk: int) -> None:
        with self._writing("delete book"):
            self.db.query(models.Book).filter(models.Book.id == book_pk).delete(synchronize_session=False)

    def insert_copies(self, copies: Iterable[dict]) -> None:
        with self._writing("create book copies", unique=True):
            self.db.add_all([models.BookCopy(**fields) for fields in copies])

    def find_copy(self, book_copy_id: str) -> Optional[models.BookCopy]:
        with self._reading("fetch book copy"):
            return (self.db.query(models.BookCopy)
                    .filter(models.BookCopy.book_copy_id == book_copy_id)
                    .first())

    def transition_copy(self, copy_pk: int, expected: str, new: str) -> bool:
        """Set a copy's status only if it still holds ``expected``."""
        with self._writing("update book status"):
            rows = (self.db.query(models.BookCopy)
                    .filter(models.BookCopy.id == copy_pk, models.BookCopy.status == expected)
                    .update({models.BookCopy.status: new}, synchronize_session=False))
        return rows == 1

    def adjust_available(self, book_pk: int, delta: int) -> bool:
        """Shift ``available_copies`` by one, never below 0 nor above ``total_copies``."""
        query = self.db.query(models.Book).filter(models.Book.id == book_pk)
        if delta < 0:
            query = query.filter(models.Book.available_copies > 0)
        else:
            query = query.filter(models.Book.available_copies < models.Book.total_copies)
        with self._writing("update available copies"):
            rows = query.update(
                {models.Book.available_copies: models.Book.available_copies + delta},
                synchronize_session=False,
            )
        return rows == 1

    def list_categories(self) -> List[models.Category]:
        with self._reading("fetch categories"):
            return self.db.query(models.Category).order_by(models.Category.name.asc()).all()

    def get_category(self, category_pk: int) -> Optional[models.Category]:
        with self._reading("fetch category"):
            return self.db.query(models.Category).filter(models.Category.id == category_pk).first()

    def insert_category(self, name: str) -> models.Category:
        category = models.Category(name=name)
        with self._writing("create category", unique=True):
            self.db.add(category)
        self.db.refresh(category)
        return category

    def search_books(self, q: Optional[str] = None, author: Optional[str] = None,
                     isbn: Optional[str] = None, category: Optional[str] = None) -> List[models.Book]:
        query = self.db.query(models.Book)
        if q:
            like_q = f"%{q}%"
            query = query.filter(or_(models.Book.title.ilike(like_q), models.Book.author.ilike(like_q)))
        if author:
            query = query.filter(models.Book.author.ilike(f"%{author}%"))
        if isbn:
            query = query.filter(models.Book.isbn == isbn)
        if category:
            if category.isdigit():
                query = query.filter(models.Book.category_id == int(category))
            else:
                query = query.join(models.Category).filter(models.Category.name.ilike(f"%{category}%"))
        with self._reading("search books"):
            return query.all()

    def copy_statuses(self, book_pks: List[int]) -> List[Tuple[int, str]]:
        if not book_pks:
            return []
        with self._reading("fetch copy statuses"):
            return (self.db.query(models.BookCopy.book_id, models.BookCopy.status)
                    .filter(models.BookCopy.book_id.in_(book_pks))
                    .all())

    def list_books(self) -> List[models.Book]:
        with self._reading("list books"):
            return self.db.query(models.Book).order_by(models.Book.id).all()

    def set_book_counts(self, book_pk: int, total: int, available: int) -> None:
        with self._writing("reconcile copy counts"):
            (self.db.query(models.Book)
             .filter(models.Book.id == book_pk)
             .update({models.Book.total_copies: total, models.Book.available_copies: available},
                     synchronize_session=False))

    # ---- transactions

    def count_issued(self, user_pk: int) -> int:
        with self._reading("check borrowing limit"):
            return (self.db.query(func.count(models.Transaction.id))
                    .filter(models.Transaction.user_id == user_pk,
                            models.Transaction.status == models.TXN_ISSUED)
                    .scalar())

    def find_active_transaction(self, copy_pk: int) -> Optional[models.Transaction]:
        with self._reading("fetch active transaction"):
            return (self.db.query(models.Transaction)
                    .filter(models.Transaction.book_copy_id == copy_pk,
                            models.Transaction.status == models.TXN_ISSUED)
                    .first())

    def issued_loans(self, user_pk: int) -> List[models.Transaction]:
        with self._reading("fetch borrowed books"):
            return (self.db.query(models.Transaction)
                    .options(joinedload(models.Transaction.copy).joinedload(models.BookCopy.book))
                    .filter(models.Transaction.user_id == user_pk,
                            models.Transaction.status == models.TXN_ISSUED)
                    .order_by(models.Transaction.due_date.asc())
                    .all())

    def insert_transaction(self, **fields) -> models.Transaction:
        txn = models.Transaction(**fields)
        with self._writing("create transaction", unique=True):
            self.db.add(txn)
        self.db.refresh(txn)
        return txn

    def delete_transaction(self, txn_pk: int) -> None:
        with self._writing("delete transaction"):
            (self.db.query(models.Transaction)
             .filter(models.Transaction.id == txn_pk)
             .delete(synchronize_session=False))

    def close_transaction(self, txn_pk: int, values: Dict) -> bool:
        """Finalise a loan; only an ``Issued`` transaction can be closed."""
        values = {getattr(models.Transaction, k): v for k, v in values.items()}
        with self._writing("update transaction"):
            rows = (self.db.query(models.Transaction)
                    .filter(models.Transaction.id == txn_pk,
                            models.Transaction.status == models.TXN_ISSUED)
                    .update(values, synchronize_session=False))
        return rows == 1

    # ---- ledgers

    def insert_fine(self, **fields) -> models.Fine:
        fine = models.Fine(**fields)
        with self._writing("create fine record"):
            self.db.add(fine)
        return fine

    def insert_audit(self, **fields) -> None:
        with self._writing("write audit log"):
            self.db.add(models.AuditLog(**fields))
