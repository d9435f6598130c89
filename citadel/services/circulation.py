"""Issue and return of book copies.

A loan touches several rows (transaction, copy status, title counters, fine
ledger, member fine total) and the store commits each write separately. The
transaction row is the record of truth for whether a loan happened:

* Issue writes the transaction first. If the copy cannot then be marked
  ``Issued`` the transaction is deleted again and the caller gets an error.
* Return finalises the transaction first. Everything after that is
  best-effort: failures are logged and the return still succeeds.

Counters that drift because of a best-effort failure are repaired by
``reconcile_counts``.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, List, Optional

from citadel.core.config import settings
from citadel.models import models
from citadel.schemas import schemas
from citadel.services import audit, policy
from citadel.services.audit import AuditRecorder
from citadel.services.errors import (
    CopyNotAvailable, CopyNotFound, DataIntegrityError, DuplicateIdentifier, MemberNotFound,
    NoActiveLoan, PolicyViolation, StoreError, TransactionFailed, UpdateFailed, ValidationFailed,
)
from citadel.services.identifiers import IdentifierGenerator
from citadel.services.store import CatalogStore

logger = logging.getLogger(__name__)

LATE_RETURN = "Late Return"


class CirculationService:
    def __init__(self, store: CatalogStore, clock: Callable[[], datetime] = datetime.utcnow,
                 id_retries: int = None):
        self.store = store
        self.clock = clock
        self.ids = IdentifierGenerator(store, clock)
        self.audit = AuditRecorder(store)
        self.id_retries = id_retries if id_retries is not None else settings.id_retries

    def _best_effort(self, what: str, fn, *args):
        try:
            return fn(*args)
        except StoreError:
            logger.exception("%s failed; continuing", what)
            return None

    # ---- issue

    def issue(self, member_id: Optional[str], book_copy_id: Optional[str], actor: Optional[int],
              ip_address: Optional[str] = None) -> schemas.IssueReceipt:
        if not member_id or not book_copy_id:
            raise ValidationFailed("Member ID and Book Copy ID are required")

        member = self.store.find_member(member_id)
        if member is None:
            raise MemberNotFound()
        eligibility = policy.check_member(member, self.store.count_issued(member.id))
        if not eligibility.can_borrow:
            raise PolicyViolation(eligibility.reason, policy.violation_message(member, eligibility))

        copy = self.store.find_copy(book_copy_id)
        if copy is None:
            raise CopyNotFound()
        if not policy.is_copy_issuable(copy):
            raise CopyNotAvailable(copy.status)

        book = self.store.get_book(copy.book_id)
        if book is None:
            raise DataIntegrityError("Book details not found")

        member_pk, member_name, user_type = member.id, member.full_name, member.user_type
        copy_pk, book_pk = copy.id, book.id
        title, author = book.title, book.author

        issue_date = self.clock().date()
        due_date = policy.due_date_for(user_type, issue_date)
        txn = self._create_transaction(
            user_id=member_pk,
            book_copy_id=copy_pk,
            issue_date=issue_date,
            due_date=due_date,
            issued_by=actor,
            status=models.TXN_ISSUED,
            fine_amount=0,
            fine_paid=False,
        )
        txn_pk, transaction_id = txn.id, txn.transaction_id

        try:
            moved = self.store.transition_copy(copy_pk, models.COPY_AVAILABLE, models.COPY_ISSUED)
        except StoreError as exc:
            self._discard_transaction(txn_pk, transaction_id)
            raise TransactionFailed("Failed to update book status") from exc
        if not moved:
            # another request took the copy between our check and this update
            self._discard_transaction(txn_pk, transaction_id)
            raise CopyNotAvailable(models.COPY_ISSUED)

        if not self._best_effort("Decrementing available copies", self.store.adjust_available, book_pk, -1):
            logger.warning("available_copies for book %s not decremented", book_pk)

        self.audit.record(
            actor, audit.ISSUE_BOOK,
            f"Issued {title} ({book_copy_id}) to {member_name} ({member_id})",
            ip_address,
        )
        logger.info("Issued %s as %s to %s due %s", book_copy_id, transaction_id, member_id, due_date)
        return schemas.IssueReceipt(
            transaction_id=transaction_id,
            book_title=title,
            book_author=author,
            member_name=member_name,
            member_id=member_id,
            issue_date=issue_date,
            due_date=due_date,
            loan_period_label=policy.loan_period_label(user_type),
        )

    def _create_transaction(self, **fields) -> models.Transaction:
        attempts = max(self.id_retries, 1)
        for attempt in range(1, attempts + 1):
            transaction_id = self.ids.next_transaction_id()
            try:
                return self.store.insert_transaction(transaction_id=transaction_id, **fields)
            except DuplicateIdentifier:
                logger.warning("Transaction id %s already taken (attempt %d/%d)",
                               transaction_id, attempt, attempts)
            except StoreError as exc:
                raise TransactionFailed("Failed to create transaction") from exc
        raise TransactionFailed("Failed to create transaction")

    def _discard_transaction(self, txn_pk: int, transaction_id: str) -> None:
        try:
            self.store.delete_transaction(txn_pk)
        except StoreError:
            logger.exception("Rollback of transaction %s failed; row left in place", transaction_id)
        else:
            logger.warning("Rolled back transaction %s", transaction_id)

    # ---- return

    def return_copy(self, book_copy_id: Optional[str], actor: Optional[int],
                    ip_address: Optional[str] = None) -> schemas.ReturnReceipt:
        if not book_copy_id:
            raise ValidationFailed("Book Copy ID is required")

        copy = self.store.find_copy(book_copy_id)
        if copy is None:
            raise CopyNotFound()
        txn = self.store.find_active_transaction(copy.id)
        if txn is None:
            raise NoActiveLoan()
        member = self.store.get_user(txn.user_id)
        book = self.store.get_book(copy.book_id)
        if member is None or book is None:
            raise DataIntegrityError()

        copy_pk, book_pk, member_pk = copy.id, book.id, member.id
        title, author = book.title, book.author
        member_name, member_id = member.full_name, member.member_id
        txn_pk, transaction_id = txn.id, txn.transaction_id
        issue_date, due_date = txn.issue_date, txn.due_date

        returned_at = self.clock()
        fine = policy.late_fine(due_date, returned_at)
        status = models.TXN_OVERDUE if fine.is_late else models.TXN_RETURNED

        try:
            closed = self.store.close_transaction(txn_pk, {
                "return_date": returned_at.date(),
                "returned_to": actor,
                "fine_amount": fine.amount,
                "status": status,
                "fine_paid": False,
            })
        except StoreError as exc:
            raise UpdateFailed("Failed to update transaction") from exc
        if not closed:
            raise NoActiveLoan()

        if not self._best_effort("Marking copy available", self.store.transition_copy,
                                 copy_pk, models.COPY_ISSUED, models.COPY_AVAILABLE):
            logger.warning("Copy %s not marked Available after return of %s", book_copy_id, transaction_id)
        if not self._best_effort("Incrementing available copies", self.store.adjust_available, book_pk, 1):
            logger.warning("available_copies for book %s not incremented", book_pk)

        if fine.amount > 0:
            self._best_effort("Recording fine", lambda: self.store.insert_fine(
                transaction_id=txn_pk,
                user_id=member_pk,
                amount=fine.amount,
                reason=LATE_RETURN,
                paid=False,
            ))
            self._best_effort("Updating member fine total", self.store.add_to_fine, member_pk, fine.amount)

        description = f"Returned {title} ({book_copy_id}) from {member_name}"
        if fine.is_late:
            description += f" - {fine.days_late} days late, fine: {fine.amount}"
        self.audit.record(actor, audit.RETURN_BOOK, description, ip_address)

        return schemas.ReturnReceipt(
            transaction_id=transaction_id,
            book_title=title,
            book_author=author,
            member_name=member_name,
            member_id=member_id,
            issue_date=issue_date,
            due_date=due_date,
            return_date=returned_at.date(),
            is_late=fine.is_late,
            days_late=fine.days_late,
            fine_amount=fine.amount,
            status=status,
        )

    # ---- read-only probes

    def verify_member(self, member_id: str) -> schemas.MemberCheck:
        member = self.store.find_member(member_id)
        if member is None:
            raise MemberNotFound()
        eligibility = policy.check_member(member, self.store.count_issued(member.id))
        return schemas.MemberCheck(
            member_id=member.member_id,
            full_name=member.full_name,
            user_type=member.user_type,
            total_fine=member.total_fine or 0,
            is_active=member.is_active,
            is_blocked=member.is_blocked,
            current_borrowings=eligibility.current_borrowings,
            borrow_limit=eligibility.borrow_limit,
            can_borrow=eligibility.can_borrow,
            reason=eligibility.reason,
        )

    def verify_copy(self, book_copy_id: str) -> schemas.CopyCheck:
        copy = self.store.find_copy(book_copy_id)
        if copy is None:
            raise CopyNotFound()
        book = self.store.get_book(copy.book_id)
        info = None
        if book is not None:
            info = schemas.CopyBookInfo(
                title=book.title,
                author=book.author,
                isbn=book.isbn,
                publisher=book.publisher,
                shelf_location=book.shelf_location,
            )
        return schemas.CopyCheck(
            book_copy_id=copy.book_copy_id,
            status=copy.status,
            book=info,
            can_issue=policy.is_copy_issuable(copy),
        )

    def preview_return(self, book_copy_id: Optional[str]) -> schemas.ReturnPreview:
        if not book_copy_id:
            raise ValidationFailed("Book Copy ID is required")
        copy = self.store.find_copy(book_copy_id)
        if copy is None:
            raise CopyNotFound()
        txn = self.store.find_active_transaction(copy.id)
        if txn is None:
            raise NoActiveLoan("No active transaction found for this book copy")
        member = self.store.get_user(txn.user_id)
        book = self.store.get_book(copy.book_id)
        if member is None or book is None:
            raise DataIntegrityError("Failed to fetch details")
        fine = policy.late_fine(txn.due_date, self.clock())
        return schemas.ReturnPreview(
            transaction_id=txn.transaction_id,
            book_title=book.title,
            book_author=book.author,
            member_name=member.full_name,
            member_id=member.member_id,
            user_type=member.user_type,
            issue_date=txn.issue_date,
            due_date=txn.due_date,
            is_late=fine.is_late,
            days_late=fine.days_late,
            potential_fine=fine.amount,
        )

    # ---- maintenance

    def reconcile_counts(self, actor: Optional[int] = None,
                         ip_address: Optional[str] = None) -> List[schemas.CountCorrection]:
        """Recompute every title's copy counters from its copies' statuses.

        Removed copies no longer count towards ``total_copies``.
        """
        books = self.store.list_books()
        counts = defaultdict(lambda: [0, 0])
        for book_pk, status in self.store.copy_statuses([b.id for b in books]):
            if status == models.COPY_REMOVED:
                continue
            counts[book_pk][0] += 1
            if status == models.COPY_AVAILABLE:
                counts[book_pk][1] += 1

        corrections = []
        for book in books:
            total, available = counts[book.id]
            if (book.total_copies, book.available_copies) == (total, available):
                continue
            corrections.append(schemas.CountCorrection(
                book_id=book.id,
                title=book.title,
                total_copies=total,
                available_copies=available,
                previous_total=book.total_copies,
                previous_available=book.available_copies,
            ))
        for fix in corrections:
            self.store.set_book_counts(fix.book_id, fix.total_copies, fix.available_copies)
            logger.warning("Corrected counts for book %s: %s/%s -> %s/%s", fix.book_id,
                           fix.previous_available, fix.previous_total,
                           fix.available_copies, fix.total_copies)
        if corrections:
            self.audit.record(actor, audit.RECONCILE_COUNTS,
                              f"Reconciled copy counts for {len(corrections)} book(s)", ip_address)
        return corrections
