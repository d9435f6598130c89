import logging
from datetime import date

import pytest

from citadel.models import models
from citadel.services import policy
from citadel.services.errors import (
    CopyNotAvailable, CopyNotFound, DataIntegrityError, MemberNotFound, NoActiveLoan,
    PolicyViolation, StoreError, TransactionFailed, UpdateFailed, ValidationFailed,
)


def issued_count(db, copy_pk):
    return (db.query(models.Transaction)
            .filter(models.Transaction.book_copy_id == copy_pk,
                    models.Transaction.status == models.TXN_ISSUED)
            .count())


def test_issue_happy_path(circulation, store, db, make_member, make_book, librarian):
    member = make_member()
    book, copy_ids = make_book(copies=2)

    receipt = circulation.issue(member.member_id, copy_ids[0], actor=librarian.id, ip_address="10.0.0.5")

    assert receipt.transaction_id == "TXN-2025-000001"
    assert receipt.book_title == "Clean Code"
    assert receipt.member_name == "Asha Verma"
    assert receipt.issue_date == date(2025, 3, 10)
    assert receipt.due_date == date(2025, 3, 24)
    assert receipt.loan_period_label == "14 days"
    assert store.count_issued(member.id) == 1

    copy = store.find_copy(copy_ids[0])
    assert copy.status == models.COPY_ISSUED
    assert store.get_book(book.id).available_copies == 1

    txn = store.find_active_transaction(copy.id)
    assert txn.issued_by == librarian.id
    assert txn.fine_amount == 0
    assert txn.fine_paid is False

    log = db.query(models.AuditLog).one()
    assert log.action == "ISSUE_BOOK"
    assert log.ip_address == "10.0.0.5"
    assert copy_ids[0] in log.description


def test_faculty_gets_thirty_days(circulation, make_member, make_book):
    member = make_member(user_type=models.ROLE_FACULTY)
    _, copy_ids = make_book(copies=1)
    receipt = circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert receipt.due_date == date(2025, 4, 9)
    assert receipt.loan_period_label == "30 days"


def test_issue_requires_both_identifiers(circulation):
    with pytest.raises(ValidationFailed):
        circulation.issue("", "BK-2025-0001-01", actor=None)
    with pytest.raises(ValidationFailed):
        circulation.issue("MEM-2025-0001", None, actor=None)


def test_issue_unknown_member(circulation, make_book):
    _, copy_ids = make_book()
    with pytest.raises(MemberNotFound):
        circulation.issue("MEM-2025-0404", copy_ids[0], actor=None)


def test_issue_unknown_copy(circulation, make_member):
    member = make_member()
    with pytest.raises(CopyNotFound):
        circulation.issue(member.member_id, "BK-2025-0404-01", actor=None)


def test_issue_copy_already_out(circulation, make_member, make_book):
    first = make_member()
    second = make_member(member_id="MEM-2025-0002", full_name="Kiran Rao")
    _, copy_ids = make_book(copies=1)
    circulation.issue(first.member_id, copy_ids[0], actor=None)

    with pytest.raises(CopyNotAvailable) as excinfo:
        circulation.issue(second.member_id, copy_ids[0], actor=None)
    assert excinfo.value.status == models.COPY_ISSUED
    assert str(excinfo.value) == "Book copy is issued. Cannot issue."


def test_faculty_limit_reached(circulation, store, make_member, make_book):
    member = make_member(user_type=models.ROLE_FACULTY)
    _, copy_ids = make_book(copies=6)
    for copy_id in copy_ids[:5]:
        circulation.issue(member.member_id, copy_id, actor=None)

    with pytest.raises(PolicyViolation) as excinfo:
        circulation.issue(member.member_id, copy_ids[5], actor=None)
    assert excinfo.value.reason == "Borrowing limit reached"
    assert store.count_issued(member.id) == 5
    assert store.find_copy(copy_ids[5]).status == models.COPY_AVAILABLE


def test_fine_ceiling_reported_before_block(circulation, make_member, make_book):
    member = make_member(total_fine=600, is_blocked=True)
    _, copy_ids = make_book()
    with pytest.raises(PolicyViolation) as excinfo:
        circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert excinfo.value.reason == policy.REASON_HIGH_FINES


def test_copy_update_failure_rolls_back_transaction(circulation, store, db, make_member, make_book, monkeypatch):
    member = make_member()
    book, copy_ids = make_book(copies=1)

    def broken(*args):
        raise StoreError("Failed to update book status")
    monkeypatch.setattr(store, "transition_copy", broken)

    with pytest.raises(TransactionFailed):
        circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert db.query(models.Transaction).count() == 0
    assert store.get_book(book.id).available_copies == 1


def test_losing_the_race_for_a_copy(circulation, store, db, make_member, make_book, monkeypatch):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    monkeypatch.setattr(store, "transition_copy", lambda *args: False)

    with pytest.raises(CopyNotAvailable):
        circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert db.query(models.Transaction).count() == 0


def test_transaction_insert_failure(circulation, store, make_member, make_book, monkeypatch):
    member = make_member()
    _, copy_ids = make_book(copies=1)

    def broken(**fields):
        raise StoreError("Failed to create transaction")
    monkeypatch.setattr(store, "insert_transaction", broken)

    with pytest.raises(TransactionFailed):
        circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert store.find_copy(copy_ids[0]).status == models.COPY_AVAILABLE


def test_counter_failure_does_not_fail_issue(circulation, store, make_member, make_book, monkeypatch):
    member = make_member()
    book, copy_ids = make_book(copies=1)

    def broken(*args):
        raise StoreError("Failed to update available copies")
    monkeypatch.setattr(store, "adjust_available", broken)

    receipt = circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert receipt.transaction_id == "TXN-2025-000001"
    assert store.get_book(book.id).available_copies == 1  # drifted


def test_duplicate_transaction_id_is_retried(circulation, make_member, make_book, monkeypatch):
    member = make_member(user_type=models.ROLE_FACULTY)
    _, copy_ids = make_book(copies=2)
    circulation.issue(member.member_id, copy_ids[0], actor=None)

    allocated = iter(["TXN-2025-000001", "TXN-2025-000002"])
    monkeypatch.setattr(circulation.ids, "next_transaction_id", lambda: next(allocated))

    receipt = circulation.issue(member.member_id, copy_ids[1], actor=None)
    assert receipt.transaction_id == "TXN-2025-000002"


def test_on_time_return(circulation, store, db, clock, make_member, make_book):
    member = make_member()
    book, copy_ids = make_book(copies=1)
    circulation.issue(member.member_id, copy_ids[0], actor=None)
    clock.advance(days=14)

    receipt = circulation.return_copy(copy_ids[0], actor=None)

    assert receipt.is_late is False
    assert receipt.days_late == 0
    assert receipt.fine_amount == 0
    assert receipt.status == models.TXN_RETURNED
    assert receipt.return_date == date(2025, 3, 24)
    assert store.find_copy(copy_ids[0]).status == models.COPY_AVAILABLE
    assert store.get_book(book.id).available_copies == 1
    assert db.query(models.Fine).count() == 0


def test_late_return(circulation, store, db, clock, make_member, make_book, librarian):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    clock.advance(days=-20)
    circulation.issue(member.member_id, copy_ids[0], actor=librarian.id)
    clock.advance(days=20)

    receipt = circulation.return_copy(copy_ids[0], actor=librarian.id)

    assert receipt.is_late is True
    assert receipt.days_late == 6
    assert receipt.fine_amount == 30
    assert receipt.status == models.TXN_OVERDUE

    txn = db.query(models.Transaction).one()
    assert txn.status == models.TXN_OVERDUE
    assert txn.returned_to == librarian.id
    assert txn.fine_amount == 30

    fine = db.query(models.Fine).one()
    assert fine.amount == 30
    assert fine.reason == "Late Return"
    assert fine.transaction_id == txn.id
    assert fine.paid is False
    assert store.get_user(member.id).total_fine == 30

    log = db.query(models.AuditLog).filter(models.AuditLog.action == "RETURN_BOOK").one()
    assert "6 days late, fine: 30" in log.description


def test_second_return_has_no_active_loan(circulation, db, clock, make_member, make_book):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    circulation.issue(member.member_id, copy_ids[0], actor=None)
    clock.advance(days=30)
    circulation.return_copy(copy_ids[0], actor=None)

    with pytest.raises(NoActiveLoan):
        circulation.return_copy(copy_ids[0], actor=None)
    assert db.query(models.Fine).count() == 1


def test_return_unknown_copy(circulation):
    with pytest.raises(CopyNotFound):
        circulation.return_copy("BK-2025-0404-01", actor=None)
    with pytest.raises(ValidationFailed):
        circulation.return_copy("", actor=None)


def test_return_with_missing_member_row(circulation, store, db, make_member, make_book):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    circulation.issue(member.member_id, copy_ids[0], actor=None)
    db.query(models.User).filter(models.User.id == member.id).delete()
    db.commit()

    with pytest.raises(DataIntegrityError):
        circulation.return_copy(copy_ids[0], actor=None)


def test_transaction_update_failure(circulation, store, make_member, make_book, monkeypatch):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    circulation.issue(member.member_id, copy_ids[0], actor=None)

    def broken(*args):
        raise StoreError("Failed to update transaction")
    monkeypatch.setattr(store, "close_transaction", broken)

    with pytest.raises(UpdateFailed):
        circulation.return_copy(copy_ids[0], actor=None)
    assert store.find_copy(copy_ids[0]).status == models.COPY_ISSUED


def test_best_effort_steps_do_not_fail_return(circulation, store, db, clock, make_member, make_book, monkeypatch):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    circulation.issue(member.member_id, copy_ids[0], actor=None)
    clock.advance(days=16)

    def broken(*args, **kwargs):
        raise StoreError("store unavailable")
    for name in ("transition_copy", "adjust_available", "insert_fine", "add_to_fine", "insert_audit"):
        monkeypatch.setattr(store, name, broken)

    receipt = circulation.return_copy(copy_ids[0], actor=None)
    assert receipt.status == models.TXN_OVERDUE
    assert receipt.fine_amount == 10
    assert db.query(models.Transaction).one().status == models.TXN_OVERDUE


def test_counters_stay_in_bounds(circulation, store, clock, make_member, make_book):
    member = make_member()
    book, copy_ids = make_book(copies=2)
    for copy_id in copy_ids:
        circulation.issue(member.member_id, copy_id, actor=None)
        refreshed = store.get_book(book.id)
        assert 0 <= refreshed.available_copies <= refreshed.total_copies
    for copy_id in copy_ids:
        circulation.return_copy(copy_id, actor=None)
        refreshed = store.get_book(book.id)
        assert 0 <= refreshed.available_copies <= refreshed.total_copies
    assert store.get_book(book.id).available_copies == 2


def test_decrement_floors_at_zero(store, make_book):
    book, _ = make_book(copies=1)
    store.set_book_counts(book.id, 1, 0)
    assert store.adjust_available(book.id, -1) is False
    assert store.get_book(book.id).available_copies == 0
    store.set_book_counts(book.id, 1, 1)
    assert store.adjust_available(book.id, 1) is False
    assert store.get_book(book.id).available_copies == 1


def test_at_most_one_issued_transaction_per_copy(circulation, db, clock, make_member, make_book):
    first = make_member()
    second = make_member(member_id="MEM-2025-0002", full_name="Kiran Rao")
    _, copy_ids = make_book(copies=1)
    copy_pk = db.query(models.BookCopy).one().id

    circulation.issue(first.member_id, copy_ids[0], actor=None)
    with pytest.raises(CopyNotAvailable):
        circulation.issue(second.member_id, copy_ids[0], actor=None)
    assert issued_count(db, copy_pk) == 1

    clock.advance(days=3)
    circulation.return_copy(copy_ids[0], actor=None)
    circulation.issue(second.member_id, copy_ids[0], actor=None)
    assert issued_count(db, copy_pk) == 1


def test_verify_member(circulation, make_member, make_book):
    member = make_member(total_fine=700)
    check = circulation.verify_member(member.member_id)
    assert check.can_borrow is False
    assert check.reason == "High fines"
    assert check.borrow_limit == 3
    assert check.current_borrowings == 0
    with pytest.raises(MemberNotFound):
        circulation.verify_member("MEM-2025-0404")


def test_verify_copy(circulation, make_member, make_book):
    member = make_member()
    _, copy_ids = make_book(copies=2)
    circulation.issue(member.member_id, copy_ids[0], actor=None)

    assert circulation.verify_copy(copy_ids[0]).can_issue is False
    check = circulation.verify_copy(copy_ids[1])
    assert check.can_issue is True
    assert check.book.title == "Clean Code"
    assert check.book.shelf_location == "CS-A1"


def test_preview_return(circulation, clock, make_member, make_book):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    circulation.issue(member.member_id, copy_ids[0], actor=None)
    clock.advance(days=17)

    preview = circulation.preview_return(copy_ids[0])
    assert preview.is_late is True
    assert preview.days_late == 3
    assert preview.potential_fine == 15
    # preview changes nothing
    assert circulation.return_copy(copy_ids[0], actor=None).fine_amount == 15


def test_reconcile_repairs_drift(circulation, store, db, make_member, make_book):
    member = make_member()
    book, copy_ids = make_book(copies=3)
    other, _ = make_book(title="Refactoring", author="Martin Fowler", copies=1, batch=2)
    circulation.issue(member.member_id, copy_ids[0], actor=None)
    store.set_book_counts(book.id, 3, 3)
    damaged = store.find_copy(copy_ids[2])
    store.transition_copy(damaged.id, models.COPY_AVAILABLE, models.COPY_REMOVED)

    corrections = circulation.reconcile_counts(actor=None)

    assert [c.book_id for c in corrections] == [book.id]
    assert corrections[0].total_copies == 2
    assert corrections[0].available_copies == 1
    assert corrections[0].previous_available == 3
    refreshed = store.get_book(book.id)
    assert (refreshed.total_copies, refreshed.available_copies) == (2, 1)
    assert circulation.reconcile_counts(actor=None) == []


def test_issue_is_logged(circulation, make_member, make_book, caplog):
    member = make_member()
    _, copy_ids = make_book(copies=1)
    with caplog.at_level(logging.INFO, logger="citadel.services.circulation"):
        circulation.issue(member.member_id, copy_ids[0], actor=None)
    assert "Issued BK-2025-0001-01 as TXN-2025-000001 to MEM-2025-0001 due 2025-03-24" in caplog.messages
