"""Borrowing rules.

Pure functions over member and copy snapshots. Nothing here touches the
database; the circulation service fetches what these rules need and acts on
the answers.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from citadel.models.models import COPY_AVAILABLE, ROLE_FACULTY

FACULTY_BORROW_LIMIT = 5
DEFAULT_BORROW_LIMIT = 3
FACULTY_LOAN_DAYS = 30
DEFAULT_LOAN_DAYS = 14
FINE_CEILING = 500
FINE_PER_DAY = 5

REASON_HIGH_FINES = "High fines"
REASON_INACTIVE = "Inactive account"
REASON_BLOCKED = "Blocked account"
REASON_LIMIT = "Borrowing limit reached"

ONE_DAY = timedelta(days=1)


@dataclass
class Eligibility:
    can_borrow: bool
    reason: Optional[str]
    borrow_limit: int
    current_borrowings: int

    @property
    def available_slots(self) -> int:
        return max(self.borrow_limit - self.current_borrowings, 0)


@dataclass
class LateFine:
    is_late: bool
    days_late: int
    amount: int


def borrow_limit(user_type: Optional[str]) -> int:
    return FACULTY_BORROW_LIMIT if user_type == ROLE_FACULTY else DEFAULT_BORROW_LIMIT


def loan_period_days(user_type: Optional[str]) -> int:
    return FACULTY_LOAN_DAYS if user_type == ROLE_FACULTY else DEFAULT_LOAN_DAYS


def loan_period_label(user_type: Optional[str]) -> str:
    return f"{loan_period_days(user_type)} days"


def due_date_for(user_type: Optional[str], issue_date: date) -> date:
    return issue_date + timedelta(days=loan_period_days(user_type))


def check_member(member, current_borrowings: int) -> Eligibility:
    """Decide whether ``member`` may take another copy.

    Only the first failing rule is reported, in this order: fine ceiling,
    inactive, blocked, borrowing limit.
    """
    limit = borrow_limit(member.user_type)
    reason = None
    if (member.total_fine or 0) > FINE_CEILING:
        reason = REASON_HIGH_FINES
    elif not member.is_active:
        reason = REASON_INACTIVE
    elif member.is_blocked:
        reason = REASON_BLOCKED
    elif current_borrowings >= limit:
        reason = REASON_LIMIT
    return Eligibility(
        can_borrow=reason is None,
        reason=reason,
        borrow_limit=limit,
        current_borrowings=current_borrowings,
    )


def is_copy_issuable(copy) -> bool:
    return copy is not None and copy.status == COPY_AVAILABLE


def can_issue(member, current_borrowings: int, copy) -> Eligibility:
    eligibility = check_member(member, current_borrowings)
    if eligibility.can_borrow and not is_copy_issuable(copy):
        eligibility.can_borrow = False
    return eligibility


def violation_message(member, eligibility: Eligibility) -> str:
    if eligibility.reason == REASON_HIGH_FINES:
        return (f"Member has outstanding fines of {member.total_fine}. "
                f"Cannot issue books until fines are below {FINE_CEILING}.")
    if eligibility.reason == REASON_INACTIVE:
        return "Member account is inactive"
    if eligibility.reason == REASON_BLOCKED:
        return "Member account is blocked"
    return (f"Member has reached borrowing limit "
            f"({eligibility.borrow_limit} books for {member.user_type or 'member'})")


def due_instant(due: date) -> datetime:
    # a copy may be returned at any time on its due date
    return datetime.combine(due + ONE_DAY, time.min)


def late_fine(due: date, returned_at: datetime) -> LateFine:
    overdue_by = returned_at - due_instant(due)
    if overdue_by <= timedelta(0):
        return LateFine(is_late=False, days_late=0, amount=0)
    days = math.ceil(overdue_by / ONE_DAY)
    return LateFine(is_late=True, days_late=days, amount=days * FINE_PER_DAY)


def days_until_due(due: date, today: date) -> int:
    return (due - today).days
