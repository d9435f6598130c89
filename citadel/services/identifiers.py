"""Year-scoped human-readable identifiers.

    MEM-2025-0001       member
    BK-2025-0007-03     third copy of the seventh batch of titles added in 2025
    TXN-2025-000042     loan

The next sequence number is derived from the highest identifier already in
the store for the current year, so numbering restarts every January. Two
writers allocating at the same moment can derive the same value; the unique
constraints on the identifier columns turn that into ``DuplicateIdentifier``
for the caller to retry.
"""
import re
from datetime import datetime
from typing import Callable

from citadel.models import models
from citadel.services.store import CatalogStore

MEMBER_PREFIX = "MEM"
COPY_PREFIX = "BK"
TRANSACTION_PREFIX = "TXN"

_MEMBER_SEQ = re.compile(r"^MEM-\d+-(\d+)")
_COPY_SEQ = re.compile(r"^BK-\d+-(\d+)-")
_TRANSACTION_SEQ = re.compile(r"^TXN-\d+-(\d+)")


def next_sequence(latest, pattern) -> int:
    if not latest:
        return 1
    match = pattern.match(latest)
    if not match:
        return 1
    return int(match.group(1)) + 1


def format_member_id(year: int, seq: int) -> str:
    return f"{MEMBER_PREFIX}-{year}-{seq:04d}"


def format_copy_number(copy_number: int) -> str:
    return f"{copy_number:02d}"


def format_copy_id(year: int, batch: int, copy_number: int) -> str:
    return f"{COPY_PREFIX}-{year}-{batch:04d}-{format_copy_number(copy_number)}"


def format_transaction_id(year: int, seq: int) -> str:
    return f"{TRANSACTION_PREFIX}-{year}-{seq:06d}"


class IdentifierGenerator:
    def __init__(self, store: CatalogStore, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.clock = clock

    def _year(self) -> int:
        return self.clock().year

    def next_member_id(self) -> str:
        year = self._year()
        latest = self.store.latest_identifier(models.User.member_id, f"{MEMBER_PREFIX}-{year}-")
        return format_member_id(year, next_sequence(latest, _MEMBER_SEQ))

    def next_copy_batch(self, year: int) -> int:
        # Copy numbers can outgrow their two-digit padding (copy 100), so
        # only each batch's first copy is compared.
        latest = self.store.latest_identifier(models.BookCopy.book_copy_id, f"{COPY_PREFIX}-{year}-",
                                              suffix="-" + format_copy_number(1))
        return next_sequence(latest, _COPY_SEQ)

    def copy_ids(self, count: int):
        """Identifiers for ``count`` copies added together as one batch."""
        year = self._year()
        batch = self.next_copy_batch(year)
        return [format_copy_id(year, batch, n) for n in range(1, count + 1)]

    def next_transaction_id(self) -> str:
        year = self._year()
        latest = self.store.latest_identifier(
            models.Transaction.transaction_id, f"{TRANSACTION_PREFIX}-{year}-")
        return format_transaction_id(year, next_sequence(latest, _TRANSACTION_SEQ))
