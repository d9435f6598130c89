import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, List, Optional

from citadel.core.config import settings
from citadel.models import models
from citadel.schemas import schemas
from citadel.services import audit
from citadel.services.audit import AuditRecorder
from citadel.services.errors import DuplicateIdentifier, StoreError, ValidationFailed
from citadel.services.identifiers import IdentifierGenerator
from citadel.services.store import CatalogStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MIN_PUBLICATION_YEAR = 1900
MAX_COPIES = 100


class CatalogService:
    def __init__(self, store: CatalogStore, clock: Callable[[], datetime] = datetime.utcnow,
                 id_retries: int = None):
        self.store = store
        self.clock = clock
        self.ids = IdentifierGenerator(store, clock)
        self.audit = AuditRecorder(store)
        self.id_retries = id_retries if id_retries is not None else settings.id_retries

    def _validate(self, book_in: schemas.AddBookRequest) -> None:
        title = (book_in.title or "").strip()
        if not title:
            raise ValidationFailed("Book title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationFailed(f"Title must be {MAX_TITLE_LENGTH} characters or less")
        if not (book_in.author or "").strip():
            raise ValidationFailed("Author name is required")
        if not (book_in.publisher or "").strip():
            raise ValidationFailed("Publisher is required")
        current_year = self.clock().year
        year = book_in.publication_year
        if not year or year < MIN_PUBLICATION_YEAR or year > current_year:
            raise ValidationFailed(
                f"Publication year must be between {MIN_PUBLICATION_YEAR} and {current_year}")
        copies = book_in.number_of_copies
        if not copies or copies < 1 or copies > MAX_COPIES:
            raise ValidationFailed(f"Number of copies must be between 1 and {MAX_COPIES}")
        if book_in.isbn and len(book_in.isbn) not in (10, 13):
            raise ValidationFailed("ISBN must be 10 or 13 digits")

    def add_book(self, book_in: schemas.AddBookRequest, actor: Optional[int],
                 ip_address: Optional[str] = None) -> schemas.AddedBook:
        self._validate(book_in)
        if book_in.isbn and self.store.find_book_by_isbn(book_in.isbn):
            raise ValidationFailed("A book with this ISBN already exists")
        if book_in.category_id and self.store.get_category(book_in.category_id) is None:
            raise ValidationFailed("Invalid category selected")

        count = book_in.number_of_copies
        shelf = (book_in.shelf_location or "").strip() or None
        book = self.store.insert_book(
            title=book_in.title.strip(),
            author=book_in.author.strip(),
            isbn=book_in.isbn or None,
            publisher=book_in.publisher.strip(),
            publication_year=book_in.publication_year,
            category_id=book_in.category_id or None,
            total_copies=count,
            available_copies=count,
            shelf_location=shelf,
        )
        book_pk, title = book.id, book.title

        try:
            copy_ids = self._create_copies(book_pk, count)
        except StoreError:
            logger.exception("Copies for book %s could not be created; removing the book", book_pk)
            try:
                self.store.delete_book(book_pk)
            except StoreError:
                logger.exception("Rollback of book %s failed", book_pk)
            raise StoreError("Failed to create book copies")

        noun = "copy" if count == 1 else "copies"
        self.audit.record(actor, audit.ADD_BOOK, f"Added book: {title} ({count} {noun})", ip_address)
        return schemas.AddedBook(book_id=book_pk, title=title, copy_ids=copy_ids)

    def _create_copies(self, book_pk: int, count: int) -> List[str]:
        attempts = max(self.id_retries, 1)
        for attempt in range(1, attempts + 1):
            copy_ids = self.ids.copy_ids(count)
            try:
                self.store.insert_copies(
                    dict(book_id=book_pk, copy_number=n, book_copy_id=copy_id, status=models.COPY_AVAILABLE)
                    for n, copy_id in enumerate(copy_ids, start=1)
                )
                return copy_ids
            except DuplicateIdentifier:
                logger.warning("Copy batch %s already taken (attempt %d/%d)", copy_ids[0], attempt, attempts)
        raise StoreError("Failed to create book copies")

    def list_categories(self) -> List[models.Category]:
        return self.store.list_categories()

    def search(self, q: Optional[str] = None, author: Optional[str] = None, isbn: Optional[str] = None,
               category: Optional[str] = None, available_only: bool = False) -> List[schemas.BookSearchResult]:
        books = self.store.search_books(q=q, author=author, isbn=isbn, category=category)
        if not books:
            return []

        stats = defaultdict(lambda: {"total": 0, "available": 0})
        for book_pk, status in self.store.copy_statuses([b.id for b in books]):
            stats[book_pk]["total"] += 1
            if status == models.COPY_AVAILABLE:
                stats[book_pk]["available"] += 1

        results = [
            schemas.BookSearchResult(
                book=schemas.BookOut.model_validate(book),
                total_copies=stats[book.id]["total"],
                available_copies=stats[book.id]["available"],
                shelf_location=book.shelf_location,
            )
            for book in books
        ]
        if available_only:
            results = [r for r in results if r.available_copies > 0]
        return results
