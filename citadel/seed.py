"""Bootstrap staff accounts and optional demo data.

    CITADEL_ADMIN_EMAIL=admin@nitj.ac.in CITADEL_ADMIN_PASSWORD=... python -m citadel.seed [--demo]

Staff cannot sign themselves up, so the first Admin has to come from here.
"""
import logging
import sys

from citadel.core.config import settings
from citadel.core.database import Base, SessionLocal, engine
from citadel.models import models
from citadel.schemas import schemas
from citadel.services.catalog import CatalogService
from citadel.services.members import MemberService
from citadel.services.store import CatalogStore

logger = logging.getLogger(__name__)

DEMO_CATEGORIES = ["Computer Science", "Mathematics", "Physics", "Literature"]

DEMO_BOOKS = [
    dict(title="Introduction to Algorithms", author="Thomas H. Cormen", isbn="9780262046305",
         publisher="MIT Press", publication_year=2022, category="Computer Science",
         number_of_copies=3, shelf_location="CS-A1"),
    dict(title="Linear Algebra Done Right", author="Sheldon Axler", isbn="9783031410253",
         publisher="Springer", publication_year=2024, category="Mathematics",
         number_of_copies=2, shelf_location="MA-B2"),
    dict(title="The Feynman Lectures on Physics", author="Richard P. Feynman", isbn="9780465023820",
         publisher="Basic Books", publication_year=2011, category="Physics",
         number_of_copies=1, shelf_location="PH-C3"),
]


def seed_staff(store: CatalogStore) -> None:
    if not settings.admin_email or not settings.admin_password:
        logger.info("CITADEL_ADMIN_EMAIL/CITADEL_ADMIN_PASSWORD not set; skipping admin account")
        return
    if store.find_user_by_email(settings.admin_email.lower()):
        logger.info("Admin %s already exists", settings.admin_email)
        return
    admin = MemberService(store).create_staff("Administrator", settings.admin_email,
                                              settings.admin_password, models.ROLE_ADMIN)
    logger.info("Created admin %s (%s)", admin.email, admin.member_id)


def seed_demo_data(store: CatalogStore) -> None:
    categories = {c.name: c.id for c in store.list_categories()}
    for name in DEMO_CATEGORIES:
        if name not in categories:
            categories[name] = store.insert_category(name).id

    catalog = CatalogService(store)
    for spec in DEMO_BOOKS:
        if store.find_book_by_isbn(spec["isbn"]):
            continue
        fields = dict(spec)
        fields["category_id"] = categories[fields.pop("category")]
        added = catalog.add_book(schemas.AddBookRequest(**fields), actor=None, ip_address="seed")
        logger.info("Added %s: %s", added.title, ", ".join(added.copy_ids))


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(level=settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        store = CatalogStore(db)
        seed_staff(store)
        if "--demo" in argv:
            seed_demo_data(store)
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
