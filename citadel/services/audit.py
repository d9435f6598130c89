import logging
from typing import Optional

from citadel.services.errors import StoreError
from citadel.services.store import CatalogStore

logger = logging.getLogger(__name__)

ISSUE_BOOK = "ISSUE_BOOK"
RETURN_BOOK = "RETURN_BOOK"
ADD_BOOK = "ADD_BOOK"
REGISTER_MEMBER = "REGISTER_MEMBER"
RECONCILE_COUNTS = "RECONCILE_COUNTS"


class AuditRecorder:
    """Appends a readable line for every mutating action.

    Audit writes never fail the action they describe.
    """

    def __init__(self, store: CatalogStore):
        self.store = store

    def record(self, actor: Optional[int], action: str, description: str,
               ip_address: Optional[str] = None) -> bool:
        try:
            self.store.insert_audit(
                user_id=actor,
                action=action,
                description=description,
                ip_address=ip_address or "unknown",
            )
        except StoreError:
            logger.exception("Audit log write failed for %s: %s", action, description)
            return False
        logger.info("%s by user=%s: %s", action, actor, description)
        return True
