"""Error taxonomy for the library services.

Every failure a caller can see is a ``LibraryError``. Each subclass carries a
machine-checkable ``kind`` and the HTTP status the API answers with; the
message is shown to the user verbatim.
"""


class LibraryError(Exception):
    kind = "LibraryError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# validation

class ValidationFailed(LibraryError):
    kind = "ValidationError"
    status_code = 400


# not found

class NotFound(LibraryError):
    kind = "NotFound"
    status_code = 404


class MemberNotFound(NotFound):
    kind = "MemberNotFound"

    def __init__(self, message: str = "Member not found"):
        super().__init__(message)


class CopyNotFound(NotFound):
    kind = "CopyNotFound"

    def __init__(self, message: str = "Book copy not found"):
        super().__init__(message)


class NoActiveLoan(NotFound):
    kind = "NoActiveLoan"

    def __init__(self, message: str = "No active transaction found for this book copy. Book may not be issued."):
        super().__init__(message)


# policy

class PolicyViolation(LibraryError):
    kind = "PolicyViolation"
    status_code = 400

    def __init__(self, reason: str, message: str = None):
        super().__init__(message or reason)
        self.reason = reason


class CopyNotAvailable(LibraryError):
    kind = "CopyNotAvailable"
    status_code = 400

    def __init__(self, status: str):
        super().__init__(f"Book copy is {status.lower()}. Cannot issue.")
        self.status = status


# store

class StoreError(LibraryError):
    kind = "StoreError"
    status_code = 500


class DuplicateIdentifier(StoreError):
    kind = "DuplicateIdentifier"


class TransactionFailed(LibraryError):
    kind = "TransactionFailed"
    status_code = 500


class UpdateFailed(LibraryError):
    kind = "UpdateFailed"
    status_code = 500


# integrity

class DataIntegrityError(LibraryError):
    kind = "DataIntegrityError"
    status_code = 500

    def __init__(self, message: str = "Failed to fetch transaction details"):
        super().__init__(message)


# authorization gate

class Unauthorized(LibraryError):
    kind = "Unauthorized"
    status_code = 401

    def __init__(self, message: str = "Unauthorized. Please log in."):
        super().__init__(message)


class Forbidden(LibraryError):
    kind = "Forbidden"
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)
