from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from typing import List, Optional, Union


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- requests

class SignupRequest(CamelModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    user_type: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AddBookRequest(CamelModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    category_id: Optional[int] = None
    number_of_copies: Optional[int] = None
    shelf_location: Optional[str] = None

    @field_validator('isbn')
    @classmethod
    def strip_isbn_separators(cls, v):
        if v is None:
            return v
        return v.replace('-', '').replace(' ', '') or None


class IssueRequest(CamelModel):
    member_id: Optional[str] = None
    book_copy_id: Optional[str] = None


class ReturnRequest(CamelModel):
    book_copy_id: Optional[str] = None


# ---- catalog

class CategoryOut(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


class BookOut(BaseModel):
    id: int
    title: str
    author: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    category_id: Optional[int] = None
    shelf_location: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BookSearchResult(BaseModel):
    book: BookOut
    total_copies: int
    available_copies: int
    shelf_location: Optional[str] = None


class AddedBook(CamelModel):
    book_id: int
    title: str
    copy_ids: List[str]


# ---- circulation receipts

class IssueReceipt(CamelModel):
    transaction_id: str
    book_title: str
    book_author: str
    member_name: str
    member_id: str
    issue_date: date
    due_date: date
    loan_period_label: str


class ReturnReceipt(CamelModel):
    transaction_id: str
    book_title: str
    book_author: str
    member_name: str
    member_id: str
    issue_date: date
    due_date: date
    return_date: date
    is_late: bool
    days_late: int
    fine_amount: int
    status: str


class ReturnPreview(CamelModel):
    transaction_id: str
    book_title: str
    book_author: str
    member_name: str
    member_id: str
    user_type: Optional[str] = None
    issue_date: date
    due_date: date
    is_late: bool
    days_late: int
    potential_fine: int


class MemberCheck(CamelModel):
    member_id: str
    full_name: str
    user_type: Optional[str] = None
    total_fine: int
    is_active: bool
    is_blocked: bool
    current_borrowings: int
    borrow_limit: int
    can_borrow: bool
    reason: Optional[str] = None


class CopyBookInfo(CamelModel):
    title: str
    author: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    shelf_location: Optional[str] = None


class CopyCheck(CamelModel):
    book_copy_id: str
    status: str
    book: Optional[CopyBookInfo] = None
    can_issue: bool


# ---- members

class SignupResult(CamelModel):
    member_id: str


class LoginResult(CamelModel):
    token: str
    role: str
    email: str
    member_id: str


class BorrowedBook(CamelModel):
    transaction_id: str
    book_title: str
    book_author: str
    book_copy_id: str
    issue_date: date
    due_date: date
    status: str
    days_until_due: int
    is_overdue: bool


class DashboardStats(CamelModel):
    books_borrowed: int
    due_in_next7_days: int = Field(alias="dueInNext7Days")
    total_fines: int
    borrow_limit: int
    available_slots: int


class MemberInfo(CamelModel):
    member_id: str
    full_name: str
    user_type: Optional[str] = None
    total_fine: int


class Dashboard(CamelModel):
    stats: DashboardStats
    borrowed_books: List[BorrowedBook]
    user_info: MemberInfo


# ---- maintenance

class CountCorrection(CamelModel):
    book_id: int
    title: str
    total_copies: int
    available_copies: int
    previous_total: int
    previous_available: int


# ---- envelopes

class Envelope(BaseModel):
    success: bool = True
    message: Optional[str] = None


class IssueResponse(Envelope):
    data: IssueReceipt


class IssueCheckResponse(Envelope):
    data: Union[MemberCheck, CopyCheck]


class ReturnResponse(Envelope):
    data: ReturnReceipt


class ReturnPreviewResponse(Envelope):
    data: ReturnPreview


class AddBookResponse(Envelope):
    data: AddedBook


class SearchResponse(Envelope):
    data: List[BookSearchResult]


class CategoriesResponse(Envelope):
    data: List[CategoryOut]


class SignupResponse(Envelope):
    data: SignupResult


class LoginResponse(Envelope):
    data: LoginResult


class DashboardResponse(Envelope):
    data: Dashboard


class ReconcileResponse(Envelope):
    data: List[CountCorrection]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    kind: str
