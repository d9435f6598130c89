from fastapi import APIRouter, Depends, Query, Request
from typing import Optional

from citadel.api.deps import (
    client_ip, get_catalog, get_circulation, get_current_user, get_members, require_role,
)
from citadel.core.security import SessionUser
from citadel.models.models import ROLE_ADMIN, STAFF_ROLES
from citadel.schemas import schemas
from citadel.services.catalog import CatalogService
from citadel.services.circulation import CirculationService
from citadel.services.errors import ValidationFailed
from citadel.services.members import MemberService

router = APIRouter()

staff_only = require_role(*STAFF_ROLES)
admin_only = require_role(ROLE_ADMIN)


# ---- catalog

@router.get("/books/search", response_model=schemas.SearchResponse)
def search_books(q: Optional[str] = Query(None, description="title or author substring"),
                 author: Optional[str] = None,
                 isbn: Optional[str] = None,
                 category: Optional[str] = None,
                 available_only: bool = False,
                 user: SessionUser = Depends(get_current_user),
                 catalog: CatalogService = Depends(get_catalog)):
    results = catalog.search(
        q=(q or "").strip() or None,
        author=(author or "").strip() or None,
        isbn=(isbn or "").strip() or None,
        category=(category or "").strip() or None,
        available_only=available_only,
    )
    return {"success": True, "data": results, "message": None if results else "No books found."}


@router.get("/books/categories", response_model=schemas.CategoriesResponse)
def list_categories(user: SessionUser = Depends(staff_only),
                    catalog: CatalogService = Depends(get_catalog)):
    categories = [schemas.CategoryOut.model_validate(c) for c in catalog.list_categories()]
    return {"success": True, "data": categories}


@router.post("/books/", response_model=schemas.AddBookResponse)
def add_book(book_in: schemas.AddBookRequest, request: Request,
             user: SessionUser = Depends(staff_only),
             catalog: CatalogService = Depends(get_catalog)):
    added = catalog.add_book(book_in, actor=user.id, ip_address=client_ip(request))
    count = len(added.copy_ids)
    noun = "copy" if count == 1 else "copies"
    return {
        "success": True,
        "message": f'Successfully added "{added.title}" with {count} {noun}',
        "data": added,
    }


# ---- circulation

@router.post("/books/issue", response_model=schemas.IssueResponse)
def issue_book(issue_in: schemas.IssueRequest, request: Request,
               user: SessionUser = Depends(staff_only),
               circulation: CirculationService = Depends(get_circulation)):
    receipt = circulation.issue(issue_in.member_id, issue_in.book_copy_id,
                                actor=user.id, ip_address=client_ip(request))
    return {"success": True, "message": "Book issued successfully", "data": receipt}


@router.get("/books/issue", response_model=schemas.IssueCheckResponse)
def verify_before_issue(type: Optional[str] = None, query: Optional[str] = None,
                        user: SessionUser = Depends(staff_only),
                        circulation: CirculationService = Depends(get_circulation)):
    if not type or not query:
        raise ValidationFailed("Type and query are required")
    if type == "member":
        check = circulation.verify_member(query)
    elif type == "book":
        check = circulation.verify_copy(query)
    else:
        raise ValidationFailed('Invalid type. Use "member" or "book"')
    return {"success": True, "data": check}


@router.post("/books/return", response_model=schemas.ReturnResponse)
def return_book(return_in: schemas.ReturnRequest, request: Request,
                user: SessionUser = Depends(staff_only),
                circulation: CirculationService = Depends(get_circulation)):
    receipt = circulation.return_copy(return_in.book_copy_id, actor=user.id, ip_address=client_ip(request))
    if receipt.is_late:
        message = (f"Book returned successfully. Late by {receipt.days_late} day(s). "
                   f"Fine: {receipt.fine_amount}")
    else:
        message = "Book returned successfully. No fine."
    return {"success": True, "message": message, "data": receipt}


@router.get("/books/return", response_model=schemas.ReturnPreviewResponse)
def check_before_return(book_copy_id: Optional[str] = Query(None, alias="bookCopyId"),
                        user: SessionUser = Depends(staff_only),
                        circulation: CirculationService = Depends(get_circulation)):
    return {"success": True, "data": circulation.preview_return(book_copy_id)}


# ---- members

@router.get("/member/dashboard", response_model=schemas.DashboardResponse)
def member_dashboard(user: SessionUser = Depends(get_current_user),
                     members: MemberService = Depends(get_members)):
    return {"success": True, "data": members.dashboard(user.id)}


# ---- maintenance

@router.post("/admin/reconcile", response_model=schemas.ReconcileResponse)
def reconcile_counts(request: Request,
                     user: SessionUser = Depends(admin_only),
                     circulation: CirculationService = Depends(get_circulation)):
    corrections = circulation.reconcile_counts(actor=user.id, ip_address=client_ip(request))
    return {
        "success": True,
        "message": f"Corrected {len(corrections)} book(s)",
        "data": corrections,
    }
