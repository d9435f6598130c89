from fastapi import APIRouter, Depends, Request, Response

from citadel.api.deps import client_ip, get_members
from citadel.core.config import settings
from citadel.schemas import schemas
from citadel.services.members import MemberService

router = APIRouter(prefix="/auth")


@router.post("/signup", response_model=schemas.SignupResponse)
def signup(signup_in: schemas.SignupRequest, request: Request,
           members: MemberService = Depends(get_members)):
    result = members.signup(signup_in, ip_address=client_ip(request))
    return {"success": True, "message": "Account created successfully!", "data": result}


@router.post("/login", response_model=schemas.LoginResponse)
def login(login_in: schemas.LoginRequest, response: Response,
          members: MemberService = Depends(get_members)):
    result, token = members.login(login_in.email, login_in.password)
    response.set_cookie(
        settings.cookie_name,
        token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.jwt_expiration_minutes * 60,
        path="/",
    )
    return {"success": True, "data": result}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(settings.cookie_name, path="/")
    return {"success": True, "message": "Logged out"}
