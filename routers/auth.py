"""
Authentication endpoints: sign-up, sign-in with persona, sessions, password reset.
"""
import enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from database.models import Profile
from auth.dependencies import AuthContext, get_auth_context, get_db_session, require_reviewer
from core.exceptions import CampusReportsError, to_http_exception
from core.validators import normalize_register_no
from services.access_request_service import AccessRequestService
from services.audit_service import AuditService
from services.auth_service import AuthService
from services.password_reset_service import PasswordResetService
from services.role_service import AppRole, RoleService
from services.route_guard import home_screen_for
from core.logger import logger
import config


router = APIRouter(prefix="/api/auth", tags=["authentication"])

REQUEST_SUBMITTED_MESSAGE = (
    "Your request for official access has been submitted. "
    "You can sign in once an official or staff member approves it."
)
RESET_REQUESTED_MESSAGE = "If an account exists for this email, a reset code has been sent."


class Persona(str, enum.Enum):
    """Which console the user chose on the sign-in screen."""
    STUDENT = "student"
    OFFICIAL = "official"


# Request Models
class SignUpRequest(BaseModel):
    email: EmailStr
    password: str
    fullName: str
    registerNo: Optional[str] = None
    requestOfficialAccess: bool = False
    reason: Optional[str] = None


class LoginRequest(BaseModel):
    identifier: str  # Email, or registration number for students
    password: str
    persona: Persona = Persona.STUDENT


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class PasswordResetCodeRequest(BaseModel):
    email: EmailStr


class PasswordResetVerifyRequest(BaseModel):
    email: EmailStr
    code: str
    newPassword: str


class StudentLookupRequest(BaseModel):
    registerNo: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    redirectTo: str
    notice: Optional[str] = None
    user: dict


def _user_info(db: Session, user, role: AppRole) -> dict:
    profile = db.query(Profile).filter(Profile.user_id == user.id).first()
    return {
        "id": user.id,
        "email": user.email,
        "fullName": profile.full_name if profile else None,
        "registerNo": profile.register_no if profile else None,
        "role": role.value,
        "createdAt": user.created_at.isoformat(),
        "lastLogin": user.last_login.isoformat() if user.last_login else None,
    }


def _start_session(db: Session, request: Request, user, role: AppRole, notice: Optional[str] = None) -> TokenResponse:
    session = AuthService.create_session(
        db=db,
        user_id=user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    access_token, refresh_token = AuthService.issue_tokens(
        db, user, role, session,
        ip_address=request.client.host if request.client else None,
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        redirectTo=home_screen_for(role).value,
        notice=notice,
        user=_user_info(db, user, role),
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignUpRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """
    Create an account. Every account starts as a student.

    With ``requestOfficialAccess`` an access request is filed and no session
    is issued: the user stays signed out until the request is approved.
    """
    try:
        user = AuthService.register_user(
            db,
            email=payload.email,
            password=payload.password,
            full_name=payload.fullName,
            register_no=None if payload.requestOfficialAccess else payload.registerNo,
        )
    except CampusReportsError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="signup",
        user_id=user.id,
        resource_type="user",
        resource_id=str(user.id),
        details={"requestOfficialAccess": payload.requestOfficialAccess}
    )

    if payload.requestOfficialAccess:
        try:
            access_request = AccessRequestService.submit(
                db, user.id, payload.fullName, user.email, payload.reason
            )
        except CampusReportsError as e:
            raise to_http_exception(e)
        AuditService.log_from_request(
            db=db,
            request=request,
            action="access_request_submit",
            user_id=user.id,
            resource_type="access_request",
            resource_id=str(access_request.id)
        )
        return {
            "status": "request_submitted",
            "message": REQUEST_SUBMITTED_MESSAGE,
            "requestId": access_request.id,
        }

    tokens = _start_session(db, request, user, AppRole.STUDENT)
    return {"status": "signed_in", **tokens.model_dump()}


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """
    Sign in with email (or registration number) and password.

    Choosing the official persona without the official role signs the user
    out everywhere and explains why, based on their latest access request.
    """
    user = AuthService.authenticate_user(db, credentials.identifier, credentials.password)
    if not user:
        AuditService.log_from_request(
            db=db,
            request=request,
            action="login_failed",
            resource_type="user"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    role = RoleService.resolve_role(db, user.id)

    if credentials.persona == Persona.OFFICIAL and role != AppRole.OFFICIAL:
        code, message = AccessRequestService.login_denial(db, user.id)
        AuthService.sign_out(db, user.id)
        AuditService.log_from_request(
            db=db,
            request=request,
            action="login_denied",
            user_id=user.id,
            resource_type="user",
            resource_id=str(user.id),
            details={"persona": credentials.persona.value, "role": role.value, "reason": code}
        )
        logger.warning(f"Official sign-in refused for user {user.id}: {code}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": code, "message": message}
        )

    if role == AppRole.NONE:
        AuthService.sign_out(db, user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unable to verify access. Please contact the administrator."
        )

    notice = None
    if credentials.persona == Persona.STUDENT and role != AppRole.STUDENT:
        notice = f"Signed in with your {role.value} account."

    response = _start_session(db, request, user, role, notice=notice)
    AuditService.log_from_request(
        db=db,
        request=request,
        action="login",
        user_id=user.id,
        resource_type="user",
        resource_id=str(user.id),
        details={"persona": credentials.persona.value, "role": role.value}
    )
    return response


@router.post("/refresh")
async def refresh_token(
    payload: RefreshTokenRequest,
    db: Session = Depends(get_db_session)
):
    """Exchange a refresh token for a new access token."""
    result = AuthService.refresh_access_token(db, payload.refresh_token)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )
    access_token, _ = result
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


@router.post("/logout")
async def logout(
    request: Request,
    everywhere: bool = False,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session)
):
    """Terminate this session, or every session with ``?everywhere=true``."""
    revoked = AuthService.sign_out(
        db, context.user.id, session_id=None if everywhere else context.session_id
    )
    AuditService.log_from_request(
        db=db,
        request=request,
        action="logout",
        user_id=context.user.id,
        resource_type="user",
        resource_id=str(context.user.id),
        details={"sessions": revoked}
    )
    return {"success": True, "sessionsRevoked": revoked}


@router.get("/me")
async def get_current_user_info(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db_session)
):
    """Current identity, profile and resolved role."""
    info = _user_info(db, context.user, context.role)
    latest = AccessRequestService.latest_for_user(db, context.user.id)
    info["accessRequestStatus"] = latest.status.value if latest else None
    info["homeScreen"] = home_screen_for(context.role).value
    return info


@router.post("/password-reset/request")
async def request_password_reset(
    payload: PasswordResetCodeRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """
    Email a 6-digit reset code valid for 10 minutes.
    The response is the same whether or not the email is registered.
    """
    try:
        await PasswordResetService.request_code(db, payload.email, getattr(request.app.state, "mail", None))
    except CampusReportsError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="password_reset_request",
        resource_type="password_reset"
    )
    return {"success": True, "message": RESET_REQUESTED_MESSAGE}


@router.post("/password-reset/verify")
async def verify_password_reset(
    payload: PasswordResetVerifyRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """Check the code and set the new password. Signs the user out everywhere."""
    try:
        user = PasswordResetService.verify_and_reset(db, payload.email, payload.code, payload.newPassword)
    except CampusReportsError as e:
        raise to_http_exception(e)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="password_reset",
        user_id=user.id,
        resource_type="user",
        resource_id=str(user.id)
    )
    return {"success": True, "message": "Password updated. Please sign in with your new password."}


@router.post("/student-lookup")
async def student_lookup(
    payload: StudentLookupRequest,
    context: AuthContext = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """Find a student's email by registration number (officials and staff)."""
    try:
        register_no = normalize_register_no(payload.registerNo)
    except CampusReportsError as e:
        raise to_http_exception(e)

    profile = db.query(Profile).filter(Profile.register_no == register_no).first()
    return {
        "registerNo": register_no,
        "email": profile.email if profile else None,
        "fullName": profile.full_name if profile else None,
    }
