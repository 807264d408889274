"""
Request/response shapes at the HTTP boundary.

Clients across versions send different field names (nombre/name,
accessCode/code, sessionId/session_id); they are accepted here and never
reach the services. Responses always use the canonical user shape below.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

from app.models import Account


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, validation_alias=AliasChoices("name", "nombre"))
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, validation_alias=AliasChoices("phone", "telefono"))


class CheckoutResponse(BaseModel):
    url: Optional[str] = None
    id: str


class VerifyPaymentRequest(BaseModel):
    session_id: Optional[str] = Field(None, validation_alias=AliasChoices("session_id", "sessionId"))


class LoginRequest(BaseModel):
    email: Optional[EmailStr] = None
    code: Optional[str] = Field(None, validation_alias=AliasChoices("code", "accessCode", "access_code"))


class RenewRequest(BaseModel):
    email: Optional[EmailStr] = None
    stripe_session_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("stripe_session_id", "session_id", "sessionId")
    )


class ResendRequest(BaseModel):
    email: Optional[EmailStr] = None


class UserOut(BaseModel):
    name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    status: str
    expiresAt: datetime


class UserWithCodeOut(UserOut):
    accessCode: str


class SessionResponse(BaseModel):
    success: bool = True
    token: str
    tokenExpiresAt: datetime
    user: UserOut


class PaymentSessionResponse(BaseModel):
    success: bool = True
    token: str
    tokenExpiresAt: datetime
    isNewCredential: bool
    renewed: bool = False
    user: UserWithCodeOut


class AdminUserOut(UserOut):
    createdAt: datetime
    lastPaymentAt: Optional[datetime] = None


class AdminUsersResponse(BaseModel):
    total: int
    users: List[AdminUserOut]


class AdminStatsResponse(BaseModel):
    total_accounts: int
    active_accounts: int
    expired_accounts: int
    disabled_accounts: int
    expiring_soon: int
    new_today: int
    revenue: Dict[str, Dict[str, object]]


def user_out(account: Account) -> UserOut:
    return UserOut(
        name=account.name,
        email=account.email,
        phone=account.phone,
        status=account.status,
        expiresAt=account.expires_at,
    )


def user_with_code_out(account: Account) -> UserWithCodeOut:
    return UserWithCodeOut(**user_out(account).model_dump(), accessCode=account.access_code)


def admin_user_out(account: Account) -> AdminUserOut:
    return AdminUserOut(
        **user_out(account).model_dump(),
        createdAt=account.created_at,
        lastPaymentAt=account.last_payment_at,
    )
