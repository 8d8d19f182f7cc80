from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field

from ophthexam.core.enums import ProfileStatus


class DevLoginRequest(BaseModel):
    email: EmailStr
    full_name: str | None = None
    crm: str | None = Field(default=None, max_length=32)
    crm_uf: str | None = Field(default=None, min_length=2, max_length=2)


class DevLoginResponse(BaseModel):
    user_id: str
    email: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    profile_status: str
    is_admin: bool


class ProfileRead(BaseModel):
    id: str
    user_id: str
    full_name: str
    status: str
    crm: str
    crm_uf: str
    clinic_name: str | None = None


class SessionRead(BaseModel):
    authenticated: bool
    user_id: str
    email: str
    is_admin: bool
    profile: ProfileRead | None


class GuardRead(BaseModel):
    render: bool
    redirect_to: str | None
    from_path: str | None


class LogoutResponse(BaseModel):
    ok: bool
    message: str


class ProfileStatusUpdate(BaseModel):
    status: ProfileStatus
