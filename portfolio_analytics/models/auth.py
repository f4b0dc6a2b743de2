from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class TokenScope(str, Enum):
    """Which admin surface a token opens. Scopes are not interchangeable."""
    analytics = "analytics"
    content = "content"


class AuthUser(BaseModel):
    email: str
    role: Literal["admin"] = "admin"


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    success: bool = True
    user: AuthUser
    token: str


class AdminPasswordRequest(BaseModel):
    password: str
