from typing import Optional
from pydantic import BaseModel
from datetime import datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthSession(BaseModel):
    user_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class CurrentUser(BaseModel):
    user_id: str
    access_token: str
    email: Optional[str] = None


class UserRead(BaseModel):
    user_id: str
    email: Optional[str] = None
