# app/schemas/session.py
from enum import Enum
from pydantic import BaseModel


class Role(str, Enum):
    ADMIN = "admin"
    VIEWER = "viewer"


class UserSession(BaseModel):
    username: str
    role: Role


class LoginRequest(BaseModel):
    username: str
    password: str
