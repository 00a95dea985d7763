# upload_api/auth.py
import os
from typing import Optional

from fastapi import Header, HTTPException

# Google ID Token 驗證
from google.oauth2 import id_token as g_id_token
from google.auth.transport import requests as g_requests

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")


class AuthUser(dict):
    @property
    def sub(self) -> str: return self.get("sub")
    @property
    def email(self) -> str: return self.get("email", "")
    @property
    def name(self) -> str: return self.get("name", "")


def verify_google_id_token(idt: str) -> AuthUser:
    if not GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=500, detail="server missing GOOGLE_CLIENT_ID")
    info = g_id_token.verify_oauth2_token(idt, g_requests.Request(), GOOGLE_CLIENT_ID)
    return AuthUser(info)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def get_current_user(
    authorization: str = Header(None),
    x_id_token: Optional[str] = Header(None),
) -> AuthUser:
    raw = bearer_token(authorization) or x_id_token
    if not raw:
        raise HTTPException(status_code=401, detail="Couldn't find JWT")

    try:
        user = verify_google_id_token(raw)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Couldn't validate JWT: {e}")
    if not user.sub:
        raise HTTPException(status_code=401, detail="token has no subject")
    return user
