"""
Request guards.

`get_current_user` verifies the bearer token with Firebase and yields a
`Principal`. `require_role(role)` stacks on top of it, loads the stored user
and yields a new `Principal` carrying the role. The role check is an exact
match: an admin is not implicitly a creator.
"""
import logging
from functools import lru_cache
from typing import Callable, Optional

import firebase_admin
from fastapi import Depends, Header, HTTPException
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError
from pydantic import BaseModel
from pymongo.database import Database

from config import get_settings
from database import USERS, get_db

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], dict]


class Principal(BaseModel):
    uid: str
    email: Optional[str] = None
    role: Optional[str] = None


def _firebase_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        path = get_settings().firebase_credentials
        cred = credentials.Certificate(path) if path else credentials.ApplicationDefault()
        return firebase_admin.initialize_app(cred)


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    app = _firebase_app()

    def verify(token: str) -> dict:
        return firebase_auth.verify_id_token(token, app=app)

    return verify


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    verify: TokenVerifier = Depends(get_token_verifier),
) -> Principal:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized access")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized access")

    try:
        decoded = verify(token)
    except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.UserDisabledError) as e:
        # expired and revoked tokens are InvalidIdTokenError subclasses
        logger.warning("token verification failed", extra={"error": str(e)})
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    except FirebaseError:
        logger.exception("identity provider unavailable")
        raise HTTPException(status_code=500, detail="Identity provider error")

    return Principal(uid=decoded["uid"], email=decoded.get("email"))


def require_role(role: str):
    def guard(
        principal: Principal = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Principal:
        user = db[USERS].find_one({"uid": principal.uid}, {"role": 1})
        if not user or user.get("role") != role:
            raise HTTPException(status_code=403, detail="Forbidden: Insufficient role")
        return principal.model_copy(update={"role": user["role"]})

    return guard


def require_self(uid: str, principal: Principal) -> None:
    if uid != principal.uid:
        raise HTTPException(status_code=403, detail="Forbidden access")
