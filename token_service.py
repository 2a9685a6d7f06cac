"""
Access/refresh token handling.

Access tokens are short lived and never stored. Refresh tokens are persisted in
the "refresh_token" collection and rotated on every use: ``rotate`` deletes
the stored record before issuing a new pair, so each refresh token is spent
at most once even when two requests present it together.
"""

import logging
import uuid
from datetime import timedelta

from jose import JWTError

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_SECRET_KEY,
    REFRESH_TOKEN_EXPIRE_DAYS,
    SECRET_KEY,
)
from database import PRIVATE_FIELDS, create_document, to_object_id, utcnow
from errors import InvalidTokenError, NotFoundError
from schemas import RefreshToken
from security import create_token, decode_token

logger = logging.getLogger(__name__)


class TokenService:
    def __init__(self, db):
        self.db = db

    def issue_access(self, user_id, email: str) -> str:
        return create_token(
            {"id": str(user_id), "email": email},
            SECRET_KEY,
            timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        )

    def issue_refresh(self, user_id, email: str) -> str:
        expires_delta = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
        # jti keeps two tokens issued within the same second distinct
        token = create_token(
            {"id": str(user_id), "email": email, "jti": uuid.uuid4().hex},
            REFRESH_SECRET_KEY,
            expires_delta,
        )
        record = RefreshToken(user=to_object_id(user_id), token=token, expires_at=utcnow() + expires_delta)
        create_document(self.db, "refresh_token", record)
        return token

    def verify_access(self, token: str) -> dict:
        try:
            payload = decode_token(token, SECRET_KEY)
        except JWTError:
            raise InvalidTokenError()
        if not payload.get("id"):
            raise InvalidTokenError()
        return payload

    def _verify_stored(self, stored, token: str) -> dict:
        if not stored:
            logger.warning("Refresh token not found in storage")
            raise InvalidTokenError()
        try:
            payload = decode_token(token, REFRESH_SECRET_KEY)
        except JWTError:
            logger.warning("Refresh token failed verification for user %s", stored.get("user"))
            raise InvalidTokenError()
        return payload

    def verify_refresh(self, token: str) -> dict:
        stored = self.db["refresh_token"].find_one({"token": token})
        return self._verify_stored(stored, token)

    def rotate(self, token: str) -> dict:
        # Claim the record first; a concurrent rotation of the same token gets None
        stored = self.db["refresh_token"].find_one_and_delete({"token": token})
        payload = self._verify_stored(stored, token)
        user = self.db["user"].find_one({"_id": to_object_id(payload["id"])})
        if not user:
            raise NotFoundError("User not found")
        for field in PRIVATE_FIELDS:
            user.pop(field, None)

        new_access = self.issue_access(user["_id"], user["email"])
        new_refresh = self.issue_refresh(user["_id"], user["email"])
        logger.info("Rotated refresh token for user %s", user["_id"])
        return {"new_access_token": new_access, "new_refresh_token": new_refresh, "user": user}

    def revoke(self, token: str) -> None:
        result = self.db["refresh_token"].delete_one({"token": token})
        if result.deleted_count == 0:
            raise InvalidTokenError()
