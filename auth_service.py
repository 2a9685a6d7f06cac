import logging
import uuid

from pymongo.errors import DuplicateKeyError

from database import create_document, ensure_indexes, to_object_id
from errors import ConflictError, InvalidTokenError, NotFoundError, UnauthorizedError
from schemas import User
from security import get_password_hash, verify_password
from token_service import TokenService

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class AuthService:
    def __init__(self, db, tokens: TokenService = None):
        self.db = db
        self.tokens = tokens or TokenService(db)

    def _check_available(self, username: str, email: str) -> None:
        users = self.db["user"]
        if users.find_one({"email": email}):
            raise ConflictError("Email already registered")
        if users.find_one({"username": username}):
            raise ConflictError("Username already taken")

    def register(self, username: str, email: str, password: str) -> dict:
        ensure_indexes(self.db)
        self._check_available(username, email)

        user = User(
            username=username,
            email=email,
            password_hash=get_password_hash(password),
            activation_code=uuid.uuid4().hex,
        )
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            # Lost a race with a concurrent registration
            if self.db["user"].find_one({"email": email}):
                raise ConflictError("Email already registered")
            raise ConflictError("Username already taken")
        # Mail delivery is handled outside this service
        logger.info("Registered user %s (%s), activation code issued", user_id, email)
        return self.db["user"].find_one({"_id": user_id})

    def verify_email(self, code: str) -> None:
        result = self.db["user"].update_one(
            {"activation_code": code},
            {"$set": {"is_activated": True, "activation_code": None}},
        )
        if result.matched_count == 0:
            raise NotFoundError("Verification code not found")

    def new_verification_code(self, user_id) -> str:
        user = self.db["user"].find_one({"_id": to_object_id(user_id, "user id")})
        if not user:
            raise NotFoundError("User not found")
        if user.get("is_activated"):
            raise ConflictError("Email already verified")
        code = uuid.uuid4().hex
        self.db["user"].update_one({"_id": user["_id"]}, {"$set": {"activation_code": code}})
        logger.info("Issued new activation code for user %s", user["_id"])
        return code

    def login(self, email: str, password: str) -> dict:
        user = self.db["user"].find_one({"email": email})
        # Same error for unknown email and wrong password
        if not user or not verify_password(password, user.get("password_hash", "")):
            logger.warning("Failed login attempt for %s", email)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        access_token = self.tokens.issue_access(user["_id"], user["email"])
        refresh_token = self.tokens.issue_refresh(user["_id"], user["email"])
        user.pop("password_hash", None)
        logger.info("User %s logged in", user["_id"])
        return {"access_token": access_token, "refresh_token": refresh_token, "user": user}

    def logout(self, refresh_token: str) -> None:
        try:
            self.tokens.revoke(refresh_token)
        except InvalidTokenError:
            raise UnauthorizedError()

    def refresh_token(self, token: str) -> dict:
        return self.tokens.rotate(token)
