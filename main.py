import logging
import os
from datetime import timedelta
from typing import List, Optional

from fastapi import Cookie, Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr, Field

from auth_service import AuthService
from comment_service import CommentService
from config import (
    ACCESS_COOKIE_NAME,
    COOKIE_SECURE,
    CORS_ORIGINS,
    LOG_LEVEL,
    REFRESH_COOKIE_NAME,
    REFRESH_TOKEN_EXPIRE_DAYS,
)
from database import get_db, to_public
from errors import InvalidTokenError, ServiceError, UnauthorizedError
from schemas import Question
from test_service import TestService
from token_service import TokenService
from user_service import UserService

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Make token optional for endpoints that accept anonymous users
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

app = FastAPI(title="Quizly API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SUCCESS = {"message": "Success"}


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


# ------------------- Models -------------------
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class UserUpdate(BaseModel):
    username: str = Field(..., min_length=1)
    bio: str = ""
    show_liked_posts: Optional[bool] = None
    show_passed_tests: Optional[bool] = None


class AvatarUpdate(BaseModel):
    avatar_url: str


class TestCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    questions: List[Question] = Field(..., min_length=1)


class TestUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    questions: Optional[List[Question]] = None


class SearchRequest(BaseModel):
    query: str


class SubmitRequest(BaseModel):
    test_id: str
    answers: List[int]


class CommentCreate(BaseModel):
    test_id: str
    comment: str = Field(..., min_length=1)


class AnswerCreate(BaseModel):
    test_id: str
    parent_comment_id: str
    comment: str = Field(..., min_length=1)


class AnswerUpdate(BaseModel):
    comment: str = Field(..., min_length=1)


class CommentUpdate(AnswerUpdate):
    test_id: str


# ------------------- Dependencies -------------------

def get_token_service(db=Depends(get_db)) -> TokenService:
    return TokenService(db)


def get_auth_service(db=Depends(get_db)) -> AuthService:
    return AuthService(db)


def get_user_service(db=Depends(get_db)) -> UserService:
    return UserService(db)


def get_comment_service(db=Depends(get_db)) -> CommentService:
    return CommentService(db)


def get_test_service(db=Depends(get_db)) -> TestService:
    return TestService(db)


def get_optional_user_id(
    token: Optional[str] = Depends(oauth2_scheme),
    cookie_token: Optional[str] = Cookie(None, alias=ACCESS_COOKIE_NAME),
    tokens: TokenService = Depends(get_token_service),
) -> Optional[str]:
    token = token or cookie_token
    if not token:
        return None
    try:
        return tokens.verify_access(token)["id"]
    except InvalidTokenError:
        return None


def get_current_user_id(
    token: Optional[str] = Depends(oauth2_scheme),
    cookie_token: Optional[str] = Cookie(None, alias=ACCESS_COOKIE_NAME),
    tokens: TokenService = Depends(get_token_service),
) -> str:
    token = token or cookie_token
    if not token:
        raise UnauthorizedError()
    return tokens.verify_access(token)["id"]


def set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        token,
        max_age=int(timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS).total_seconds()),
        httponly=True,
        samesite="strict",
        secure=COOKIE_SECURE,
    )


# ------------------- Basic -------------------
@app.get("/")
def read_root():
    return {"message": "Quizly backend running"}


@app.get("/health")
def health(db=Depends(get_db)):
    """Check that the database is reachable"""
    response = {
        "backend": "running",
        "database": "not available",
        "database_url": "set" if os.getenv("DATABASE_URL") else "not set",
        "database_name": db.name if hasattr(db, "name") else None,
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "connected"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        response["database"] = f"error: {str(e)[:50]}"
    return response


# ------------------- Auth Endpoints -------------------
@app.post("/auth/register")
def register(payload: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    auth.register(payload.username, str(payload.email), payload.password)
    return SUCCESS


@app.get("/auth/verify/{code}")
def verify_email(code: str, auth: AuthService = Depends(get_auth_service)):
    auth.verify_email(code)
    return SUCCESS


@app.post("/auth/verification")
def new_verification_code(
    user_id: str = Depends(get_current_user_id), auth: AuthService = Depends(get_auth_service)
):
    auth.new_verification_code(user_id)
    return SUCCESS


@app.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, response: Response, auth: AuthService = Depends(get_auth_service)):
    result = auth.login(str(payload.email), payload.password)
    set_refresh_cookie(response, result["refresh_token"])
    return AuthResponse(access_token=result["access_token"], user=to_public(result["user"]))


@app.post("/auth/logout")
def logout(
    response: Response,
    refresh_token: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    auth: AuthService = Depends(get_auth_service),
):
    if not refresh_token:
        raise UnauthorizedError()
    auth.logout(refresh_token)
    response.delete_cookie(REFRESH_COOKIE_NAME)
    response.delete_cookie(ACCESS_COOKIE_NAME)
    return SUCCESS


@app.get("/auth/refresh", response_model=AuthResponse)
def refresh(
    response: Response,
    refresh_token: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    auth: AuthService = Depends(get_auth_service),
):
    if not refresh_token:
        raise UnauthorizedError()
    result = auth.refresh_token(refresh_token)
    set_refresh_cookie(response, result["new_refresh_token"])
    return AuthResponse(access_token=result["new_access_token"], user=to_public(result["user"]))


# ------------------- Users -------------------
@app.get("/user")
def get_user(user_id: str = Depends(get_current_user_id), users: UserService = Depends(get_user_service)):
    return {"user": to_public(users.get_user(user_id))}


@app.put("/user")
def update_user(
    payload: UserUpdate,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    users.update_user(
        user_id, payload.username, payload.bio, payload.show_liked_posts, payload.show_passed_tests
    )
    return SUCCESS


@app.put("/avatar")
def set_avatar(
    payload: AvatarUpdate,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    users.set_avatar(user_id, payload.avatar_url)
    return SUCCESS


@app.put("/follow/{target_id}", status_code=204)
def follow(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    users.follow(target_id, user_id)


@app.put("/unfollow/{target_id}", status_code=204)
def unfollow(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    users.unfollow(target_id, user_id)


@app.get("/userPage/{user_id}")
def user_page(
    user_id: str,
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    return {"user": to_public(users.get_user_page(user_id, viewer_id))}


@app.get("/likedPosts/{user_id}")
def liked_posts(
    user_id: str,
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    return {"tests": to_public(users.get_liked_posts(user_id, viewer_id))}


@app.get("/savedPosts")
def saved_posts(user_id: str = Depends(get_current_user_id), users: UserService = Depends(get_user_service)):
    return {"tests": to_public(users.get_saved_posts(user_id))}


@app.get("/passedTests/{user_id}")
def passed_tests(
    user_id: str,
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    return {"tests": to_public(users.get_passed_tests(user_id, viewer_id))}


@app.get("/followers/{user_id}")
def followers(user_id: str, users: UserService = Depends(get_user_service)):
    return {"users": to_public(users.get_followers(user_id))}


@app.get("/followings/{user_id}")
def followings(user_id: str, users: UserService = Depends(get_user_service)):
    return {"users": to_public(users.get_followings(user_id))}


@app.put("/likeTest/{test_id}")
def like_test(
    test_id: str,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    return {"liked": users.like_test(test_id, user_id)}


@app.put("/saveTest/{test_id}")
def save_test(
    test_id: str,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    return {"saved": users.save_test(test_id, user_id)}


# ------------------- Tests -------------------
@app.get("/test/{test_id}")
def get_test(test_id: str, tests: TestService = Depends(get_test_service)):
    return {"test": to_public(tests.get_test(test_id))}


@app.post("/test", status_code=201)
def create_test(
    payload: TestCreate,
    user_id: str = Depends(get_current_user_id),
    tests: TestService = Depends(get_test_service),
):
    test = tests.create_test(user_id, payload.title, payload.description, payload.questions)
    return {"test": to_public(test)}


@app.put("/test/{test_id}")
def update_test(
    test_id: str,
    payload: TestUpdate,
    user_id: str = Depends(get_current_user_id),
    tests: TestService = Depends(get_test_service),
):
    test = tests.update_test(test_id, user_id, payload.title, payload.description, payload.questions)
    return {"test": to_public(test)}


@app.delete("/test/{test_id}")
def delete_test(
    test_id: str,
    user_id: str = Depends(get_current_user_id),
    tests: TestService = Depends(get_test_service),
):
    tests.delete_test(test_id, user_id)
    return SUCCESS


@app.get("/tests")
def latest_tests(tests: TestService = Depends(get_test_service)):
    return {"tests": to_public(tests.get_latest())}


@app.get("/tests/{user_id}")
def user_tests(
    user_id: str,
    _: str = Depends(get_current_user_id),
    tests: TestService = Depends(get_test_service),
):
    return {"tests": to_public(tests.get_user_tests(user_id))}


@app.post("/tests/search")
def search_tests(payload: SearchRequest, tests: TestService = Depends(get_test_service)):
    return {"tests": to_public(tests.search(payload.query))}


@app.get("/testsPagination")
def paginate_tests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    tests: TestService = Depends(get_test_service),
):
    return to_public(tests.paginate(page, limit))


@app.post("/submitTest")
def submit_test(
    payload: SubmitRequest,
    user_id: str = Depends(get_current_user_id),
    tests: TestService = Depends(get_test_service),
):
    return tests.submit(payload.test_id, user_id, payload.answers)


# ------------------- Comments -------------------
@app.get("/comments/{test_id}")
def list_comments(test_id: str, comments: CommentService = Depends(get_comment_service)):
    return {"comments": to_public(comments.get_comments(test_id))}


@app.post("/comment", status_code=201)
def create_comment(
    payload: CommentCreate,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    return {"comment": to_public(comments.create_comment(payload.comment, user_id, payload.test_id))}


@app.put("/comment/{comment_id}")
def update_comment(
    comment_id: str,
    payload: CommentUpdate,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    comment = comments.update_comment(comment_id, payload.test_id, user_id, payload.comment)
    return {"comment": to_public(comment)}


@app.delete("/comment/{comment_id}")
def delete_comment(
    comment_id: str,
    test_id: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    comments.remove_comment(comment_id, user_id, test_id)
    return SUCCESS


@app.put("/likeComment/{comment_id}")
def like_comment(
    comment_id: str,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    return {"liked": comments.like_comment(comment_id, user_id)}


# ------------------- Answers -------------------
@app.get("/answers/{comment_id}")
def list_answers(comment_id: str, comments: CommentService = Depends(get_comment_service)):
    return {"answers": to_public(comments.get_answers(comment_id))}


@app.post("/answer", status_code=201)
def create_answer(
    payload: AnswerCreate,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    answer = comments.create_answer(payload.comment, user_id, payload.test_id, payload.parent_comment_id)
    return {"answer": to_public(answer)}


@app.put("/answer/{answer_id}")
def update_answer(
    answer_id: str,
    payload: AnswerUpdate,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    return {"answer": to_public(comments.update_answer(answer_id, user_id, payload.comment))}


@app.delete("/answer/{answer_id}")
def delete_answer(
    answer_id: str,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    comments.remove_answer(answer_id, user_id)
    return SUCCESS


@app.put("/likeAnswer/{answer_id}")
def like_answer(
    answer_id: str,
    user_id: str = Depends(get_current_user_id),
    comments: CommentService = Depends(get_comment_service),
):
    return {"liked": comments.like_answer(answer_id, user_id)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
