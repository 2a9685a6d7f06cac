"""
Database Schemas for Quizly

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased (snake_case) class name. References between collections are stored
as ObjectIds and kept on both sides by the services.
"""

from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class PassedTest(Document):
    test_id: ObjectId = Field(..., description="Test that was taken")
    score: int = Field(..., ge=0, description="Number of correct answers")


class User(Document):
    """
    Registered users
    Collection name: "user"
    """
    username: str = Field(..., description="Unique display name")
    email: str = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="bcrypt hash, never returned")
    bio: str = Field("", description="Profile text")
    avatar_url: Optional[str] = Field(None, description="Profile picture URL")
    is_activated: bool = Field(False, description="Email verified")
    activation_code: Optional[str] = Field(None, description="Pending email verification code")
    likes: int = Field(0, ge=0, description="Likes received on authored tests")
    show_liked_posts: bool = Field(True, description="Liked tests visible to others")
    show_passed_tests: bool = Field(True, description="Passed tests visible to others")
    followers: List[ObjectId] = Field(default_factory=list)
    followings: List[ObjectId] = Field(default_factory=list)
    liked_posts: List[ObjectId] = Field(default_factory=list)
    saved_posts: List[ObjectId] = Field(default_factory=list)
    liked_comments: List[ObjectId] = Field(default_factory=list)
    liked_answers: List[ObjectId] = Field(default_factory=list)
    created_tests: List[ObjectId] = Field(default_factory=list)
    comments: List[ObjectId] = Field(default_factory=list)
    answers: List[ObjectId] = Field(default_factory=list)
    passed_tests: List[PassedTest] = Field(default_factory=list)


class Question(BaseModel):
    question: str = Field(..., min_length=1, description="Question text")
    options: List[str] = Field(..., min_length=2, description="Answer options")
    correct: int = Field(..., ge=0, description="Index of the correct option")

    @model_validator(mode="after")
    def correct_is_an_option(self):
        if self.correct >= len(self.options):
            raise ValueError("correct must index one of the options")
        return self


class Test(Document):
    """
    Quizzes authored by users
    Collection name: "test"
    """
    author: ObjectId = Field(..., description="Author user id")
    title: str = Field(..., description="Test title")
    description: str = Field("", description="Test description")
    questions: List[Question] = Field(default_factory=list)
    likes: int = Field(0, ge=0, description="Number of likes")
    comments: List[ObjectId] = Field(default_factory=list)
    comment_answers: List[ObjectId] = Field(default_factory=list)


class Comment(Document):
    """
    Top-level comments on a test
    Collection name: "comment"
    """
    author: ObjectId = Field(..., description="Author user id")
    test: ObjectId = Field(..., description="Commented test id")
    comment: str = Field(..., description="Comment text")
    likes: int = Field(0, ge=0, description="Number of likes")
    answers: List[ObjectId] = Field(default_factory=list)


class Answer(Document):
    """
    Replies to a comment
    Collection name: "answer"
    """
    author: ObjectId = Field(..., description="Author user id")
    test: ObjectId = Field(..., description="Test the thread belongs to")
    parent_comment: ObjectId = Field(..., description="Comment being answered")
    comment: str = Field(..., description="Answer text")
    likes: int = Field(0, ge=0, description="Number of likes")


class RefreshToken(Document):
    """
    Issued refresh tokens
    Collection name: "refresh_token"
    """
    user: ObjectId = Field(..., description="Owner user id")
    token: str = Field(..., description="Signed refresh JWT")
    expires_at: datetime = Field(..., description="Expiry of the token")
