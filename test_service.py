import logging
import math
import re
from typing import List, Optional

from database import create_document, populate_author, to_object_id, utcnow
from errors import BadRequestError, ForbiddenError, NotFoundError
from schemas import PassedTest, Question, Test

logger = logging.getLogger(__name__)

AUTHOR_FIELDS = ("username", "avatar_url")
LATEST_LIMIT = 10


class TestService:
    def __init__(self, db):
        self.db = db

    def _test(self, test_id) -> dict:
        test = self.db["test"].find_one({"_id": to_object_id(test_id, "test id")})
        if not test:
            raise NotFoundError("Test not found")
        return test

    def _user(self, user_id) -> dict:
        user = self.db["user"].find_one({"_id": to_object_id(user_id, "user id")})
        if not user:
            raise NotFoundError("User not found")
        return user

    def _with_authors(self, tests: List[dict]) -> List[dict]:
        return populate_author(self.db, tests, AUTHOR_FIELDS)

    def create_test(self, author_id, title: str, description: str, questions: List[Question]) -> dict:
        author = self._user(author_id)
        test = Test(author=author["_id"], title=title, description=description, questions=questions)
        test_id = create_document(self.db, "test", test)
        self.db["user"].update_one({"_id": author["_id"]}, {"$addToSet": {"created_tests": test_id}})
        logger.info("User %s created test %s", author["_id"], test_id)
        return self.get_test(test_id)

    def get_test(self, test_id) -> dict:
        return self._with_authors([self._test(test_id)])[0]

    def update_test(
        self,
        test_id,
        user_id,
        title: Optional[str] = None,
        description: Optional[str] = None,
        questions: Optional[List[Question]] = None,
    ) -> dict:
        test = self._test(test_id)
        user = self._user(user_id)
        if test["author"] != user["_id"]:
            raise ForbiddenError("Access denied")

        update = {"updated_at": utcnow()}
        if title is not None:
            update["title"] = title
        if description is not None:
            update["description"] = description
        if questions is not None:
            update["questions"] = [q.model_dump() for q in questions]
        self.db["test"].update_one({"_id": test["_id"]}, {"$set": update})
        return self.get_test(test["_id"])

    def delete_test(self, test_id, user_id) -> None:
        """Delete a test and its whole discussion thread."""
        test = self._test(test_id)
        user = self._user(user_id)
        if test["author"] != user["_id"]:
            raise ForbiddenError("Access denied")

        comment_ids = test.get("comments", [])
        answer_ids = test.get("comment_answers", [])
        users = self.db["user"]
        if answer_ids:
            users.update_many({}, {"$pullAll": {"answers": answer_ids, "liked_answers": answer_ids}})
            self.db["answer"].delete_many({"_id": {"$in": answer_ids}})
        if comment_ids:
            users.update_many({}, {"$pullAll": {"comments": comment_ids, "liked_comments": comment_ids}})
            self.db["comment"].delete_many({"_id": {"$in": comment_ids}})
        # a test's likes counted towards its author
        if test.get("likes"):
            users.update_one({"_id": test["author"]}, {"$inc": {"likes": -test["likes"]}})
        users.update_many(
            {},
            {"$pull": {
                "created_tests": test["_id"],
                "liked_posts": test["_id"],
                "saved_posts": test["_id"],
                "passed_tests": {"test_id": test["_id"]},
            }},
        )
        self.db["test"].delete_one({"_id": test["_id"]})
        logger.info("Deleted test %s with %d comments", test["_id"], len(comment_ids))

    # ------------------- Listings -------------------

    def get_latest(self, limit: int = LATEST_LIMIT) -> List[dict]:
        tests = list(self.db["test"].find({}).sort("created_at", -1).limit(limit))
        return self._with_authors(tests)

    def get_user_tests(self, user_id) -> List[dict]:
        user = self._user(user_id)
        tests = list(self.db["test"].find({"author": user["_id"]}).sort("created_at", -1))
        return self._with_authors(tests)

    def search(self, query: str, limit: int = 50) -> List[dict]:
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        tests = list(self.db["test"].find({"title": pattern}).sort("created_at", -1).limit(limit))
        return self._with_authors(tests)

    def paginate(self, page: int = 1, limit: int = LATEST_LIMIT) -> dict:
        if page < 1 or limit < 1:
            raise BadRequestError("Invalid page")
        total = self.db["test"].count_documents({})
        cursor = self.db["test"].find({}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        return {
            "tests": self._with_authors(list(cursor)),
            "total": total,
            "page": page,
            "pages": math.ceil(total / limit),
        }

    # ------------------- Taking tests -------------------

    def submit(self, test_id, user_id, answers: List[int]) -> dict:
        """Score a submission and store it as the user's result for this test."""
        test = self._test(test_id)
        user = self._user(user_id)
        questions = test.get("questions", [])
        if len(answers) != len(questions):
            raise BadRequestError("Answer every question")

        score = sum(1 for q, a in zip(questions, answers) if q["correct"] == a)
        entry = PassedTest(test_id=test["_id"], score=score).model_dump()
        # retaking a test replaces the previous result
        self.db["user"].update_one({"_id": user["_id"]}, {"$pull": {"passed_tests": {"test_id": test["_id"]}}})
        self.db["user"].update_one({"_id": user["_id"]}, {"$push": {"passed_tests": entry}})
        return {"score": score, "total": len(questions)}
