"""
Threaded discussion under tests: comments and their answers.

Each comment/answer id is referenced from its test, its author and (for
answers) its parent comment. Every operation here keeps those back-references
in step with the comment/answer documents themselves.
"""

import logging
from typing import List

from database import create_document, populate, populate_author, to_object_id, utcnow
from errors import ForbiddenError, NotFoundError
from schemas import Answer, Comment

logger = logging.getLogger(__name__)


class CommentService:
    def __init__(self, db):
        self.db = db

    def _find(self, collection: str, doc_id, message: str) -> dict:
        doc = self.db[collection].find_one({"_id": to_object_id(doc_id, f"{collection} id")})
        if not doc:
            raise NotFoundError(message)
        return doc

    def _user(self, user_id) -> dict:
        return self._find("user", user_id, "User not found")

    def _test(self, test_id) -> dict:
        return self._find("test", test_id, "Test not found")

    def _comment(self, comment_id) -> dict:
        return self._find("comment", comment_id, "Comment not found")

    def _answer(self, answer_id) -> dict:
        return self._find("answer", answer_id, "Answer not found")

    @staticmethod
    def _check_author(doc: dict, user: dict) -> None:
        if doc["author"] != user["_id"]:
            raise ForbiddenError("Access denied")

    def _populated(self, collection: str, doc_id) -> dict:
        doc = self.db[collection].find_one({"_id": doc_id})
        return populate_author(self.db, [doc])[0]

    # ------------------- Comments -------------------

    def create_comment(self, body: str, user_id, test_id) -> dict:
        test = self._test(test_id)
        user = self._user(user_id)

        comment_id = create_document(self.db, "comment", Comment(author=user["_id"], test=test["_id"], comment=body))
        self.db["test"].update_one({"_id": test["_id"]}, {"$addToSet": {"comments": comment_id}})
        self.db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"comments": comment_id}})
        logger.info("User %s commented on test %s", user["_id"], test["_id"])
        return self._populated("comment", comment_id)

    def update_comment(self, comment_id, test_id, user_id, new_body: str) -> dict:
        user = self._user(user_id)
        self._test(test_id)
        comment = self._comment(comment_id)
        self._check_author(comment, user)

        self.db["comment"].update_one(
            {"_id": comment["_id"]}, {"$set": {"comment": new_body, "updated_at": utcnow()}}
        )
        return self._populated("comment", comment["_id"])

    def remove_comment(self, comment_id, user_id, test_id) -> None:
        """Delete a comment together with all of its answers."""
        self._test(test_id)
        user = self._user(user_id)
        comment = self._comment(comment_id)
        self._check_author(comment, user)

        answers = list(self.db["answer"].find({"parent_comment": comment["_id"]}, {"author": 1}))
        answer_ids = [a["_id"] for a in answers]
        if answer_ids:
            author_ids = list({a["author"] for a in answers})
            self.db["user"].update_many({"_id": {"$in": author_ids}}, {"$pullAll": {"answers": answer_ids}})
            self.db["user"].update_many(
                {"liked_answers": {"$in": answer_ids}}, {"$pullAll": {"liked_answers": answer_ids}}
            )
            self.db["test"].update_one({"_id": comment["test"]}, {"$pullAll": {"comment_answers": answer_ids}})
            self.db["answer"].delete_many({"_id": {"$in": answer_ids}})

        self.db["test"].update_one({"_id": comment["test"]}, {"$pull": {"comments": comment["_id"]}})
        self.db["user"].update_one({"_id": comment["author"]}, {"$pull": {"comments": comment["_id"]}})
        self.db["user"].update_many({"liked_comments": comment["_id"]}, {"$pull": {"liked_comments": comment["_id"]}})
        self.db["comment"].delete_one({"_id": comment["_id"]})
        logger.info("Removed comment %s with %d answers", comment["_id"], len(answer_ids))

    def add_comment_like(self, comment_id, user_id) -> bool:
        user = self._user(user_id)
        comment = self._comment(comment_id)
        result = self.db["user"].update_one(
            {"_id": user["_id"], "liked_comments": {"$ne": comment["_id"]}},
            {"$addToSet": {"liked_comments": comment["_id"]}},
        )
        if result.modified_count == 0:
            return False
        self.db["comment"].update_one({"_id": comment["_id"]}, {"$inc": {"likes": 1}})
        return True

    def remove_comment_like(self, comment_id, user_id) -> bool:
        user = self._user(user_id)
        comment = self._comment(comment_id)
        result = self.db["user"].update_one(
            {"_id": user["_id"], "liked_comments": comment["_id"]},
            {"$pull": {"liked_comments": comment["_id"]}},
        )
        if result.modified_count == 0:
            return False
        self.db["comment"].update_one({"_id": comment["_id"], "likes": {"$gt": 0}}, {"$inc": {"likes": -1}})
        return True

    def like_comment(self, comment_id, user_id) -> bool:
        """Toggle the user's like; returns True when the comment is now liked."""
        user = self._user(user_id)
        comment = self._comment(comment_id)
        if comment["_id"] in user.get("liked_comments", []):
            self.remove_comment_like(comment_id, user_id)
            return False
        self.add_comment_like(comment_id, user_id)
        return True

    def get_comments(self, test_id) -> List[dict]:
        test = self._test(test_id)
        return populate_author(self.db, populate(self.db, "comment", test.get("comments", [])))

    # ------------------- Answers -------------------

    def create_answer(self, body: str, user_id, test_id, parent_comment_id) -> dict:
        test = self._test(test_id)
        user = self._user(user_id)
        comment = self._comment(parent_comment_id)

        answer = Answer(author=user["_id"], test=test["_id"], parent_comment=comment["_id"], comment=body)
        answer_id = create_document(self.db, "answer", answer)
        self.db["test"].update_one({"_id": test["_id"]}, {"$addToSet": {"comment_answers": answer_id}})
        self.db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"answers": answer_id}})
        self.db["comment"].update_one({"_id": comment["_id"]}, {"$addToSet": {"answers": answer_id}})
        return self._populated("answer", answer_id)

    def update_answer(self, answer_id, user_id, new_body: str) -> dict:
        user = self._user(user_id)
        answer = self._answer(answer_id)
        self._check_author(answer, user)

        self.db["answer"].update_one(
            {"_id": answer["_id"]}, {"$set": {"comment": new_body, "updated_at": utcnow()}}
        )
        return self._populated("answer", answer["_id"])

    def remove_answer(self, answer_id, user_id) -> None:
        user = self._user(user_id)
        answer = self._answer(answer_id)
        self._check_author(answer, user)

        self.db["comment"].update_one({"_id": answer["parent_comment"]}, {"$pull": {"answers": answer["_id"]}})
        self.db["user"].update_one({"_id": answer["author"]}, {"$pull": {"answers": answer["_id"]}})
        self.db["test"].update_one({"_id": answer["test"]}, {"$pull": {"comment_answers": answer["_id"]}})
        self.db["user"].update_many({"liked_answers": answer["_id"]}, {"$pull": {"liked_answers": answer["_id"]}})
        self.db["answer"].delete_one({"_id": answer["_id"]})

    def add_answer_like(self, answer_id, user_id) -> bool:
        user = self._user(user_id)
        answer = self._answer(answer_id)
        result = self.db["user"].update_one(
            {"_id": user["_id"], "liked_answers": {"$ne": answer["_id"]}},
            {"$addToSet": {"liked_answers": answer["_id"]}},
        )
        if result.modified_count == 0:
            return False
        self.db["answer"].update_one({"_id": answer["_id"]}, {"$inc": {"likes": 1}})
        return True

    def remove_answer_like(self, answer_id, user_id) -> bool:
        user = self._user(user_id)
        answer = self._answer(answer_id)
        result = self.db["user"].update_one(
            {"_id": user["_id"], "liked_answers": answer["_id"]},
            {"$pull": {"liked_answers": answer["_id"]}},
        )
        if result.modified_count == 0:
            return False
        self.db["answer"].update_one({"_id": answer["_id"], "likes": {"$gt": 0}}, {"$inc": {"likes": -1}})
        return True

    def like_answer(self, answer_id, user_id) -> bool:
        """Toggle the user's like; returns True when the answer is now liked."""
        user = self._user(user_id)
        answer = self._answer(answer_id)
        if answer["_id"] in user.get("liked_answers", []):
            self.remove_answer_like(answer_id, user_id)
            return False
        self.add_answer_like(answer_id, user_id)
        return True

    def get_answers(self, comment_id) -> List[dict]:
        comment = self._comment(comment_id)
        return populate_author(self.db, populate(self.db, "answer", comment.get("answers", [])))
