import logging
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from database import populate, populate_author, to_object_id, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

AUTHOR_FIELDS = ("username", "avatar_url")

# Only the owner sees these on their profile page
OWNER_ONLY_FIELDS = ("email", "is_activated", "saved_posts", "liked_comments", "liked_answers")


class UserService:
    def __init__(self, db):
        self.db = db

    def _get(self, user_id, message: str = "User not found") -> dict:
        user = self.db["user"].find_one({"_id": to_object_id(user_id, "user id")})
        if not user:
            raise NotFoundError(message)
        return user

    def _populate_tests(self, ids) -> List[dict]:
        return populate_author(self.db, populate(self.db, "test", ids), AUTHOR_FIELDS)

    def get_user(self, user_id) -> dict:
        user = self._get(user_id)
        user.pop("password_hash", None)
        return user

    # ------------------- Follow graph -------------------

    def follow(self, user_id, subscriber_id) -> None:
        """``subscriber_id`` starts following ``user_id``."""
        user = self._get(user_id)
        subscriber = self._get(subscriber_id, "Subscriber not found")
        if user["_id"] == subscriber["_id"]:
            raise ForbiddenError("You can't follow yourself")

        # Guarded on the subscriber side so two concurrent calls apply once
        result = self.db["user"].update_one(
            {"_id": subscriber["_id"], "followings": {"$ne": user["_id"]}},
            {"$addToSet": {"followings": user["_id"]}},
        )
        if result.modified_count == 0:
            raise ConflictError("Already following")
        self.db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"followers": subscriber["_id"]}})
        logger.info("User %s follows %s", subscriber["_id"], user["_id"])

    def unfollow(self, user_id, subscriber_id) -> None:
        user = self._get(user_id)
        subscriber = self._get(subscriber_id, "Subscriber not found")
        if user["_id"] == subscriber["_id"]:
            raise ForbiddenError("You can't follow yourself")

        result = self.db["user"].update_one(
            {"_id": subscriber["_id"], "followings": user["_id"]},
            {"$pull": {"followings": user["_id"]}},
        )
        if result.modified_count == 0:
            raise ConflictError("Already unfollowed")
        self.db["user"].update_one({"_id": user["_id"]}, {"$pull": {"followers": subscriber["_id"]}})
        logger.info("User %s unfollowed %s", subscriber["_id"], user["_id"])

    # ------------------- Profile -------------------

    def update_user(
        self,
        user_id,
        username: str,
        bio: str,
        show_liked_posts: Optional[bool] = None,
        show_passed_tests: Optional[bool] = None,
    ) -> dict:
        user = self._get(user_id)
        taken = self.db["user"].find_one({"username": username, "_id": {"$ne": user["_id"]}})
        if taken:
            raise ConflictError("Username already exists")

        update = {"username": username, "bio": bio, "updated_at": utcnow()}
        if show_liked_posts is not None:
            update["show_liked_posts"] = show_liked_posts
        if show_passed_tests is not None:
            update["show_passed_tests"] = show_passed_tests
        try:
            self.db["user"].update_one({"_id": user["_id"]}, {"$set": update})
        except DuplicateKeyError:
            raise ConflictError("Username already exists")
        return self.get_user(user["_id"])

    def set_avatar(self, user_id, avatar_url: str) -> None:
        user = self._get(user_id)
        self.db["user"].update_one({"_id": user["_id"]}, {"$set": {"avatar_url": avatar_url, "updated_at": utcnow()}})

    # ------------------- Populated views -------------------

    def get_user_page(self, user_id, viewer_id=None) -> dict:
        user = self.get_user(user_id)
        if str(viewer_id) != str(user["_id"]):
            for field in OWNER_ONLY_FIELDS:
                user.pop(field, None)
            if not user.get("show_liked_posts", True):
                user.pop("liked_posts", None)
            if not user.get("show_passed_tests", True):
                user.pop("passed_tests", None)
        user["created_tests"] = self._populate_tests(user.get("created_tests", []))
        return user

    def get_liked_posts(self, user_id, viewer_id=None) -> List[dict]:
        user = self._get(user_id)
        if not user.get("show_liked_posts", True) and str(viewer_id) != str(user["_id"]):
            raise ForbiddenError("Liked tests are hidden")
        return self._populate_tests(user.get("liked_posts", []))

    def get_saved_posts(self, user_id) -> List[dict]:
        user = self._get(user_id)
        return self._populate_tests(user.get("saved_posts", []))

    def get_followers(self, user_id) -> List[dict]:
        user = self._get(user_id)
        return populate(self.db, "user", user.get("followers", []), AUTHOR_FIELDS)

    def get_followings(self, user_id) -> List[dict]:
        user = self._get(user_id)
        return populate(self.db, "user", user.get("followings", []), AUTHOR_FIELDS)

    def get_passed_tests(self, user_id, viewer_id=None) -> List[dict]:
        """Every passed test with its stored score as ``final_result``.

        A single missing test aborts the whole call.
        """
        user = self._get(user_id)
        if not user.get("show_passed_tests", True) and str(viewer_id) != str(user["_id"]):
            raise ForbiddenError("Passed tests are hidden")

        passed = []
        for entry in user.get("passed_tests", []):
            test = self.db["test"].find_one({"_id": entry["test_id"]})
            if not test:
                raise NotFoundError("Test not found")
            test = populate_author(self.db, [test], AUTHOR_FIELDS)[0]
            passed.append({**test, "final_result": entry["score"]})
        return passed

    # ------------------- Test likes / saves -------------------

    def add_test_like(self, test_id, user_id) -> bool:
        user = self._get(user_id)
        test = self.db["test"].find_one({"_id": to_object_id(test_id, "test id")})
        if not test:
            raise NotFoundError("Test not found")
        result = self.db["user"].update_one(
            {"_id": user["_id"], "liked_posts": {"$ne": test["_id"]}},
            {"$addToSet": {"liked_posts": test["_id"]}},
        )
        if result.modified_count == 0:
            return False
        self.db["test"].update_one({"_id": test["_id"]}, {"$inc": {"likes": 1}})
        self.db["user"].update_one({"_id": test["author"]}, {"$inc": {"likes": 1}})
        return True

    def remove_test_like(self, test_id, user_id) -> bool:
        user = self._get(user_id)
        test_id = to_object_id(test_id, "test id")
        result = self.db["user"].update_one(
            {"_id": user["_id"], "liked_posts": test_id},
            {"$pull": {"liked_posts": test_id}},
        )
        if result.modified_count == 0:
            return False
        test = self.db["test"].find_one_and_update(
            {"_id": test_id, "likes": {"$gt": 0}}, {"$inc": {"likes": -1}}
        )
        if test:
            self.db["user"].update_one({"_id": test["author"], "likes": {"$gt": 0}}, {"$inc": {"likes": -1}})
        return True

    def like_test(self, test_id, user_id) -> bool:
        """Toggle a like; returns True when the test is now liked."""
        user = self._get(user_id)
        if to_object_id(test_id, "test id") in user.get("liked_posts", []):
            self.remove_test_like(test_id, user_id)
            return False
        self.add_test_like(test_id, user_id)
        return True

    def save_test(self, test_id, user_id) -> bool:
        """Toggle a bookmark; returns True when the test is now saved."""
        user = self._get(user_id)
        test_id = to_object_id(test_id, "test id")
        if test_id in user.get("saved_posts", []):
            self.db["user"].update_one({"_id": user["_id"]}, {"$pull": {"saved_posts": test_id}})
            return False
        if not self.db["test"].find_one({"_id": test_id}):
            raise NotFoundError("Test not found")
        self.db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"saved_posts": test_id}})
        return True
