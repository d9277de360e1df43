"""
Post Update Engine.

Applies the three kinds of post updates (upvote toggle, comment append,
owner edit) plus owner delete. Every write is a single conditional MongoDB
update, so concurrent requests on the same post cannot lose each other's
changes. Functions that can trigger a notification report the uid to
notify; the caller hands it to ``notifications.notify``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo import ReturnDocument
from pymongo.database import Database

from database import POSTS, utcnow
from schemas import Comment, PostEdit

logger = logging.getLogger(__name__)

# Each attempt is one add-or-remove pair; a retry only happens when another
# request flipped the same user's membership between the two updates.
MAX_TOGGLE_ATTEMPTS = 3


@dataclass
class UpvoteResult:
    upvotes: int
    has_upvoted: bool
    upvoted_by: List[str]
    notify: Optional[str] = None


@dataclass
class CommentResult:
    comment: Dict[str, Any]
    notify: Optional[str] = None


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")


def _recipient(owner: str, actor: str) -> Optional[str]:
    return owner if owner != actor else None


def toggle_upvote(db: Database, post_id: ObjectId, uid: str) -> UpvoteResult:
    """Add ``uid``'s upvote if absent, remove it if present."""
    posts = db[POSTS]
    for _ in range(MAX_TOGGLE_ATTEMPTS):
        post = posts.find_one_and_update(
            {"_id": post_id, "upvotedBy": {"$ne": uid}},
            {"$addToSet": {"upvotedBy": uid}, "$inc": {"upvotes": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if post is not None:
            return UpvoteResult(
                upvotes=post["upvotes"],
                has_upvoted=True,
                upvoted_by=post["upvotedBy"],
                notify=_recipient(post["userId"], uid),
            )

        # Membership is required to match, so the count never goes below zero.
        post = posts.find_one_and_update(
            {"_id": post_id, "upvotedBy": uid},
            {"$pull": {"upvotedBy": uid}, "$inc": {"upvotes": -1}},
            return_document=ReturnDocument.AFTER,
        )
        if post is not None:
            return UpvoteResult(
                upvotes=post["upvotes"],
                has_upvoted=False,
                upvoted_by=post["upvotedBy"],
            )

        if posts.find_one({"_id": post_id}, {"_id": 1}) is None:
            raise _not_found()
        logger.warning("Upvote on post %s by %s raced, retrying", post_id, uid)

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Post was modified concurrently, please retry",
    )


def add_comment(db: Database, post_id: ObjectId, uid: str, text: str) -> CommentResult:
    comment = Comment(
        id=str(ObjectId()),
        userId=uid,
        text=text.strip(),
        createdAt=utcnow(),
    ).model_dump()

    post = db[POSTS].find_one_and_update(
        {"_id": post_id},
        {"$push": {"comments": comment}},
        projection={"userId": 1},
    )
    if post is None:
        raise _not_found()
    return CommentResult(comment=comment, notify=_recipient(post["userId"], uid))


def _ensure_owner(db: Database, post_id: ObjectId, action: str) -> None:
    """Called after an owner-filtered write matched nothing: 404 or 403."""
    if db[POSTS].find_one({"_id": post_id}, {"_id": 1}) is None:
        raise _not_found()
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=f"Unauthorized to {action} this post",
    )


def edit_post(db: Database, post_id: ObjectId, uid: str, body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Overwrite the editable fields of a post owned by ``uid``.

    Existence and ownership are resolved before ``body`` is validated, so a
    non-owner gets 403 whatever they sent. The write itself stays filtered
    on the owner.
    """
    if db[POSTS].find_one({"_id": post_id, "userId": uid}, {"_id": 1}) is None:
        _ensure_owner(db, post_id, "edit")

    fields = PostEdit.model_validate(body).model_dump(exclude={"type"})
    fields["updatedAt"] = utcnow()

    post = db[POSTS].find_one_and_update(
        {"_id": post_id, "userId": uid},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if post is None:
        _ensure_owner(db, post_id, "edit")
    return post


def delete_post(db: Database, post_id: ObjectId, uid: str) -> None:
    result = db[POSTS].delete_one({"_id": post_id, "userId": uid})
    if result.deleted_count == 0:
        _ensure_owner(db, post_id, "delete")
