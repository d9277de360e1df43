import logging
from typing import List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import NOTIFICATIONS, utcnow
from schemas import Notification, NotificationType

logger = logging.getLogger(__name__)


def notify(
    db: Database,
    recipient: str,
    sender: str,
    noti_type: NotificationType,
    post_id: ObjectId,
) -> Optional[str]:
    """
    Persist an unread notification for ``recipient``.

    Nothing is written when the recipient is the sender. Delivery is
    best-effort: a store failure is logged and None is returned so the
    caller's own write still succeeds.
    """
    if recipient == sender:
        return None

    notification = Notification(
        recipient=recipient,
        sender=sender,
        type=noti_type,
        postId=post_id,
        createdAt=utcnow(),
    ).model_dump()

    try:
        result = db[NOTIFICATIONS].insert_one(notification)
    except PyMongoError:
        logger.exception(
            "Could not store %s notification for %s on post %s", noti_type, recipient, post_id
        )
        return None
    return str(result.inserted_id)


def get_user_notifications(db: Database, user_id: str, top: Optional[int] = None) -> List[dict]:
    """Notifications addressed to ``user_id``, newest first."""
    cursor = db[NOTIFICATIONS].find({"recipient": user_id}).sort(
        [("createdAt", DESCENDING), ("_id", DESCENDING)]
    )
    if top:
        cursor = cursor.limit(top)
    return list(cursor)


def count_unread(db: Database, user_id: str) -> int:
    return db[NOTIFICATIONS].count_documents({"recipient": user_id, "read": False})


def mark_as_read(db: Database, user_id: str, notification_id: ObjectId) -> Optional[dict]:
    """Mark one notification read. Returns None when it is missing or not addressed to the user."""
    return db[NOTIFICATIONS].find_one_and_update(
        {"_id": notification_id, "recipient": user_id},
        {"$set": {"read": True}},
        return_document=ReturnDocument.AFTER,
    )


def mark_all_as_read(db: Database, user_id: str) -> int:
    result = db[NOTIFICATIONS].update_many(
        {"recipient": user_id, "read": False},
        {"$set": {"read": True}},
    )
    return result.modified_count
