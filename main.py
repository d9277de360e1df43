import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import notifications
import post_updates
from auth import get_current_uid
from database import (
    POSTS,
    SCHOOLS,
    USERS,
    connect,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    parse_object_id,
    seed_schools,
    to_public,
    utcnow,
)
from schemas import (
    CommentRequest,
    Post,
    PostCreate,
    UpvoteRequest,
    User,
    UserCreate,
    UserUpdate,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]
ALL_SCHOOLS = "All Schools"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured in .env")
    db: Database = app.state.db
    logger.info("Using database: %s", db.name)
    try:
        ensure_indexes(db)
        seed_schools(db)
    except PyMongoError:
        # The API still serves whatever is already stored
        logger.exception("Error initializing database")
    yield
    db.client.close()


# ----------------- Error rendering -----------------

def _validation_response(errors: List[Dict[str, Any]]) -> JSONResponse:
    details = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in errors
    ]
    message = "; ".join(
        f"{'.'.join(d['loc'])}: {d['msg']}" if d["loc"] else d["msg"] for d in details
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": message or "Invalid request", "errors": details},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _validation_response(exc.errors())


async def model_validation_handler(request: Request, exc: ValidationError):
    return _validation_response(exc.errors())


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": str(exc) or "Internal server error"},
    )


# ----------------- Helpers -----------------

def _post_object_id(post_id: str) -> ObjectId:
    oid = parse_object_id(post_id)
    if oid is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return oid


def _public_list(docs) -> List[Dict[str, Any]]:
    return [to_public(d) for d in docs]


def create_app(db: Optional[Database] = None) -> FastAPI:
    """Build the API around an explicit database handle (a fresh client when omitted)."""
    app = FastAPI(title="School Feedback API", lifespan=lifespan)
    app.state.db = db if db is not None else connect(config.DATABASE_URL, config.DATABASE_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, model_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s -> %d", request.method, request.url.path, response.status_code)
        return response

    @app.get("/")
    def read_root():
        return {"message": "School Feedback API is running"}

    @app.get("/api/test")
    def test_database(db: Database = Depends(get_db)):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": db.name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        return response

    # ----------------- Posts -----------------
    @app.get("/api/posts")
    def list_posts(db: Database = Depends(get_db)):
        return _public_list(get_documents(db, POSTS, sort=NEWEST_FIRST))

    @app.post("/api/posts", status_code=status.HTTP_201_CREATED)
    def create_post(
        body: PostCreate,
        uid: str = Depends(get_current_uid),
        db: Database = Depends(get_db),
    ):
        post = Post(userId=uid, **body.model_dump())
        pid = create_document(db, POSTS, post)
        saved = db[POSTS].find_one({"_id": ObjectId(pid)})
        logger.info("User %s created post %s", uid, pid)
        return {"message": "Post created successfully", "postId": pid, "post": to_public(saved)}

    @app.get("/api/posts/search")
    def search_posts(query: Optional[str] = None, db: Database = Depends(get_db)):
        if not query or not query.strip():
            raise HTTPException(status_code=400, detail="Search query is required")
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        posts = get_documents(
            db,
            POSTS,
            {"$or": [{"title": pattern}, {"schoolName": pattern}, {"feedback": pattern}]},
            sort=NEWEST_FIRST,
        )
        return _public_list(posts)

    @app.get("/api/posts/filter")
    def filter_posts_by_school_type(schoolType: Optional[str] = None, db: Database = Depends(get_db)):
        if not schoolType:
            raise HTTPException(status_code=400, detail="School type is required")
        query: Dict[str, Any] = {}
        if schoolType != ALL_SCHOOLS:
            names = [s["name"] for s in get_documents(db, SCHOOLS, {"type": schoolType})]
            if not names:
                return []
            query = {"schoolName": {"$in": names}}
        return _public_list(get_documents(db, POSTS, query, sort=NEWEST_FIRST))

    @app.get("/api/posts/schools")
    def list_schools(db: Database = Depends(get_db)):
        return _public_list(get_documents(db, SCHOOLS))

    @app.get("/api/posts/school-ratings/{school_name}")
    def school_ratings(school_name: str, db: Database = Depends(get_db)):
        rows = list(
            db[POSTS].aggregate(
                [
                    {"$match": {"schoolName": school_name}},
                    {
                        "$group": {
                            "_id": None,
                            "averageRating": {"$avg": "$rating"},
                            "totalReviews": {"$sum": 1},
                        }
                    },
                ]
            )
        )
        # Some stores emit a single null-average row for an empty match
        if not rows or not rows[0]["totalReviews"]:
            return {"averageRating": 0, "totalReviews": 0}
        return {"averageRating": rows[0]["averageRating"] or 0, "totalReviews": rows[0]["totalReviews"]}

    @app.get("/api/posts/user/{user_id}", dependencies=[Depends(get_current_uid)])
    def list_user_posts(user_id: str, db: Database = Depends(get_db)):
        posts = get_documents(db, POSTS, {"userId": user_id, "postAnonymously": False}, sort=NEWEST_FIRST)
        return _public_list(posts)

    @app.get("/api/posts/{post_id}")
    def get_post(post_id: str, db: Database = Depends(get_db)):
        post = db[POSTS].find_one({"_id": _post_object_id(post_id)})
        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        return to_public(post)

    @app.put("/api/posts/{post_id}")
    def update_post(
        post_id: str,
        body: Dict[str, Any] = Body(...),
        uid: str = Depends(get_current_uid),
        db: Database = Depends(get_db),
    ):
        oid = _post_object_id(post_id)
        kind = body.get("type")

        if kind == "upvote":
            UpvoteRequest.model_validate(body)
            result = post_updates.toggle_upvote(db, oid, uid)
            if result.notify:
                notifications.notify(db, result.notify, uid, "upvote", oid)
            return {
                "message": "Post upvoted successfully" if result.has_upvoted else "Upvote removed",
                "upvotes": result.upvotes,
                "hasUpvoted": result.has_upvoted,
                "upvotedBy": result.upvoted_by,
            }

        if kind == "comment":
            comment_body = CommentRequest.model_validate(body)
            result = post_updates.add_comment(db, oid, uid, comment_body.text)
            if result.notify:
                notifications.notify(db, result.notify, uid, "comment", oid)
            return {"message": "Comment added successfully", "comment": result.comment}

        post = post_updates.edit_post(db, oid, uid, body)
        return {"message": "Post updated successfully", "post": to_public(post)}

    @app.delete("/api/posts/{post_id}")
    def delete_post(
        post_id: str,
        uid: str = Depends(get_current_uid),
        db: Database = Depends(get_db),
    ):
        post_updates.delete_post(db, _post_object_id(post_id), uid)
        logger.info("User %s deleted post %s", uid, post_id)
        return {"message": "Post deleted successfully"}

    # ----------------- Users -----------------
    @app.get("/api/users")
    def list_users(db: Database = Depends(get_db)):
        return _public_list(get_documents(db, USERS))

    @app.get("/api/users/{user_id}")
    def get_user(user_id: str, db: Database = Depends(get_db)):
        user = db[USERS].find_one({"uid": user_id})
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return {"firstName": user["firstName"], "lastName": user["lastName"], "role": user["role"]}

    @app.post("/api/users", status_code=status.HTTP_201_CREATED)
    def create_user(
        body: UserCreate,
        uid: str = Depends(get_current_uid),
        db: Database = Depends(get_db),
    ):
        if body.uid and body.uid != uid:
            raise HTTPException(status_code=403, detail="Cannot create a user for another identity")
        if db[USERS].find_one({"uid": uid}, {"_id": 1}) is not None:
            raise HTTPException(status_code=409, detail="User already exists")

        user = User(uid=uid, **body.model_dump(exclude={"uid"}))
        try:
            user_id = create_document(db, USERS, user)
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail="User already exists")
        saved = db[USERS].find_one({"_id": ObjectId(user_id)})
        return {"message": "User created successfully", "user": to_public(saved)}

    @app.put("/api/users/{user_id}")
    def update_user(
        user_id: str,
        body: UserUpdate,
        uid: str = Depends(get_current_uid),
        db: Database = Depends(get_db),
    ):
        if user_id != uid:
            raise HTTPException(status_code=403, detail="Unauthorized to edit this user")
        changes = body.model_dump(exclude_none=True)
        if not changes:
            raise HTTPException(status_code=400, detail="No fields to update")
        changes["updatedAt"] = utcnow()

        user = db[USERS].find_one_and_update(
            {"uid": user_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return {"message": "User updated successfully", "user": to_public(user)}

    # ----------------- Notifications -----------------
    @app.get("/api/notifications")
    def list_notifications(uid: str = Depends(get_current_uid), db: Database = Depends(get_db)):
        return _public_list(notifications.get_user_notifications(db, uid))

    @app.get("/api/notifications/unread-count")
    def unread_count(uid: str = Depends(get_current_uid), db: Database = Depends(get_db)):
        return {"count": notifications.count_unread(db, uid)}

    @app.put("/api/notifications/mark-all-read")
    def mark_all_read(uid: str = Depends(get_current_uid), db: Database = Depends(get_db)):
        notifications.mark_all_as_read(db, uid)
        return {"message": "All notifications marked as read"}

    @app.put("/api/notifications/{notification_id}/read")
    def mark_read(
        notification_id: str,
        uid: str = Depends(get_current_uid),
        db: Database = Depends(get_db),
    ):
        oid = parse_object_id(notification_id)
        notification = notifications.mark_as_read(db, uid, oid) if oid is not None else None
        if notification is None:
            raise HTTPException(status_code=404, detail="Notification not found")
        return {"message": "Notification marked as read", "notification": to_public(notification)}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
