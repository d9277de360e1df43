"""HTTP tests for the posts routes, including the upvote/comment notification flow."""

import pytest

from database import POSTS


def _notifications(client, auth_headers, uid):
    resp = client.get("/api/notifications", headers=auth_headers(uid))
    assert resp.status_code == 200
    return resp.json()


# --- create ---

def test_create_post_owned_by_caller(client, auth_headers, sample_post):
    resp = client.post("/api/posts", json={**sample_post, "userId": "mallory"}, headers=auth_headers("alice"))
    assert resp.status_code == 201
    data = resp.json()
    assert data["message"] == "Post created successfully"
    post = data["post"]
    assert post["id"] == data["postId"]
    assert post["userId"] == "alice"
    assert post["upvotes"] == 0
    assert post["upvotedBy"] == []
    assert post["comments"] == []


def test_create_post_requires_auth(client, sample_post):
    resp = client.post("/api/posts", json=sample_post)
    assert resp.status_code == 401
    assert resp.json()["message"] == "No authorization header"


@pytest.mark.parametrize("rating", [0, 6, 3.5])
def test_create_post_rejects_bad_rating(client, auth_headers, sample_post, rating):
    resp = client.post("/api/posts", json={**sample_post, "rating": rating}, headers=auth_headers("alice"))
    assert resp.status_code == 400
    assert "rating" in resp.json()["message"]


@pytest.mark.parametrize("rating", [1, 5])
def test_create_post_accepts_rating_bounds(client, auth_headers, sample_post, rating):
    resp = client.post("/api/posts", json={**sample_post, "rating": rating}, headers=auth_headers("alice"))
    assert resp.status_code == 201
    assert resp.json()["post"]["rating"] == rating


def test_create_post_rejects_blank_title(client, auth_headers, sample_post):
    resp = client.post("/api/posts", json={**sample_post, "title": "   "}, headers=auth_headers("alice"))
    assert resp.status_code == 400


# --- read ---

def test_get_post(client, create_post):
    pid = create_post()
    resp = client.get(f"/api/posts/{pid}")
    assert resp.status_code == 200
    assert resp.json()["title"] == "Great teachers"


@pytest.mark.parametrize("pid", ["not-an-id", "64b7f0c2a1b2c3d4e5f60718"])
def test_get_post_not_found(client, pid):
    resp = client.get(f"/api/posts/{pid}")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Post not found"


def test_list_posts(client, create_post):
    create_post()
    create_post(uid="bob", title="Second")
    resp = client.get("/api/posts")
    assert resp.status_code == 200
    assert {p["title"] for p in resp.json()} == {"Great teachers", "Second"}


def test_user_posts_hide_anonymous(client, auth_headers, create_post):
    create_post(uid="alice", title="Public")
    create_post(uid="alice", title="Secret", postAnonymously=True)
    create_post(uid="bob", title="Other")
    resp = client.get("/api/posts/user/alice", headers=auth_headers("bob"))
    assert resp.status_code == 200
    assert [p["title"] for p in resp.json()] == ["Public"]


def test_user_posts_require_auth(client):
    assert client.get("/api/posts/user/alice").status_code == 401


# --- search / filter / schools ---

def test_search_matches_title_school_and_feedback(client, create_post):
    create_post(title="Amazing labs")
    create_post(schoolName="Amjilt Cyber", title="Coding")
    create_post(feedback="Too much homework", title="Tired")
    resp = client.get("/api/posts/search", params={"query": "AM"})
    assert resp.status_code == 200
    assert {p["title"] for p in resp.json()} == {"Amazing labs", "Coding"}

    resp = client.get("/api/posts/search", params={"query": "HOMEWORK"})
    assert [p["title"] for p in resp.json()] == ["Tired"]


def test_search_treats_query_literally(client, create_post):
    create_post(title="Rated 5/5 (really)")
    create_post(title="Plain")
    resp = client.get("/api/posts/search", params={"query": "(really)"})
    assert [p["title"] for p in resp.json()] == ["Rated 5/5 (really)"]


def test_search_requires_query(client):
    resp = client.get("/api/posts/search")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Search query is required"


def test_filter_by_school_type(client, create_post):
    create_post(schoolName="School No. 1", title="Public one")
    create_post(schoolName="Tsonjin Boarding", title="Private one")

    private = client.get("/api/posts/filter", params={"schoolType": "Private"}).json()
    assert [p["title"] for p in private] == ["Private one"]

    everything = client.get("/api/posts/filter", params={"schoolType": "All Schools"}).json()
    assert len(everything) == 2

    assert client.get("/api/posts/filter", params={"schoolType": "Charter"}).json() == []
    assert client.get("/api/posts/filter").status_code == 400


def test_schools_are_seeded(client):
    resp = client.get("/api/posts/schools")
    assert resp.status_code == 200
    schools = resp.json()
    assert len(schools) == 7
    assert all("id" in s and "_id" not in s for s in schools)


def test_school_ratings(client, create_post):
    create_post(schoolName="School No. 4", rating=5)
    create_post(schoolName="School No. 4", rating=2)
    resp = client.get("/api/posts/school-ratings/School No. 4")
    assert resp.json() == {"averageRating": 3.5, "totalReviews": 2}

    empty = client.get("/api/posts/school-ratings/Nowhere")
    assert empty.json() == {"averageRating": 0, "totalReviews": 0}


# --- upvote flow ---

def test_upvote_toggle_and_notification(client, auth_headers, create_post):
    pid = create_post(uid="alice")

    resp = client.put(f"/api/posts/{pid}", json={"type": "upvote"}, headers=auth_headers("bob"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["upvotes"] == 1
    assert data["hasUpvoted"] is True
    assert data["upvotedBy"] == ["bob"]

    notes = _notifications(client, auth_headers, "alice")
    assert len(notes) == 1
    assert notes[0]["sender"] == "bob"
    assert notes[0]["type"] == "upvote"
    assert notes[0]["postId"] == pid
    assert notes[0]["read"] is False

    resp = client.put(f"/api/posts/{pid}", json={"type": "upvote"}, headers=auth_headers("bob"))
    data = resp.json()
    assert data["message"] == "Upvote removed"
    assert data["upvotes"] == 0
    assert data["hasUpvoted"] is False
    assert data["upvotedBy"] == []

    assert len(_notifications(client, auth_headers, "alice")) == 1


def test_self_upvote_and_comment_do_not_notify(client, auth_headers, create_post):
    pid = create_post(uid="alice")
    client.put(f"/api/posts/{pid}", json={"type": "upvote"}, headers=auth_headers("alice"))
    client.put(f"/api/posts/{pid}", json={"type": "comment", "text": "bump"}, headers=auth_headers("alice"))
    assert _notifications(client, auth_headers, "alice") == []


def test_upvote_requires_auth(client, create_post):
    pid = create_post()
    assert client.put(f"/api/posts/{pid}", json={"type": "upvote"}).status_code == 401


# --- comments ---

def test_comment_flow(client, auth_headers, create_post):
    pid = create_post(uid="alice")
    resp = client.put(
        f"/api/posts/{pid}", json={"type": "comment", "text": "  Nice review  "}, headers=auth_headers("bob")
    )
    assert resp.status_code == 200
    comment = resp.json()["comment"]
    assert comment["text"] == "Nice review"
    assert comment["userId"] == "bob"
    assert comment["id"]

    post = client.get(f"/api/posts/{pid}").json()
    assert [c["text"] for c in post["comments"]] == ["Nice review"]

    notes = _notifications(client, auth_headers, "alice")
    assert [(n["type"], n["sender"]) for n in notes] == [("comment", "bob")]


@pytest.mark.parametrize("body", [{"type": "comment"}, {"type": "comment", "text": "   "}])
def test_comment_requires_text(client, auth_headers, create_post, body):
    pid = create_post()
    resp = client.put(f"/api/posts/{pid}", json=body, headers=auth_headers("bob"))
    assert resp.status_code == 400


def test_comment_on_missing_post(client, auth_headers):
    resp = client.put(
        "/api/posts/64b7f0c2a1b2c3d4e5f60718", json={"type": "comment", "text": "hi"}, headers=auth_headers("bob")
    )
    assert resp.status_code == 404


# --- edit / delete ---

def test_owner_can_edit(client, auth_headers, create_post, sample_post):
    pid = create_post(uid="alice")
    changes = {**sample_post, "title": "Updated", "rating": 1}
    resp = client.put(f"/api/posts/{pid}", json=changes, headers=auth_headers("alice"))
    assert resp.status_code == 200
    post = resp.json()["post"]
    assert post["title"] == "Updated"
    assert post["rating"] == 1


def test_non_owner_edit_rejected(client, auth_headers, create_post, sample_post):
    pid = create_post(uid="alice")
    before = client.get(f"/api/posts/{pid}").json()
    resp = client.put(f"/api/posts/{pid}", json={**sample_post, "title": "Hijacked"}, headers=auth_headers("bob"))
    assert resp.status_code == 403
    assert resp.json()["message"] == "Unauthorized to edit this post"
    assert client.get(f"/api/posts/{pid}").json() == before


@pytest.mark.parametrize("rating", [0, 6])
def test_edit_rejects_out_of_range_rating(client, auth_headers, create_post, sample_post, rating):
    pid = create_post(uid="alice")
    resp = client.put(f"/api/posts/{pid}", json={**sample_post, "rating": rating}, headers=auth_headers("alice"))
    assert resp.status_code == 400
    assert client.get(f"/api/posts/{pid}").json()["rating"] == sample_post["rating"]


def test_delete_post(client, auth_headers, create_post):
    pid = create_post(uid="alice")
    assert client.delete(f"/api/posts/{pid}", headers=auth_headers("bob")).status_code == 403
    resp = client.delete(f"/api/posts/{pid}", headers=auth_headers("alice"))
    assert resp.status_code == 200
    assert resp.json()["message"] == "Post deleted successfully"
    assert client.get(f"/api/posts/{pid}").status_code == 404
    assert client.delete(f"/api/posts/{pid}", headers=auth_headers("alice")).status_code == 404


def test_non_owner_partial_edit_rejected_as_forbidden(client, auth_headers, create_post):
    pid = create_post(uid="alice")
    resp = client.put(f"/api/posts/{pid}", json={"title": "Hijacked"}, headers=auth_headers("bob"))
    assert resp.status_code == 403
    assert resp.json()["message"] == "Unauthorized to edit this post"
    assert client.get(f"/api/posts/{pid}").json()["title"] == "Great teachers"


def test_owner_partial_edit_is_a_validation_error(client, auth_headers, create_post):
    pid = create_post(uid="alice")
    resp = client.put(f"/api/posts/{pid}", json={"title": "Only title"}, headers=auth_headers("alice"))
    assert resp.status_code == 400
    assert "rating" in resp.json()["message"]


def test_school_ratings_never_null(client, db):
    db[POSTS].insert_one({"userId": "alice", "schoolName": "School No. 5", "title": "No stars"})
    resp = client.get("/api/posts/school-ratings/School No. 5")
    assert resp.json() == {"averageRating": 0, "totalReviews": 1}
