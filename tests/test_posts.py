from bson import ObjectId
from fastapi.testclient import TestClient

import main


def post_payload(**overrides):
    data = {
        "title": "Lost beagle near the park",
        "postType": "missing",
        "petName": "Biscuit",
        "petType": "Dog",
        "petBreed": "Beagle",
        "petColor": "Brown and white",
        "description": "Wearing a red collar, very friendly.",
        "location": {"coordinates": [120.9842, 14.5995], "address": "Rizal Park", "city": "Manila", "state": "NCR"},
        "lastSeenDate": "2024-05-01T10:00:00",
    }
    data.update(overrides)
    return data


def create_post(client, **overrides):
    r = client.post("/api/posts", json=post_payload(**overrides))
    assert r.status_code == 201, r.text
    return r.json()["data"]


def test_missing_post_requires_last_seen_date(client, login_as):
    login_as("user")
    payload = post_payload()
    del payload["lastSeenDate"]
    r = client.post("/api/posts", json=payload)
    assert r.status_code == 400
    assert "lastSeenDate" in r.json()["message"]

    r = client.post("/api/posts", json=post_payload())
    assert r.status_code == 201
    post = r.json()["data"]
    assert post["status"] == "active"
    assert post["views"] == 0
    assert post["isEmergency"] is False
    assert post["location"]["type"] == "Point"
    assert post["city"] == "Manila"


def test_emergency_post_without_last_seen_date(client, login_as):
    login_as("user")
    payload = post_payload(postType="emergency", title="Hit by a car")
    del payload["lastSeenDate"]
    r = client.post("/api/posts", json=payload)
    assert r.status_code == 201
    assert r.json()["data"]["isEmergency"] is True


def test_post_requires_location_and_login(client, login_as):
    assert client.post("/api/posts", json=post_payload()).status_code == 401
    login_as("user")
    payload = post_payload(postType="wounded")
    del payload["location"]
    r = client.post("/api/posts", json=payload)
    assert r.status_code == 400


def test_coordinates_default_and_range(client, login_as):
    login_as("user")
    post = create_post(client, location={"address": "Somewhere", "city": "Quezon City"})
    assert post["location"]["coordinates"] == [0.0, 0.0]

    r = client.post("/api/posts", json=post_payload(location={"coordinates": [200, 10], "address": "Nowhere"}))
    assert r.status_code == 400


def test_views_increment_on_every_read(client, login_as, db):
    login_as("user")
    post = create_post(client)
    client.get(f"/api/posts/{post['id']}")
    r = client.get(f"/api/posts/{post['id']}")
    assert r.json()["data"]["views"] == 2
    from bson import ObjectId
    assert db["petpost"].find_one({"_id": ObjectId(post["id"])})["views"] == 2


def test_unknown_post_is_404(client):
    assert client.get("/api/posts/not-an-id").status_code == 404
    assert client.get("/api/posts/65f000000000000000000000").status_code == 404


def test_resolve_is_idempotent(client, login_as, db):
    login_as("user")
    post = create_post(client)

    r = client.patch(f"/api/posts/{post['id']}", json={"action": "resolve"})
    assert r.status_code == 200
    first = r.json()["data"]
    assert first["status"] == "resolved"
    assert first["resolvedAt"] and first["resolvedBy"]

    r = client.patch(f"/api/posts/{post['id']}", json={"action": "resolve"})
    assert r.status_code == 200
    second = r.json()["data"]
    assert second["resolvedAt"] == first["resolvedAt"]
    assert second["resolvedBy"] == first["resolvedBy"]


def test_vet_can_resolve_but_stranger_cannot(client, login_as, make_user):
    login_as("user")
    post = create_post(client)

    stranger = TestClient(main.app)
    user = make_user()
    stranger.post("/api/auth/login", json={"email": user["email"], "password": "Passw0rd1"})
    assert stranger.patch(f"/api/posts/{post['id']}", json={"action": "resolve"}).status_code == 403

    vet_client = TestClient(main.app)
    vet = make_user(role="vet")
    vet_client.post("/api/auth/login", json={"email": vet["email"], "password": "Passw0rd1"})
    r = vet_client.patch(f"/api/posts/{post['id']}", json={"action": "resolve"})
    assert r.status_code == 200
    assert r.json()["data"]["resolvedBy"] == str(vet["_id"])


def test_comments_only_while_active(client, login_as):
    user = login_as("user")
    post = create_post(client)

    r = client.patch(f"/api/posts/{post['id']}", json={"action": "comment", "text": "  "})
    assert r.status_code == 400

    r = client.patch(f"/api/posts/{post['id']}", json={"action": "comment", "text": "Saw him on 5th street"})
    assert r.status_code == 200
    comments = r.json()["data"]["comments"]
    assert len(comments) == 1
    assert comments[0]["text"] == "Saw him on 5th street"
    assert comments[0]["userId"] == str(user["_id"])
    assert comments[0]["id"]

    client.patch(f"/api/posts/{post['id']}", json={"action": "resolve"})
    r = client.patch(f"/api/posts/{post['id']}", json={"action": "comment", "text": "Too late"})
    assert r.status_code == 400


def test_invalid_action(client, login_as):
    login_as("user")
    post = create_post(client)
    r = client.patch(f"/api/posts/{post['id']}", json={"action": "archive"})
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid action"


def test_close_is_admin_only_and_blocks_resolve(client, login_as, make_user):
    login_as("user")
    post = create_post(client)
    assert client.patch(f"/api/posts/{post['id']}", json={"action": "close"}).status_code == 403

    admin_client = TestClient(main.app)
    admin = make_user(role="admin")
    admin_client.post("/api/auth/login", json={"email": admin["email"], "password": "Passw0rd1"})
    r = admin_client.patch(f"/api/posts/{post['id']}", json={"action": "close"})
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "closed"

    r = client.patch(f"/api/posts/{post['id']}", json={"action": "resolve"})
    assert r.status_code == 400


def test_update_is_owner_only(client, login_as, make_user):
    login_as("user")
    post = create_post(client)

    r = client.put(f"/api/posts/{post['id']}", json={"title": "Found near the market", "petColor": "Tan"})
    assert r.status_code == 200
    assert r.json()["data"]["title"] == "Found near the market"

    admin_client = TestClient(main.app)
    admin = make_user(role="admin")
    admin_client.post("/api/auth/login", json={"email": admin["email"], "password": "Passw0rd1"})
    assert admin_client.put(f"/api/posts/{post['id']}", json={"title": "Hijack"}).status_code == 403


def test_delete_is_admin_only(client, login_as, make_user, db):
    login_as("user")
    post = create_post(client)
    assert client.delete(f"/api/posts/{post['id']}").status_code == 403

    admin_client = TestClient(main.app)
    admin = make_user(role="admin")
    admin_client.post("/api/auth/login", json={"email": admin["email"], "password": "Passw0rd1"})
    assert admin_client.delete(f"/api/posts/{post['id']}").status_code == 200
    assert db["petpost"].count_documents({}) == 0


def test_list_filters_and_pagination(client, login_as):
    login_as("user")
    create_post(client, title="Missing tabby", petType="Cat", petBreed="Tabby")
    create_post(client, title="Injured pup", postType="wounded", petName="Pup")
    create_post(client, title="Emergency kitten", postType="emergency", petType="Cat", location={"address": "Main St", "city": "Cebu City"})

    r = client.get("/api/posts", params={"petType": "cat"})
    assert r.json()["pagination"]["total"] == 2

    r = client.get("/api/posts", params={"isEmergency": "true"})
    assert [p["title"] for p in r.json()["data"]] == ["Emergency kitten"]

    r = client.get("/api/posts", params={"search": "tabby"})
    assert [p["title"] for p in r.json()["data"]] == ["Missing tabby"]

    r = client.get("/api/posts", params={"city": "cebu"})
    assert r.json()["pagination"]["total"] == 1

    r = client.get("/api/posts", params={"dateRange": "today", "limit": 2})
    assert r.json()["pagination"] == {"total": 3, "page": 1, "limit": 2, "pages": 2}

    assert client.get("/api/posts", params={"dateRange": "decade"}).status_code == 400


def test_nearby_posts(client, login_as):
    login_as("user")
    create_post(client, title="Near", location={"coordinates": [120.9842, 14.5995], "address": "Rizal Park"})
    create_post(client, title="Far", location={"coordinates": [123.8854, 10.3157], "address": "Cebu"})

    r = client.get("/api/posts/nearby", params={"longitude": 120.99, "latitude": 14.60, "distance": 5})
    assert r.status_code == 200
    data = r.json()["data"]
    assert [p["title"] for p in data] == ["Near"]
    assert data[0]["distance"] < 5


def test_my_posts(client, login_as, make_user, db):
    user = login_as("user")
    create_post(client)
    db["petpost"].insert_one({"userId": make_user()["_id"], "title": "Someone else's", "status": "active"})

    r = client.get("/api/user/posts")
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 1
    assert r.json()["data"][0]["author"]["id"] == str(user["_id"])


def test_admin_post_stats(client, login_as):
    login_as("admin")
    create_post(client)
    create_post(client, postType="wounded")

    r = client.get("/api/admin/posts/stats")
    assert r.status_code == 200
    stats = r.json()["data"]
    assert stats["total"] == 2
    assert stats["byType"] == {"missing": 1, "emergency": 0, "wounded": 1}
    assert stats["byStatus"]["active"] == 2

    r = client.get("/api/admin/posts", params={"postType": "wounded"})
    assert r.json()["pagination"]["total"] == 1


def test_update_rejects_null_required_fields(client, login_as, db):
    login_as("user")
    post = create_post(client)

    r = client.put(f"/api/posts/{post['id']}", json={"location": None, "title": None, "description": None})
    assert r.status_code == 400
    assert r.json()["message"] == "Validation failed"
    assert client.put(f"/api/posts/{post['id']}", json={"petType": ""}).status_code == 400
    assert client.put(f"/api/posts/{post['id']}", json={"lastSeenDate": None}).status_code == 400

    stored = db["petpost"].find_one({"_id": ObjectId(post["id"])})
    assert stored["title"] == "Lost beagle near the park"
    assert stored["location"]["type"] == "Point"
    assert stored["lastSeenDate"] is not None

    r = client.put(f"/api/posts/{post['id']}", json={"petBreed": None, "location": {"address": "Luneta"}})
    assert r.status_code == 200
    assert r.json()["data"]["location"]["type"] == "Point"
    assert r.json()["data"]["location"]["coordinates"] == [0.0, 0.0]
