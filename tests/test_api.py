from conftest import QUESTIONS


def register_and_login(client, name, password="pw"):
    email = f"{name}@mail.com"
    res = client.post("/auth/register", json={"username": name, "email": email, "password": password})
    assert res.status_code == 200, res.text
    assert res.json() == {"message": "Success"}
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    data = res.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]


def test_root(client):
    assert client.get("/").json() == {"message": "Quizly backend running"}


def test_register_login_scenario(client):
    res = client.post("/auth/register", json={"username": "alice", "email": "a@x.com", "password": "pw"})
    assert res.status_code == 200

    res = client.post("/auth/register", json={"username": "bob", "email": "a@x.com", "password": "pw2"})
    assert res.status_code == 409
    assert res.json() == {"message": "Email already registered"}

    wrong = client.post("/auth/login", json={"email": "a@x.com", "password": "wrong"})
    unknown = client.post("/auth/login", json={"email": "z@x.com", "password": "pw"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"message": "Invalid credentials"}

    res = client.post("/auth/login", json={"email": "a@x.com", "password": "pw"})
    assert res.status_code == 200
    body = res.json()
    assert body["access_token"]
    assert body["user"]["username"] == "alice"
    assert "password_hash" not in body["user"]
    assert "activation_code" not in body["user"]
    assert client.cookies.get("refreshToken")


def test_refresh_and_logout_use_cookie(client):
    register_and_login(client, "alice")
    first = client.cookies.get("refreshToken")

    res = client.get("/auth/refresh")
    assert res.status_code == 200, res.text
    assert res.json()["user"]["username"] == "alice"
    assert client.cookies.get("refreshToken") != first

    assert client.post("/auth/logout").json() == {"message": "Success"}
    assert client.cookies.get("refreshToken") is None
    res = client.get("/auth/refresh")
    assert res.status_code == 401
    assert res.json() == {"message": "Not authorized"}


def test_verify_email_endpoint(client, db):
    register_and_login(client, "alice")
    code = db["user"].find_one({"username": "alice"})["activation_code"]

    assert client.get(f"/auth/verify/{code}").status_code == 200
    assert client.get(f"/auth/verify/{code}").status_code == 404


def test_protected_routes_need_token(client):
    res = client.get("/user")
    assert res.status_code == 401
    res = client.get("/user", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401
    assert res.json() == {"message": "Invalid token"}


def test_access_token_cookie_fallback(client):
    headers, _ = register_and_login(client, "alice")
    token = headers["Authorization"].split()[1]
    res = client.get("/user", headers={"Cookie": f"token={token}"})
    assert res.json()["user"]["username"] == "alice"


def test_profile_and_follow(client):
    alice_headers, alice = register_and_login(client, "alice")
    bob_headers, bob = register_and_login(client, "bob")

    res = client.put("/user", json={"username": "alice", "bio": "hi"}, headers=bob_headers)
    assert res.status_code == 409

    res = client.put("/user", json={"username": "bobby", "bio": "hi"}, headers=bob_headers)
    assert res.status_code == 200
    assert client.get("/user", headers=bob_headers).json()["user"]["username"] == "bobby"

    assert client.put(f"/follow/{alice['id']}", headers=bob_headers).status_code == 204
    assert client.put(f"/follow/{alice['id']}", headers=bob_headers).status_code == 409
    assert client.put(f"/follow/{alice['id']}", headers=alice_headers).status_code == 403
    followers = client.get(f"/followers/{alice['id']}").json()["users"]
    assert [f["username"] for f in followers] == ["bobby"]
    assert client.put(f"/unfollow/{alice['id']}", headers=bob_headers).status_code == 204
    assert client.get(f"/followings/{bob['id']}").json()["users"] == []

    assert client.put("/avatar", json={"avatar_url": "https://cdn.example.org/b.png"}, headers=bob_headers).status_code == 200
    page = client.get(f"/userPage/{bob['id']}").json()["user"]
    assert page["avatar_url"] == "https://cdn.example.org/b.png"
    assert "password_hash" not in page

    assert client.get("/userPage/0123456789ab0123456789ab").status_code == 404
    assert client.get("/userPage/nope").status_code == 400


def test_test_lifecycle_and_discussion(client):
    alice_headers, alice = register_and_login(client, "alice")
    bob_headers, bob = register_and_login(client, "bob")

    res = client.post("/test", json={"title": "Basics", "questions": QUESTIONS}, headers=alice_headers)
    assert res.status_code == 201, res.text
    test = res.json()["test"]
    assert test["author"]["username"] == "alice"

    assert client.post("/submitTest", json={"test_id": test["id"], "answers": [1, 0]}, headers=bob_headers).json() == {
        "score": 2,
        "total": 2,
    }
    passed = client.get(f"/passedTests/{bob['id']}").json()["tests"]
    assert passed[0]["final_result"] == 2

    assert client.put(f"/likeTest/{test['id']}", headers=bob_headers).json() == {"liked": True}
    assert client.put(f"/saveTest/{test['id']}", headers=bob_headers).json() == {"saved": True}
    assert [t["id"] for t in client.get(f"/likedPosts/{bob['id']}").json()["tests"]] == [test["id"]]
    assert [t["id"] for t in client.get("/savedPosts", headers=bob_headers).json()["tests"]] == [test["id"]]

    res = client.post("/comment", json={"test_id": test["id"], "comment": "great"}, headers=bob_headers)
    assert res.status_code == 201
    comment = res.json()["comment"]
    assert comment["author"] == {"id": bob["id"], "username": "bob"}

    res = client.put(
        f"/comment/{comment['id']}", json={"test_id": test["id"], "comment": "stolen"}, headers=alice_headers
    )
    assert res.status_code == 403
    assert res.json() == {"message": "Access denied"}

    assert client.put(f"/likeComment/{comment['id']}", headers=alice_headers).json() == {"liked": True}
    listed = client.get(f"/comments/{test['id']}").json()["comments"]
    assert listed[0]["likes"] == 1
    assert listed[0]["author"] == {"id": bob["id"], "username": "bob"}

    res = client.post(
        "/answer",
        json={"test_id": test["id"], "parent_comment_id": comment["id"], "comment": "thanks"},
        headers=alice_headers,
    )
    assert res.status_code == 201
    answer = res.json()["answer"]
    assert client.put(f"/likeAnswer/{answer['id']}", headers=bob_headers).json() == {"liked": True}
    assert client.put(f"/answer/{answer['id']}", json={"comment": "ty"}, headers=alice_headers).status_code == 200
    assert [a["comment"] for a in client.get(f"/answers/{comment['id']}").json()["answers"]] == ["ty"]

    res = client.delete(f"/comment/{comment['id']}", params={"test_id": test["id"]}, headers=bob_headers)
    assert res.status_code == 200
    assert client.get(f"/answers/{comment['id']}").status_code == 404
    assert client.get(f"/comments/{test['id']}").json()["comments"] == []

    assert client.get("/tests").json()["tests"][0]["id"] == test["id"]
    assert client.post("/tests/search", json={"query": "bas"}).json()["tests"][0]["id"] == test["id"]
    assert client.get("/testsPagination", params={"page": 1, "limit": 5}).json()["total"] == 1
    assert len(client.get(f"/tests/{alice['id']}", headers=bob_headers).json()["tests"]) == 1

    assert client.delete(f"/test/{test['id']}", headers=bob_headers).status_code == 403
    assert client.delete(f"/test/{test['id']}", headers=alice_headers).status_code == 200
    assert client.get(f"/test/{test['id']}").status_code == 404


def test_user_page_respects_privacy_settings(client):
    alice_headers, alice = register_and_login(client, "alice")
    bob_headers, bob = register_and_login(client, "bob")
    test = client.post("/test", json={"title": "Basics", "questions": QUESTIONS}, headers=alice_headers).json()["test"]
    client.put(f"/likeTest/{test['id']}", headers=bob_headers)
    client.post("/submitTest", json={"test_id": test["id"], "answers": [1, 0]}, headers=bob_headers)
    res = client.put(
        "/user",
        json={"username": "bob", "bio": "", "show_liked_posts": False, "show_passed_tests": False},
        headers=bob_headers,
    )
    assert res.status_code == 200, res.text

    private = ("email", "saved_posts", "liked_comments", "liked_answers", "liked_posts", "passed_tests")
    for headers in ({}, alice_headers):
        page = client.get(f"/userPage/{bob['id']}", headers=headers).json()["user"]
        assert page["username"] == "bob"
        assert [field for field in private if field in page] == []

    own = client.get(f"/userPage/{bob['id']}", headers=bob_headers).json()["user"]
    assert own["email"] == "bob@mail.com"
    assert own["liked_posts"] == [test["id"]]
    assert own["passed_tests"] == [{"test_id": test["id"], "score": 2}]


def test_create_test_rejects_out_of_range_answer(client):
    headers, _ = register_and_login(client, "alice")
    questions = [{"question": "2 + 2?", "options": ["3", "4"], "correct": 5}]

    res = client.post("/test", json={"title": "Broken", "questions": questions}, headers=headers)
    assert res.status_code == 422
    assert client.get("/tests").json()["tests"] == []
