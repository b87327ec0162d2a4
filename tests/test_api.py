import inspect
from datetime import timedelta

from fastapi.routing import APIRoute

import main
from auth import create_access_token


def register(client, name, email):
    response = client.post("/register", json={"name": name, "email": email})
    assert response.status_code == 201, response.text
    return response.json()


def login(client, email, passcode):
    response = client.post("/token", json={"email": email, "passcode": passcode})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_register_login_and_me(client):
    ada = register(client, "Ada", "ada@tracker.io")
    bob = register(client, "Bob", "bob@tracker.io")
    assert ada["user"]["is_creator"] is True
    assert bob["user"]["is_creator"] is False
    assert "passcode_hash" not in ada["user"]

    headers = login(client, "ada@tracker.io", ada["passcode"])
    me = client.get("/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "ada@tracker.io"


def test_duplicate_registration_conflicts(client):
    register(client, "Ada", "ada@tracker.io")
    response = client.post("/register", json={"name": "Ada", "email": "ada@tracker.io"})
    assert response.status_code == 409
    assert response.json()["detail"] == "Email already registered"


def test_bad_login(client):
    register(client, "Ada", "ada@tracker.io")
    response = client.post("/token", json={"email": "ada@tracker.io", "passcode": "nope"})
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_requests_without_valid_session_are_unauthorized(client):
    assert client.get("/projects").status_code == 401
    assert client.post("/tasks", json={"title": "T", "project_id": "p"}).status_code == 401
    assert client.get("/dashboard", headers={"Authorization": "Bearer garbage"}).status_code == 401

    expired = create_access_token("someone", expires_delta=timedelta(minutes=-1))
    assert client.get("/users/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401


def test_token_for_deleted_identity_is_rejected(client):
    token = create_access_token("ghost")
    assert client.get("/users/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_project_workflow(client):
    ada = register(client, "Ada", "ada@tracker.io")
    bob = register(client, "Bob", "bob@tracker.io")
    ada_h = login(client, "ada@tracker.io", ada["passcode"])
    bob_h = login(client, "bob@tracker.io", bob["passcode"])

    assert client.post("/projects", json={"name": "Nope"}, headers=bob_h).status_code == 403

    project = client.post("/projects", json={"name": "P", "description": "d"}, headers=ada_h).json()
    pid = project["id"]
    assert client.get(f"/projects/{pid}", headers=bob_h).status_code == 403

    added = client.post(f"/projects/{pid}/members", json={"email": "bob@tracker.io"}, headers=ada_h)
    assert added.status_code == 201
    members = client.get(f"/projects/{pid}/members", headers=bob_h).json()
    assert [m["role"] for m in members] == ["creator", "member"]

    task = client.post(
        "/tasks",
        json={"title": "T1", "project_id": pid, "due_date": "2026-05-01", "assigned_to": bob["user"]["id"]},
        headers=ada_h,
    )
    assert task.status_code == 201
    tid = task.json()["id"]
    client.post("/tasks", json={"title": "T2", "project_id": pid}, headers=ada_h)

    assert len(client.get(f"/projects/{pid}/tasks", headers=bob_h).json()) == 2
    assert client.get("/tasks", params={"status": "To Do"}, headers=bob_h).status_code == 200
    assert client.put(f"/tasks/{tid}/status", json={"status": "Completed"}, headers=bob_h).status_code == 403
    assert client.delete(f"/tasks/{tid}", headers=bob_h).status_code == 403
    assert client.delete(f"/projects/{pid}/members/{ada['user']['id']}", headers=ada_h).status_code == 403

    done = client.put(f"/tasks/{tid}/status", json={"status": "Completed"}, headers=ada_h)
    assert done.json()["status"] == "Completed"

    dashboard = client.get("/dashboard", headers=bob_h).json()
    assert dashboard["status_counts"]["Completed"] == 1

    assert client.delete(f"/projects/{pid}", headers=ada_h).status_code == 204
    assert client.get("/projects", headers=bob_h).json() == []
    assert client.get(f"/tasks/{tid}", headers=ada_h).status_code == 404


def test_invalid_status_is_rejected(client):
    ada = register(client, "Ada", "ada@tracker.io")
    headers = login(client, "ada@tracker.io", ada["passcode"])
    pid = client.post("/projects", json={"name": "P"}, headers=headers).json()["id"]

    response = client.post("/tasks", json={"title": "T", "project_id": pid, "status": "Done"}, headers=headers)
    assert response.status_code == 422


def test_change_passcode_over_http(client):
    ada = register(client, "Ada", "ada@tracker.io")
    headers = login(client, "ada@tracker.io", ada["passcode"])

    mismatch = client.post(
        "/users/me/passcode",
        json={"current_passcode": ada["passcode"], "new_passcode": "ABCDEFGH", "confirm_passcode": "ABCDEFGX"},
        headers=headers,
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"] == "New passcodes do not match"

    changed = client.post(
        "/users/me/passcode",
        json={"current_passcode": ada["passcode"], "new_passcode": "ABCDEFGH", "confirm_passcode": "ABCDEFGH"},
        headers=headers,
    )
    assert changed.status_code == 204
    login(client, "ada@tracker.io", "ABCDEFGH")


def test_storage_failure_is_reported(client, storage):
    ada = register(client, "Ada", "ada@tracker.io")
    headers = login(client, "ada@tracker.io", ada["passcode"])
    storage.timeout = 0.05
    storage._lock.acquire()
    try:
        response = client.get("/projects", headers=headers)
    finally:
        storage._lock.release()
    assert response.status_code == 503
    assert "try again" in response.json()["detail"]


def test_route_handlers_run_in_threadpool():
    endpoints = [route.endpoint for route in main.app.routes if isinstance(route, APIRoute)]
    assert endpoints
    assert not any(inspect.iscoroutinefunction(endpoint) for endpoint in endpoints)


def test_my_tasks_over_http(client):
    ada = register(client, "Ada", "ada@tracker.io")
    bob = register(client, "Bob", "bob@tracker.io")
    ada_h = login(client, "ada@tracker.io", ada["passcode"])
    bob_h = login(client, "bob@tracker.io", bob["passcode"])

    pid = client.post("/projects", json={"name": "P"}, headers=ada_h).json()["id"]
    client.post(f"/projects/{pid}/members", json={"email": "bob@tracker.io"}, headers=ada_h)
    client.post("/tasks", json={"title": "For Bob", "project_id": pid, "assigned_to": bob["user"]["id"]}, headers=ada_h)
    client.post("/tasks", json={"title": "Other", "project_id": pid}, headers=ada_h)

    mine = client.get("/tasks", params={"assigned_to": "me"}, headers=bob_h).json()
    assert [(t["title"], t["project_name"], t["assignee_email"]) for t in mine] == [("For Bob", "P", "bob@tracker.io")]
    scoped = client.get(f"/projects/{pid}/tasks", params={"assigned_to": "me"}, headers=bob_h).json()
    assert [t["title"] for t in scoped] == ["For Bob"]
    assert [t["title"] for t in client.get("/dashboard", headers=bob_h).json()["my_tasks"]] == ["For Bob"]
