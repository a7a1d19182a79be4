import pytest

from appportal.app import ServiceContext, create_app
from appportal.auth import ACCESS_TOKEN_COOKIE, Identity, issue_session_token
from appportal.config import Settings

SECRET = "portal-testing-secret-0123456789abcdef"


@pytest.fixture()
def context(tmp_path):
    settings = Settings(jwt_secret=SECRET, sqlite_path=tmp_path / "database.db")
    return ServiceContext.from_settings(settings)


@pytest.fixture()
def client(context):
    return create_app(context).test_client()


def _login_as(client, context, email: str, role: str) -> None:
    context.users.insert({"email": email, "role": role, "name": email.split("@")[0]})
    response = client.post("/jwt", json={"email": email})
    assert response.status_code == 200


def test_list_assignments_is_public_and_initially_empty(client):
    response = client.get("/assignments")

    assert response.status_code == 200
    assert response.get_json() == []


def test_create_assignment_requires_session(client):
    response = client.post("/assignments", json={"title": "Essay"})

    assert response.status_code == 401


def test_create_assignment_rejects_students(client, context):
    _login_as(client, context, "stu@example.com", "student")

    response = client.post("/assignments", json={"title": "Essay"})

    assert response.status_code == 403
    assert response.get_json() == {"message": "Insufficient permissions"}


def test_create_assignment_rejects_session_without_role(client):
    token = issue_session_token(Identity(email="x@example.com", user_id="d" * 24), SECRET)
    client.set_cookie(ACCESS_TOKEN_COOKIE, token)

    response = client.post("/assignments", json={"title": "Essay"})

    assert response.status_code == 403
    assert response.get_json() == {"message": "Role required"}


def test_create_assignment_rejects_unknown_role(client, context):
    _login_as(client, context, "root@example.com", "admin")

    response = client.post("/assignments", json={"title": "Essay"})

    assert response.status_code == 403
    assert response.get_json() == {"message": "Insufficient permissions"}


@pytest.mark.parametrize("stored_role", ["Instructor", " instructor ", "INSTRUCTOR"])
def test_create_assignment_requires_exact_role_value(client, context, stored_role):
    _login_as(client, context, "prof@example.com", stored_role)

    response = client.post("/assignments", json={"title": "Essay"})

    assert response.status_code == 403
    assert response.get_json() == {"message": "Insufficient permissions"}
    assert client.get("/assignments").get_json() == []


def test_instructor_creates_assignment_with_server_fields(client, context):
    _login_as(client, context, "prof@example.com", "instructor")

    response = client.post(
        "/assignments",
        json={
            "title": "Essay",
            "description": "Write 500 words",
            "createdBy": "someone-else@example.com",
        },
    )

    assert response.status_code == 201
    payload = response.get_json()
    assert payload["message"] == "Assignment created successfully"
    assignment_id = payload["assignmentId"]
    assert len(assignment_id) == 24

    listed = client.get("/assignments").get_json()
    assert len(listed) == 1
    assignment = listed[0]
    assert assignment["_id"] == assignment_id
    assert assignment["title"] == "Essay"
    assert assignment["description"] == "Write 500 words"
    assert assignment["createdBy"] == "prof@example.com"
    assert assignment["createdAt"]


def test_delete_missing_assignment_returns_404(client, context):
    _login_as(client, context, "prof@example.com", "instructor")

    response = client.delete("/assignments/" + "0" * 24)

    assert response.status_code == 404
    assert response.get_json() == {"message": "Assignment not found"}


def test_delete_assignment_removes_it_from_listing(client, context):
    _login_as(client, context, "prof@example.com", "instructor")
    keep_id = client.post("/assignments", json={"title": "Keep"}).get_json()["assignmentId"]
    drop_id = client.post("/assignments", json={"title": "Drop"}).get_json()["assignmentId"]

    response = client.delete(f"/assignments/{drop_id}")

    assert response.status_code == 200
    assert response.get_json() == {"message": "Assignment deleted successfully"}
    remaining = [item["_id"] for item in client.get("/assignments").get_json()]
    assert remaining == [keep_id]
    assert client.delete(f"/assignments/{drop_id}").status_code == 404


def test_delete_assignment_requires_instructor(client, context):
    context.assignments.insert({"title": "Essay"}, created_by="prof@example.com")
    assignment_id = context.assignments.find_all()[0]["_id"]
    _login_as(client, context, "stu@example.com", "student")

    response = client.delete(f"/assignments/{assignment_id}")

    assert response.status_code == 403
    assert len(client.get("/assignments").get_json()) == 1


def test_delete_with_malformed_id_returns_500(client, context):
    _login_as(client, context, "prof@example.com", "instructor")

    response = client.delete("/assignments/not-an-id")

    assert response.status_code == 500
    assert response.get_json() == {"message": "internal server error"}


def test_delete_reports_500_when_row_vanishes_between_check_and_delete(
    client, context, monkeypatch
):
    _login_as(client, context, "prof@example.com", "instructor")
    assignment_id = client.post("/assignments", json={"title": "Essay"}).get_json()["assignmentId"]
    original_delete = context.assignments.delete_by_id

    def racing_delete(target_id):
        original_delete(target_id)
        return original_delete(target_id)

    monkeypatch.setattr(context.assignments, "delete_by_id", racing_delete)

    response = client.delete(f"/assignments/{assignment_id}")

    assert response.status_code == 500
    assert response.get_json() == {"message": "Failed to delete assignment"}
