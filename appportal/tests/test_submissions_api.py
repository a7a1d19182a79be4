import pytest

from appportal.app import ServiceContext, create_app
from appportal.config import Settings


@pytest.fixture()
def context(tmp_path):
    settings = Settings(
        jwt_secret="portal-testing-secret-0123456789abcdef",
        sqlite_path=tmp_path / "database.db",
    )
    return ServiceContext.from_settings(settings)


@pytest.fixture()
def app(context):
    return create_app(context)


def _client_for(app, context, email: str, role: str):
    context.users.insert({"email": email, "role": role, "name": email.split("@")[0]})
    client = app.test_client()
    response = client.post("/jwt", json={"email": email})
    assert response.status_code == 200
    return client


def test_student_submission_is_always_pending(app, context):
    student = _client_for(app, context, "stu@example.com", "student")

    response = student.post(
        "/submissions",
        json={
            "assignmentId": "a" * 24,
            "link": "https://example.com/work",
            "status": "Approved",
            "submittedBy": "forged@example.com",
        },
    )

    assert response.status_code == 201
    payload = response.get_json()
    assert payload["message"] == "Submission created successfully"
    listed = app.test_client().get("/submissions").get_json()
    assert len(listed) == 1
    submission = listed[0]
    assert submission["_id"] == payload["submissionId"]
    assert submission["status"] == "Pending"
    assert submission["submittedBy"] == "stu@example.com"
    assert submission["link"] == "https://example.com/work"
    assert submission["submittedAt"]
    assert "reviewedAt" not in submission


def test_instructor_cannot_submit(app, context):
    instructor = _client_for(app, context, "prof@example.com", "instructor")

    response = instructor.post("/submissions", json={"link": "x"})

    assert response.status_code == 403


def test_submission_requires_session(app):
    response = app.test_client().post("/submissions", json={"link": "x"})

    assert response.status_code == 401


def test_instructor_reviews_pending_submission(app, context):
    student = _client_for(app, context, "stu@example.com", "student")
    instructor = _client_for(app, context, "prof@example.com", "instructor")
    submission_id = student.post("/submissions", json={"link": "x"}).get_json()["submissionId"]

    response = instructor.patch(
        f"/submissions/{submission_id}",
        json={"status": "Approved", "feedback": "Nice work"},
    )

    assert response.status_code == 200
    assert response.get_json() == {"message": "Submission reviewed successfully"}
    submission = app.test_client().get("/submissions").get_json()[0]
    assert submission["status"] == "Approved"
    assert submission["feedback"] == "Nice work"
    assert submission["reviewedBy"] == "prof@example.com"
    assert submission["reviewedAt"]


@pytest.mark.parametrize(
    "feedback",
    [
        {"score": 9, "notes": ["ok", "cite sources"]},
        ["first", "second"],
        7,
        None,
        "",
    ],
)
def test_review_feedback_keeps_its_json_value(app, context, feedback):
    student = _client_for(app, context, "stu@example.com", "student")
    instructor = _client_for(app, context, "prof@example.com", "instructor")
    submission_id = student.post("/submissions", json={"link": "x"}).get_json()["submissionId"]

    response = instructor.patch(
        f"/submissions/{submission_id}",
        json={"status": "Approved", "feedback": feedback},
    )

    assert response.status_code == 200
    submission = app.test_client().get("/submissions").get_json()[0]
    assert submission["feedback"] == feedback


def test_review_unknown_submission_returns_404(app, context):
    instructor = _client_for(app, context, "prof@example.com", "instructor")

    response = instructor.patch("/submissions/" + "f" * 24, json={"status": "Approved"})

    assert response.status_code == 404
    assert response.get_json() == {"message": "Submission not found or already reviewed"}


def test_reviewed_submission_cannot_be_reviewed_again(app, context):
    student = _client_for(app, context, "stu@example.com", "student")
    instructor = _client_for(app, context, "prof@example.com", "instructor")
    submission_id = student.post("/submissions", json={"link": "x"}).get_json()["submissionId"]
    first = instructor.patch(f"/submissions/{submission_id}", json={"status": "Approved"})

    second = instructor.patch(f"/submissions/{submission_id}", json={"status": "Rejected"})

    assert first.status_code == 200
    assert second.status_code == 404
    submission = app.test_client().get("/submissions").get_json()[0]
    assert submission["status"] == "Approved"


def test_review_cannot_reset_status_to_pending(app, context):
    student = _client_for(app, context, "stu@example.com", "student")
    instructor = _client_for(app, context, "prof@example.com", "instructor")
    submission_id = student.post("/submissions", json={"link": "x"}).get_json()["submissionId"]

    response = instructor.patch(f"/submissions/{submission_id}", json={"status": "pending"})

    assert response.status_code == 400


def test_review_without_status_marks_submission_reviewed(app, context):
    student = _client_for(app, context, "stu@example.com", "student")
    instructor = _client_for(app, context, "prof@example.com", "instructor")
    submission_id = student.post("/submissions", json={"link": "x"}).get_json()["submissionId"]

    response = instructor.patch(f"/submissions/{submission_id}", json={"feedback": "ok"})

    assert response.status_code == 200
    assert app.test_client().get("/submissions").get_json()[0]["status"] == "Reviewed"


def test_student_cannot_review(app, context):
    student = _client_for(app, context, "stu@example.com", "student")
    submission_id = student.post("/submissions", json={"link": "x"}).get_json()["submissionId"]

    response = student.patch(f"/submissions/{submission_id}", json={"status": "Approved"})

    assert response.status_code == 403
    assert app.test_client().get("/submissions").get_json()[0]["status"] == "Pending"
