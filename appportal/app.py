"""Flask application factory and HTTP routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from .auth import (
    Identity,
    Role,
    clear_session_cookie,
    current_identity,
    issue_session_token,
    require_role,
    set_session_cookie,
    verify_session,
)
from .config import Settings
from .db import Database
from .errors import (
    BadRequestError,
    DuplicateUserError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    register_error_handlers,
)
from .store import (
    PENDING_STATUS,
    AssignmentStore,
    DuplicateKeyError,
    SubmissionStore,
    UserStore,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """Everything the routes need, built once and handed to ``create_app``."""

    settings: Settings
    database: Database
    users: UserStore
    assignments: AssignmentStore
    submissions: SubmissionStore

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContext":
        database = Database(settings)
        return cls(
            settings=settings,
            database=database,
            users=UserStore(database),
            assignments=AssignmentStore(database),
            submissions=SubmissionStore(database),
        )


def get_request_json() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return {}


def bootstrap_storage(context: ServiceContext) -> bool:
    """Create tables and ping storage; failures are logged, not raised."""
    try:
        context.database.init_schema()
    except Exception as exc:
        logger.error("Error initializing storage: %s", exc)
        return False
    if not context.database.ping():
        return False
    logger.info("Storage ping succeeded; connected to the %s backend.",
                "sqlite" if context.database.is_sqlite else "mysql")
    return True


def register_routes(app: Flask, context: ServiceContext) -> None:
    session_required = verify_session(context.settings.jwt_secret)

    @app.route("/", methods=["GET"])
    def index():
        return "server running", 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.route("/healthz", methods=["GET"])
    def healthcheck():
        if context.database.ping():
            return jsonify({"status": "ok"})
        return jsonify({"status": "unavailable"}), 503

    @app.route("/jwt", methods=["POST"])
    def issue_session():
        data = get_request_json()
        email = str(data.get("email") or "").strip()
        if not email:
            raise BadRequestError("email is required")
        user = context.users.find_by_email(email)
        if not user:
            raise NotFoundError("user not found")
        token = issue_session_token(Identity.from_user(user), context.settings.jwt_secret)
        response = jsonify(
            {
                "message": "login successful",
                "user": {
                    "email": user.get("email"),
                    "role": user.get("role"),
                    "name": user.get("name"),
                },
            }
        )
        return set_session_cookie(response, token)

    @app.route("/logout", methods=["POST"])
    def logout():
        response = jsonify({"message": "logged out successfully"})
        return clear_session_cookie(response)

    @app.route("/assignments", methods=["GET"])
    def list_assignments():
        return jsonify(context.assignments.find_all())

    @app.route("/assignments", methods=["POST"])
    @session_required
    @require_role(Role.INSTRUCTOR)
    def create_assignment():
        identity = current_identity()
        result = context.assignments.insert(get_request_json(), created_by=identity.email)
        return (
            jsonify(
                {
                    "message": "Assignment created successfully",
                    "assignmentId": result.inserted_id,
                }
            ),
            201,
        )

    @app.route("/assignments/<assignment_id>", methods=["DELETE"])
    @session_required
    @require_role(Role.INSTRUCTOR)
    def delete_assignment(assignment_id: str):
        if not context.assignments.find_by_id(assignment_id):
            raise NotFoundError("Assignment not found")
        # Concurrent deletes of the same id can land between these two calls.
        result = context.assignments.delete_by_id(assignment_id)
        if result.deleted_count != 1:
            raise InternalError("Failed to delete assignment")
        return jsonify({"message": "Assignment deleted successfully"})

    @app.route("/submissions", methods=["GET"])
    def list_submissions():
        return jsonify(context.submissions.find_all())

    @app.route("/submissions", methods=["POST"])
    @session_required
    @require_role(Role.STUDENT)
    def create_submission():
        identity = current_identity()
        result = context.submissions.insert(get_request_json(), submitted_by=identity.email)
        return (
            jsonify(
                {
                    "message": "Submission created successfully",
                    "submissionId": result.inserted_id,
                }
            ),
            201,
        )

    @app.route("/submissions/<submission_id>", methods=["PATCH"])
    @session_required
    @require_role(Role.INSTRUCTOR)
    def review_submission(submission_id: str):
        identity = current_identity()
        data = get_request_json()
        status = str(data.get("status") or "Reviewed").strip() or "Reviewed"
        if status.lower() == PENDING_STATUS.lower():
            raise BadRequestError("A review cannot set status back to Pending")
        result = context.submissions.review(
            submission_id,
            status=status,
            feedback=data.get("feedback"),
            reviewed_by=identity.email,
        )
        if result.modified_count != 1:
            raise NotFoundError("Submission not found or already reviewed")
        return jsonify({"message": "Submission reviewed successfully"})

    @app.route("/users", methods=["POST"])
    def create_user():
        data = get_request_json()
        email = str(data.get("email") or "").strip()
        if not email:
            raise BadRequestError("email is required")
        if context.users.find_by_email(email):
            raise DuplicateUserError("User already exists")
        try:
            result = context.users.insert({**data, "email": email})
        except DuplicateKeyError as exc:
            raise DuplicateUserError("User already exists") from exc
        return (
            jsonify({"message": "User created successfully", "userId": result.inserted_id}),
            201,
        )

    @app.route("/users/<email>", methods=["GET"])
    @session_required
    def get_user(email: str):
        identity = current_identity()
        if identity.email != email:
            raise ForbiddenError("Forbidden")
        user = context.users.find_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        return jsonify(user)


def create_app(context: Optional[ServiceContext] = None, *, bootstrap: bool = True) -> Flask:
    if context is None:
        context = ServiceContext.from_settings(Settings.from_env())

    app_instance = Flask(__name__)
    app_instance.json.sort_keys = False

    CORS(app_instance, origins=context.settings.cors_origins, supports_credentials=True)
    register_error_handlers(app_instance)
    register_routes(app_instance, context)

    if bootstrap:
        bootstrap_storage(context)
    return app_instance
