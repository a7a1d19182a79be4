"""Document-style collections for users, assignments and submissions.

Each entity keeps a handful of server-owned fields in real columns and the
rest of the client payload as an opaque JSON document. Rows are returned as
plain dicts shaped the way the HTTP API serializes them: ``_id`` for the
identifier and camelCase timestamps.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from .db import Database

logger = logging.getLogger(__name__)

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")
PENDING_STATUS = "Pending"

USER_RESERVED_KEYS = {"_id", "email", "name", "role", "createdAt"}
ASSIGNMENT_RESERVED_KEYS = {"_id", "createdAt", "createdBy"}
SUBMISSION_RESERVED_KEYS = {
    "_id",
    "submittedAt",
    "submittedBy",
    "status",
    "feedback",
    "reviewedAt",
    "reviewedBy",
}


class InvalidIdentifierError(ValueError):
    """Raised when a path identifier is not a 24 character hex string."""


class DuplicateKeyError(RuntimeError):
    """Raised when an insert collides with a unique index."""


@dataclass
class InsertResult:
    inserted_id: str


@dataclass
class DeleteResult:
    deleted_count: int


@dataclass
class UpdateResult:
    modified_count: int


def new_object_id() -> str:
    return secrets.token_hex(12)


def parse_object_id(raw_id) -> str:
    candidate = str(raw_id or "").strip().lower()
    if not OBJECT_ID_PATTERN.match(candidate):
        raise InvalidIdentifierError(f"{raw_id!r} is not a valid identifier.")
    return candidate


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _dump_document(document: Mapping[str, object], reserved: set) -> str:
    payload = {key: value for key, value in document.items() if key not in reserved}
    return json.dumps(payload, ensure_ascii=False, default=str)


def _load_value(raw):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def _load_document(raw) -> dict:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable stored document: %r", raw)
        return {}
    return decoded if isinstance(decoded, dict) else {}


class UserStore:
    """The credential store: one row per unique email."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @staticmethod
    def _serialize(row: Mapping[str, object]) -> dict:
        document = _load_document(row.get("extra_json"))
        document.update(
            {
                "_id": row.get("id"),
                "email": row.get("email"),
                "name": row.get("name"),
                "role": row.get("role"),
                "createdAt": row.get("created_at"),
            }
        )
        return document

    def find_by_email(self, email: str) -> Optional[dict]:
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, email, name, role, extra_json, created_at
                    FROM users
                    WHERE email = %s
                    """,
                    (email,),
                )
                row = cur.fetchone()
        return self._serialize(row) if row else None

    def insert(self, document: Mapping[str, object], *, created_at: Optional[datetime] = None) -> InsertResult:
        user_id = new_object_id()
        name = document.get("name")
        role = document.get("role")
        params = (
            user_id,
            str(document.get("email") or "").strip(),
            None if name is None else str(name),
            None if role is None else str(role),
            _dump_document(document, USER_RESERVED_KEYS),
            format_timestamp(created_at or utcnow()),
        )
        try:
            with self.database.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO users (id, email, name, role, extra_json, created_at)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        params,
                    )
        except self.database.integrity_errors as exc:
            raise DuplicateKeyError("A user with that email already exists.") from exc
        return InsertResult(inserted_id=user_id)


class AssignmentStore:
    def __init__(self, database: Database) -> None:
        self.database = database

    @staticmethod
    def _serialize(row: Mapping[str, object]) -> dict:
        document = _load_document(row.get("document_json"))
        document.update(
            {
                "_id": row.get("id"),
                "createdAt": row.get("created_at"),
                "createdBy": row.get("created_by"),
            }
        )
        return document

    def find_all(self) -> List[dict]:
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, document_json, created_at, created_by
                    FROM assignments
                    ORDER BY created_at, id
                    """
                )
                rows = cur.fetchall()
        return [self._serialize(row) for row in rows]

    def find_by_id(self, assignment_id: str) -> Optional[dict]:
        object_id = parse_object_id(assignment_id)
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, document_json, created_at, created_by
                    FROM assignments
                    WHERE id = %s
                    """,
                    (object_id,),
                )
                row = cur.fetchone()
        return self._serialize(row) if row else None

    def insert(
        self,
        document: Mapping[str, object],
        *,
        created_by: str,
        created_at: Optional[datetime] = None,
    ) -> InsertResult:
        assignment_id = new_object_id()
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO assignments (id, document_json, created_at, created_by)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (
                        assignment_id,
                        _dump_document(document, ASSIGNMENT_RESERVED_KEYS),
                        format_timestamp(created_at or utcnow()),
                        created_by,
                    ),
                )
        return InsertResult(inserted_id=assignment_id)

    def delete_by_id(self, assignment_id: str) -> DeleteResult:
        object_id = parse_object_id(assignment_id)
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM assignments WHERE id = %s", (object_id,))
                deleted = cur.rowcount
        return DeleteResult(deleted_count=max(deleted, 0))


class SubmissionStore:
    def __init__(self, database: Database) -> None:
        self.database = database

    @staticmethod
    def _serialize(row: Mapping[str, object]) -> dict:
        document = _load_document(row.get("document_json"))
        document.update(
            {
                "_id": row.get("id"),
                "submittedAt": row.get("submitted_at"),
                "submittedBy": row.get("submitted_by"),
                "status": row.get("status"),
            }
        )
        if row.get("reviewed_at"):
            document.update(
                {
                    "feedback": _load_value(row.get("feedback")),
                    "reviewedAt": row.get("reviewed_at"),
                    "reviewedBy": row.get("reviewed_by"),
                }
            )
        return document

    def find_all(self) -> List[dict]:
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, document_json, submitted_at, submitted_by, status,
                           feedback, reviewed_at, reviewed_by
                    FROM submissions
                    ORDER BY submitted_at, id
                    """
                )
                rows = cur.fetchall()
        return [self._serialize(row) for row in rows]

    def insert(
        self,
        document: Mapping[str, object],
        *,
        submitted_by: str,
        submitted_at: Optional[datetime] = None,
    ) -> InsertResult:
        submission_id = new_object_id()
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO submissions (id, document_json, submitted_at, submitted_by, status)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        submission_id,
                        _dump_document(document, SUBMISSION_RESERVED_KEYS),
                        format_timestamp(submitted_at or utcnow()),
                        submitted_by,
                        PENDING_STATUS,
                    ),
                )
        return InsertResult(inserted_id=submission_id)

    def review(
        self,
        submission_id: str,
        *,
        status: str,
        feedback,
        reviewed_by: str,
        reviewed_at: Optional[datetime] = None,
    ) -> UpdateResult:
        # Only pending submissions are updated; a reviewed one never goes back.
        object_id = parse_object_id(submission_id)
        with self.database.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE submissions
                    SET status = %s, feedback = %s, reviewed_at = %s, reviewed_by = %s
                    WHERE id = %s AND status = %s
                    """,
                    (
                        status,
                        json.dumps(feedback, ensure_ascii=False, default=str),
                        format_timestamp(reviewed_at or utcnow()),
                        reviewed_by,
                        object_id,
                        PENDING_STATUS,
                    ),
                )
                modified = cur.rowcount
        return UpdateResult(modified_count=max(modified, 0))
