from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

RejectionReason = Literal[
    "not_found",
    "not_active",
    "expired",
    "exhausted",
    "already_consumed",
    "already_member",
]


class DirectoryUnavailable(Exception):
    """Directory could not be reached or returned a document that failed to parse."""

    def __init__(self, message: str, *, collection: str | None = None, document_id: str | None = None):
        super().__init__(message)
        self.collection = collection
        self.document_id = document_id


@dataclass(frozen=True)
class InvitationRejection:
    reason: RejectionReason
    message: str


class InvitationRejected(Exception):
    def __init__(self, rejection: InvitationRejection):
        super().__init__(rejection.message)
        self.rejection = rejection


def directory_error_detail(*, operation: str, exc: DirectoryUnavailable) -> dict[str, Any]:
    return {
        "type": "directory_unavailable",
        "operation": operation,
        "collection": exc.collection,
        "message": str(exc),
    }


def invitation_rejection_http_status(rejection: InvitationRejection) -> int:
    if rejection.reason == "already_consumed":
        return 409
    return 400


def invitation_rejection_detail(rejection: InvitationRejection) -> dict[str, Any]:
    return {
        "type": "invitation_rejected",
        "reason": rejection.reason,
        "message": rejection.message,
    }
