"""
Workflow error taxonomy.

Every rejected operation raises a subclass of ``WorkflowError``. Errors carry
the authoritative state of the record they concern (``current_state`` and a
``record`` snapshot) so a client can resynchronize without a follow-up read,
and a ``retryable`` flag telling the caller whether re-issuing the same call
against fresh state can succeed.

    AuthenticationFailed      identity/signature check failed        no retry
    AuthorizationDenied       wrong role for the transition           no retry
    InvalidTransition         current state forbids the target        caller bug
    PreconditionFailed        required input missing or invalid       caller bug
    ConcurrentModification    optimistic-concurrency race lost        retry
    CollaboratorUnavailable   evidence store / directory failed       retry
    RecordNotFound            unknown asset or case id                caller bug

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base exception for rejected workflow operations."""

    retryable: bool = False
    code: str = "workflow_error"

    def __init__(
        self,
        message: str,
        *,
        current_state: Optional[str] = None,
        requested_state: Optional[str] = None,
        record: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.current_state = current_state
        self.requested_state = requested_state
        self.record = record
        super().__init__(message)

    def attach_record(self, record: Optional[Dict[str, Any]], current_state: Optional[str]) -> None:
        """Attach the authoritative record snapshot if none is set yet."""
        if self.record is None and record is not None:
            self.record = record
        if self.current_state is None:
            self.current_state = current_state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "current_state": self.current_state,
            "requested_state": self.requested_state,
            "record": self.record,
        }


class AuthenticationFailed(WorkflowError):
    """The request was not signed by the account it claims."""
    code = "authentication_failed"


class AuthorizationDenied(WorkflowError):
    """Identity is confirmed but the role does not permit the transition."""
    code = "authorization_denied"


class InvalidTransition(WorkflowError):
    """The current state does not permit the requested target state."""
    code = "invalid_transition"

    def __init__(self, current_state: str, requested_state: str, **kwargs: Any):
        super().__init__(
            f"Cannot transition from {current_state} to {requested_state}",
            current_state=current_state,
            requested_state=requested_state,
            **kwargs,
        )


class PreconditionFailed(WorkflowError):
    """The transition is legal in principle but a required input is missing."""
    code = "precondition_failed"


class ConcurrentModification(WorkflowError):
    """Another writer committed first; retry against the fresh state."""
    code = "concurrent_modification"
    retryable = True


class CollaboratorUnavailable(WorkflowError):
    """The evidence store or account directory timed out or failed."""
    code = "collaborator_unavailable"
    retryable = True

    def __init__(self, collaborator: str, cause: Optional[BaseException] = None, **kwargs: Any):
        self.collaborator = collaborator
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{collaborator} unavailable{detail}", **kwargs)


class RecordNotFound(WorkflowError):
    """No asset or case exists under the given identifier."""
    code = "record_not_found"
