"""
Service-wide exception hierarchy.

All services raise these types; the app registers one error handler per
type family and every blueprint gets the same HTTP envelope:

    {"error": <message>, "code": <ERR_*>, "details": {...}}

Usage:
    from railinspect.core.exceptions import NotFoundError, IncompleteChecklist

    raise NotFoundError(resource="InspectionSession", resource_id=42)
    raise IncompleteChecklist(session_id=42, missing_question_ids=[7, 9])

State-machine violations (SessionTerminal, AlreadyTransitioned,
InvalidTransition) are terminal for the call; callers must not retry them.
"""


class NotFoundError(Exception):
    """Raised when a requested session, defect, node or coach does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "InspectionSession").
        resource_id: The key that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    @property
    def details(self) -> dict:
        return {"resource": self.resource, "resource_id": self.resource_id}


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Inspection errors ────────────────────────────────────────────────────────


class InspectionError(Exception):
    """Base for typed inspection outcomes surfaced to the caller.

    Subclasses set ``code`` and fill ``details`` with whatever the client
    needs to act on the error.
    """

    code = "ERR_INSPECTION"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ModuleAccessDenied(InspectionError):
    """Module isolation guard refused the (coach, module) pair."""

    code = "ERR_DENIED"

    def __init__(self, coach_number: str, module_type: str, reason: str,
                 assigned_module: str | None = None) -> None:
        self.coach_number = coach_number
        self.module_type = module_type
        self.reason = reason
        self.assigned_module = assigned_module
        super().__init__(
            f"Coach {coach_number} cannot be inspected under {module_type}: {reason}",
            details={
                "coach_number": coach_number,
                "module_type": module_type,
                "reason": reason,
                "assigned_module": assigned_module,
            },
        )


class SessionTerminal(InspectionError):
    """Write attempted on a session that no longer accepts edits."""

    code = "ERR_SESSION_TERMINAL"

    def __init__(self, session_id: int, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Session {session_id} is locked (status={status})",
            details={"session_id": session_id, "status": status},
        )


class IncompleteChecklist(InspectionError):
    """Submit refused: applicable questions are neither answered nor defected."""

    code = "ERR_INCOMPLETE_CHECKLIST"

    def __init__(self, session_id: int, missing_question_ids: list[int]) -> None:
        self.session_id = session_id
        self.missing_question_ids = sorted(missing_question_ids)
        super().__init__(
            f"Session {session_id} has {len(self.missing_question_ids)} unanswered question(s)",
            details={
                "session_id": session_id,
                "missing_question_ids": self.missing_question_ids,
            },
        )


class UnresolvedDefects(InspectionError):
    """Complete refused: defects raised under the session are still OPEN."""

    code = "ERR_UNRESOLVED_DEFECTS"

    def __init__(self, session_id: int, defect_ids: list[int]) -> None:
        self.session_id = session_id
        self.defect_ids = sorted(defect_ids)
        super().__init__(
            f"Session {session_id} has {len(self.defect_ids)} open defect(s)",
            details={"session_id": session_id, "defect_ids": self.defect_ids},
        )


class AlreadyTransitioned(InspectionError):
    """A concurrent caller moved the session first; this call lost the race."""

    code = "ERR_ALREADY_TRANSITIONED"

    def __init__(self, session_id: int, action: str, status: str) -> None:
        self.session_id = session_id
        self.action = action
        self.status = status
        super().__init__(
            f"Session {session_id} already transitioned (status={status}); '{action}' not applied",
            details={"session_id": session_id, "action": action, "status": status},
        )


class InvalidTransition(InspectionError):
    """The module's transition table has no such edge from the current status."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, session_id: int, action: str, status: str, module_type: str) -> None:
        self.session_id = session_id
        self.action = action
        self.status = status
        self.module_type = module_type
        super().__init__(
            f"Cannot '{action}' {module_type} session {session_id} (status={status})",
            details={
                "session_id": session_id,
                "action": action,
                "status": status,
                "module_type": module_type,
            },
        )


class DuplicateDefect(InspectionError):
    """An OPEN defect already exists for (session, question)."""

    code = "ERR_DUPLICATE_DEFECT"

    def __init__(self, session_id: int, question_id: int, existing_id: int | None = None) -> None:
        super().__init__(
            f"Question {question_id} already has an open defect in session {session_id}",
            details={
                "session_id": session_id,
                "question_id": question_id,
                "existing_defect_id": existing_id,
            },
        )


class MissingEvidence(InspectionError):
    """Resolve attempted without an after-photo reference."""

    code = "ERR_MISSING_EVIDENCE"

    def __init__(self, defect_id: int) -> None:
        super().__init__(
            f"Defect {defect_id} cannot be resolved without an after photo",
            details={"defect_id": defect_id, "required": "after_photo"},
        )


class AlreadyResolved(InspectionError):
    """Resolve attempted on a defect that is not OPEN."""

    code = "ERR_ALREADY_RESOLVED"

    def __init__(self, defect_id: int, status: str = "RESOLVED") -> None:
        super().__init__(
            f"Defect {defect_id} is not open (status={status})",
            details={"defect_id": defect_id, "status": status},
        )


class Unauthorized(InspectionError):
    """Principal lacks the role required for the operation."""

    code = "ERR_UNAUTHORIZED"

    def __init__(self, principal_id: str | None, required_roles) -> None:
        self.principal_id = principal_id
        self.required_roles = sorted(required_roles)
        super().__init__(
            "Insufficient permissions",
            details={"required_roles": self.required_roles},
        )
