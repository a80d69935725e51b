"""
Domain error taxonomy for the identitovigilance service
"""

from typing import List, Optional


class IdentitovigilanceError(Exception):
    """Base class for every error raised by the service layer"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(IdentitovigilanceError):
    """Referenced identity, case, alert or request does not exist"""

    status_code = 404

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidTransitionError(IdentitovigilanceError):
    """Requested status or case transition is not allowed from the current state"""

    status_code = 409


class ValidationError(IdentitovigilanceError):
    """Missing mandatory trait, malformed value or inconsistent request"""

    status_code = 422


class ConflictError(IdentitovigilanceError):
    """
    Optimistic-concurrency version mismatch, or an attempt to act on a
    terminal (merged) record. Callers may retry after re-reading state.
    """

    status_code = 409

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class ComplianceViolation(IdentitovigilanceError):
    """Identity fails the facility policy checks"""

    status_code = 422

    def __init__(self, identity_id: str, violations: List[str]):
        super().__init__(f"Identity {identity_id} violates policy: {'; '.join(violations)}")
        self.identity_id = identity_id
        self.violations = violations
