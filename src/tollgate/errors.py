"""
Tollgate error types.

Business denials are returned as decision objects, not raised. These
exceptions signal caller misuse or a refused execution, so callers can tell
"the answer was no" apart from "the call was wrong".
"""

from __future__ import annotations

from typing import Any, Optional


class TollgateError(Exception):
    """Base error for all Tollgate operations."""
    pass


class NotFoundError(TollgateError):
    """A mandate or policy with the given id does not exist."""
    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")


# Execution refusals
class NotApprovedError(TollgateError):
    """An execution was refused; carries the decision that refused it."""
    def __init__(self, reason: str, decision: Optional[Any] = None):
        self.reason = reason
        self.decision = decision
        super().__init__(f"Action not approved: {reason}")


class ExpiredError(NotApprovedError):
    """Mandate is past its expiry."""
    pass


class RevokedError(NotApprovedError):
    """Mandate was revoked by its principal."""
    pass


class ScopeViolationError(NotApprovedError):
    """Action breaches a mandate scope limit."""
    def __init__(self, violation: Any, reason: str, decision: Optional[Any] = None):
        self.violation = violation
        super().__init__(reason, decision)


# Definition errors
class ValidationError(TollgateError):
    """Malformed policy or mandate definition."""
    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class ConfigurationError(TollgateError):
    """Required configuration (e.g. signing material) is missing."""
    pass


class SignatureError(TollgateError):
    """Authorization proof could not be produced, decoded or recovered."""
    pass


class AuditIntegrityError(TollgateError):
    """Audit log hash chain does not verify."""
    def __init__(self, line_number: int, problem: str):
        self.line_number = line_number
        super().__init__(f"Audit chain broken at line {line_number}: {problem}")
