"""Custom exceptions for core logic."""

from __future__ import annotations


class DocmatchError(Exception):
    """Base class for structural failures surfaced to the application layer."""


class CycleDetectedError(DocmatchError):
    """Raised when the template inheritance graph contains a cycle."""

    def __init__(self, message: str, *, chain: list[str]) -> None:
        super().__init__(message)
        self.chain = chain


class MissingAncestorError(DocmatchError):
    """Raised when a template declares a parent the store cannot return."""

    def __init__(self, message: str, *, template_id: str, child_id: str) -> None:
        super().__init__(message)
        self.template_id = template_id
        self.child_id = child_id


class InvalidPatternError(DocmatchError):
    """Raised when a template author supplied a regex that does not compile."""

    def __init__(
        self,
        message: str,
        *,
        pattern: str,
        field_name: str | None = None,
        template_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.pattern = pattern
        self.field_name = field_name
        self.template_id = template_id


class TemplateNotFoundError(DocmatchError):
    """Raised by lookups that require an existing template."""

    def __init__(self, message: str, *, template_id: str) -> None:
        super().__init__(message)
        self.template_id = template_id


class OperationCancelledError(DocmatchError):
    """Raised when a cooperative cancellation signal stops an operation."""
