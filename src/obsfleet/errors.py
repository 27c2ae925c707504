"""Errors raised by the reconciliation engine and the certificate subsystem."""

from __future__ import annotations


class ConvergenceError(Exception):
    """Some members did not converge; the pass must be retried."""

    def __init__(self, failed_creates: list[str], failed_deletes: list[str], report: object | None = None) -> None:
        self.failed_creates = sorted(failed_creates)
        self.failed_deletes = sorted(failed_deletes)
        self.report = report
        super().__init__(
            "Failed to create managed cluster resources or to delete observability addons "
            f"(create={self.failed_creates}, delete={self.failed_deletes}); reconcile later"
        )


class AuthorityMissingError(Exception):
    """A leaf certificate cannot be issued because its authority secret is absent."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Certificate authority secret {name!r} not found")


class InvalidInputError(Exception):
    """A hub object the pass reads from could not be parsed."""

    def __init__(self, kind: str, name: str, reason: str) -> None:
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"{kind} {name!r} is invalid: {reason}")


class AuthorityInvalidError(InvalidInputError):
    """An authority secret exists but its certificate or key cannot be parsed."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__("Secret", name, reason)
