from __future__ import annotations


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class DomainDependencyError(DomainError):
    pass


class FatalInputError(DomainValidationError):
    """The uploaded file cannot produce a job: no data rows or no business key column."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class LookupTransientError(DomainDependencyError):
    pass


class WriteBackError(DomainDependencyError):
    pass


class DirectoryAuthError(DomainDependencyError):
    """The directory rejected our credentials; no row can be resolved until they are fixed."""


class GenerationDependencyError(DomainDependencyError):
    pass


class BudgetExhaustedError(DomainError):
    pass
