"""Domain error taxonomy.

Services raise these; the HTTP layer maps ``kind`` to a status code. Entities
owned by another user are always reported as ``NotFoundError`` so that their
existence is never revealed.
"""

from __future__ import annotations


class DomainError(Exception):
    kind: str = "error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.message}


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404


class ValidationFailedError(DomainError):
    kind = "validation_failed"
    status_code = 400


class ConflictError(DomainError):
    kind = "conflict"
    status_code = 409
