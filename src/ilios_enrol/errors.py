"""Exception hierarchy for the Ilios enrolment sync engine.

- ``RemoteUnavailable``: transport, authentication or payload failure
  talking to the Ilios API.  Aborts the current sync target.
- ``NotFound``: a requested Ilios record does not exist.  Fatal only for
  the entry-point group of a sync target.
- ``MutationFailure``: the roster rejected a single mutation.  Recorded
  and skipped.
"""

from __future__ import annotations

from typing import Any


class IliosEnrolError(Exception):
    """Base exception for ilios_enrol.

    Attributes:
        details: Optional structured information (HTTP status, ids).
        cause: Optional original exception that triggered this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class RemoteUnavailable(IliosEnrolError):
    """Raised when the Ilios API cannot be reached or rejects the request."""


class NotFound(IliosEnrolError):
    """Raised when an Ilios record does not exist."""

    def __init__(self, kind: str, record_id: int) -> None:
        super().__init__(
            f"Ilios {kind} {record_id} not found",
            details={"kind": kind, "id": record_id},
        )
        self.kind = kind
        self.record_id = record_id


class MutationFailure(IliosEnrolError):
    """Raised when the roster collaborator rejects one mutation."""

    def __init__(
        self, op: str, account_id: int, cause: BaseException
    ) -> None:
        super().__init__(
            f"{op} failed for userid {account_id}: {cause}",
            details={"op": op, "account_id": account_id},
            cause=cause,
        )
        self.op = op
        self.account_id = account_id
