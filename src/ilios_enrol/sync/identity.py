"""Map Ilios user ids to local account ids.

Ilios users carry a ``campusId``; local accounts carry the same value
as their id number.  ``DirectoryIdentityMapper`` reads all Ilios users
of a desired set with one batch lookup and joins them against an
``AccountDirectory``.

Disabled Ilios users still map when a local account exists; they are
reported separately so the reconciler can suspend them.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from typing import Protocol

from pydantic import BaseModel

from .expander import DirectoryClient
from .models import RemoteUser, ResourceKind, UnmappedIdentity

logger = logging.getLogger(__name__)


class AccountDirectory(Protocol):
    """Lookup of local accounts by external id number."""

    def find_by_idnumbers(
        self, idnumbers: Collection[str]
    ) -> dict[str, int]:
        """Return ``{idnumber: account_id}`` for the known id numbers."""
        ...  # pragma: no cover


class IdentityMapping(BaseModel):
    """Result of mapping a set of Ilios user ids.

    Attributes:
        mapped: Ilios user id -> local account id.
        disabled_remote: Mapped Ilios user ids whose account is disabled
            in Ilios.
        unmapped: Ilios users without a usable local account.
        remote_users_found: User records returned by Ilios.
    """

    mapped: dict[int, int] = {}
    disabled_remote: set[int] = set()
    unmapped: list[UnmappedIdentity] = []
    remote_users_found: int = 0

    model_config = {"frozen": True}

    @property
    def desired(self) -> set[int]:
        """Local accounts of enabled Ilios users."""
        return {
            account_id
            for remote_id, account_id in self.mapped.items()
            if remote_id not in self.disabled_remote
        }

    @property
    def disabled(self) -> set[int]:
        """Local accounts whose only Ilios users are disabled."""
        disabled = {
            self.mapped[remote_id]
            for remote_id in self.disabled_remote
            if remote_id in self.mapped
        }
        return disabled - self.desired


class IdentityMapper(Protocol):
    def map(self, remote_ids: Collection[int]) -> IdentityMapping:
        ...  # pragma: no cover


class DirectoryIdentityMapper:
    """Map Ilios users to local accounts through their campus id.

    Args:
        client: Directory client used for the batch user lookup.
        accounts: Local account lookup.
    """

    def __init__(
        self, client: DirectoryClient, accounts: AccountDirectory
    ) -> None:
        self.client = client
        self.accounts = accounts

    def map(self, remote_ids: Collection[int]) -> IdentityMapping:
        """Map *remote_ids* to local accounts.

        Raises:
            RemoteUnavailable: If the user lookup fails.
        """
        if not remote_ids:
            return IdentityMapping()

        users: Mapping[int, RemoteUser] = self.client.fetch_batch(
            ResourceKind.USER, remote_ids
        )
        campus_ids = {
            u.campus_id.strip()
            for u in users.values()
            if u.campus_id and u.campus_id.strip()
        }
        accounts: dict[str, int] = {}
        if campus_ids:
            accounts = self.accounts.find_by_idnumbers(campus_ids)

        mapped: dict[int, int] = {}
        disabled_remote: set[int] = set()
        unmapped: list[UnmappedIdentity] = []

        for remote_id in sorted(set(remote_ids)):
            user = users.get(remote_id)
            if user is None:
                unmapped.append(
                    UnmappedIdentity(
                        remote_id=remote_id,
                        reason="not returned by directory",
                    )
                )
                continue
            campus_id = (user.campus_id or "").strip()
            if not campus_id:
                unmapped.append(
                    UnmappedIdentity(
                        remote_id=remote_id, reason="missing campus id"
                    )
                )
                continue
            account_id = accounts.get(campus_id)
            if account_id is None:
                unmapped.append(
                    UnmappedIdentity(
                        remote_id=remote_id,
                        campus_id=campus_id,
                        reason="no matching local account",
                    )
                )
                continue
            mapped[remote_id] = account_id
            if not user.enabled:
                disabled_remote.add(remote_id)

        if unmapped:
            logger.info(
                "%d of %d Ilios users could not be mapped to local accounts",
                len(unmapped),
                len(set(remote_ids)),
            )

        return IdentityMapping(
            mapped=mapped,
            disabled_remote=disabled_remote,
            unmapped=unmapped,
            remote_users_found=len(users),
        )


class InMemoryAccountDirectory:
    """``AccountDirectory`` over a plain ``{idnumber: account_id}`` dict."""

    def __init__(self, accounts: Mapping[str, int] | None = None) -> None:
        self._accounts: dict[str, int] = dict(accounts or {})

    def add(self, idnumber: str, account_id: int) -> None:
        self._accounts[idnumber] = account_id

    def find_by_idnumbers(
        self, idnumbers: Collection[str]
    ) -> dict[str, int]:
        return {
            idnumber: self._accounts[idnumber]
            for idnumber in idnumbers
            if idnumber in self._accounts
        }
