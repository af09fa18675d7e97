"""Account directory and player profiles."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from roster.core.errors import (
    AccountInUse,
    InvalidAccountName,
    InvalidRole,
    InvalidTimezone,
    NotFound,
)
from roster.models import RANK_TIERS, Account, Profile, RoleRank
from roster.repositories import AccountTransaction
from roster.services.base import BaseService

logger = logging.getLogger(__name__)

MAX_ACCOUNT_NAME_LENGTH = 32


def validate_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezone(f"Unknown timezone: {name}") from e
    return name


class AccountDirectory(BaseService):
    """Per-user accounts with per-role ranks and a single primary flag."""

    # ==================== Reads ====================

    async def get(self, user_id: str) -> list[Account]:
        """Accounts of ``user_id``, primary first then creation order."""
        return await self.store.list_accounts(user_id)

    async def get_account(self, user_id: str, account_id: int) -> Account:
        for account in await self.store.list_accounts(user_id):
            if account.id == account_id:
                return account
        raise NotFound(f"Account {account_id} not found")

    async def get_profile(self, user_id: str) -> Profile | None:
        return await self.store.get_profile(user_id)

    # ==================== Mutations ====================

    async def create_account(
        self,
        user_id: str,
        name: str,
        *,
        is_primary: bool | None = None,
    ) -> Account:
        """Add an account. A user's first account is primary unless told otherwise."""
        name = (name or "").strip()
        if not name:
            raise InvalidAccountName("Account name cannot be empty")
        if len(name) > MAX_ACCOUNT_NAME_LENGTH:
            raise InvalidAccountName(
                f"Account name must be at most {MAX_ACCOUNT_NAME_LENGTH} characters"
            )

        async def body(tx: AccountTransaction) -> Account:
            primary = is_primary
            if primary is None:
                primary = not await tx.list_accounts()
            return await tx.add_account(name, primary)

        account = await self._in_account(user_id, body)
        logger.info(f"Account {account.name!r} ({account.id}) added for {user_id}")
        return account

    async def edit_rank(
        self,
        user_id: str,
        account_id: int,
        role: str,
        tier: str | None,
        division: int | None = None,
    ) -> Account:
        """Set (or clear, with ``tier=None``) the rank of one role on one account."""
        if role not in self.catalog.ranked_roles():
            raise InvalidRole(f"{role!r} cannot carry a rank")
        rank: RoleRank | None = None
        if tier is not None:
            divisions = RANK_TIERS.get(tier, ())
            if division is None and len(divisions) == 1:
                division = divisions[0]
            rank = RoleRank(tier, division)  # type: ignore[arg-type]

        async def body(tx: AccountTransaction) -> Account:
            account = _find(await tx.list_accounts(), account_id)
            ranks = dict(account.ranks)
            if rank is None:
                ranks.pop(role, None)
            else:
                ranks[role] = rank
            await tx.save_ranks(account_id, ranks)
            account.ranks = ranks
            return account

        account = await self._in_account(user_id, body)
        logger.info(f"Account {account_id} {role} rank set to {rank or 'unranked'}")
        return account

    async def set_primary(self, user_id: str, account_id: int) -> list[Account]:
        """Make ``account_id`` the only primary account of ``user_id``."""

        async def body(tx: AccountTransaction) -> list[Account]:
            _find(await tx.list_accounts(), account_id)
            await tx.set_primary(account_id)
            return await tx.list_accounts()

        accounts = await self._in_account(user_id, body)
        logger.info(f"Primary account of {user_id} is now {account_id}")
        return accounts

    async def delete_account(self, user_id: str, account_id: int) -> Account:
        """Delete an account that is not on any live roster."""

        async def body(tx: AccountTransaction) -> Account:
            account = _find(await tx.list_accounts(), account_id)
            if await tx.account_on_active_roster(account_id):
                raise AccountInUse(f"{account.name} is on a session roster")
            await tx.delete_account(account_id)
            return account

        account = await self._in_account(user_id, body)
        logger.info(f"Account {account.name!r} ({account_id}) deleted for {user_id}")
        return account

    async def setup_profile(
        self,
        user_id: str,
        *,
        timezone: str | None = None,
        preferred_roles: list[str] | None = None,
    ) -> Profile:
        """Create or update a profile; omitted fields keep their stored value."""
        if timezone is not None:
            validate_timezone(timezone)
        if preferred_roles is not None:
            ranked = self.catalog.ranked_roles()
            for role in preferred_roles:
                if role not in ranked:
                    raise InvalidRole(f"{role!r} is not a known role")

        async def body(tx: AccountTransaction) -> Profile:
            profile = await tx.get_profile() or Profile(user_id=user_id)
            if timezone is not None:
                profile.timezone = timezone
            if preferred_roles is not None:
                profile.preferred_roles = list(dict.fromkeys(preferred_roles))
            await tx.save_profile(profile)
            return profile

        return await self._in_account(user_id, body)


def _find(accounts: list[Account], account_id: int) -> Account:
    for account in accounts:
        if account.id == account_id:
            return account
    raise NotFound(f"Account {account_id} not found")
