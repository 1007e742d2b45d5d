"""Account identity lookups used when linking a paid business to a user."""

from __future__ import annotations

from typing import Protocol

from billing.repository import BillingRepository


class AccountDirectory(Protocol):
    """Answers "which user account owns this email right now"."""

    async def get_user_id_for_email(self, email: str) -> str | None:
        """Return user id or None when no account exists yet."""


class NoopAccountDirectory:
    """Fallback when no account store is wired in: nobody is linkable."""

    async def get_user_id_for_email(self, email: str) -> str | None:
        return None


class SqliteAccountDirectory:
    """Reads the `accounts` table populated by the sign-up flow."""

    def __init__(self, repository: BillingRepository) -> None:
        self.repository = repository

    async def get_user_id_for_email(self, email: str) -> str | None:
        return await self.repository.get_user_id_for_email(email)
