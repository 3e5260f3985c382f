"""Per-provider account pool with daily quotas and rate-limit cool-downs.

ProviderAccountPool answers "which credentialed account can serve N
estimated tokens right now" and applies usage after the fact. Provider
clients never touch this state; the provider service that owns both the
client and the pool applies the usage a client reports.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

import structlog

from bonsai.models.quota import ProviderAccount, Tier, utcnow

log = structlog.get_logger(__name__)

DEFAULT_RATE_LIMIT_COOLDOWN = timedelta(seconds=60)


class ProviderAccountPool:
    """Tracks daily token quotas for the accounts of one provider.

    Selection is a pure read. Writes go through per-account asyncio locks so
    two concurrent requests against one account cannot lose an increment.
    """

    def __init__(
        self,
        provider: str,
        accounts: Iterable[ProviderAccount],
        *,
        cooldown: timedelta = DEFAULT_RATE_LIMIT_COOLDOWN,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the pool.

        Args:
            provider: Provider display name for logs
            accounts: Accounts in priority order (ties keep this order)
            cooldown: How long a 429 keeps an account out of selection
            clock: Returns the current UTC time; injectable for tests
        """
        self._provider = provider
        self._accounts: dict[str, ProviderAccount] = {}
        for account in accounts:
            if account.id in self._accounts:
                raise ValueError(f"Duplicate account id: {account.id}")
            self._accounts[account.id] = account
        self._locks = {account_id: asyncio.Lock() for account_id in self._accounts}
        self._cooldown = cooldown
        self._clock = clock

        log.info(
            "account_pool.initialized",
            provider=provider,
            accounts=list(self._accounts),
        )

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def accounts(self) -> list[ProviderAccount]:
        return list(self._accounts.values())

    def get(self, account_id: str) -> ProviderAccount | None:
        return self._accounts.get(account_id)

    def reset_if_new_day(self) -> list[str]:
        """Zero usage and clear rate limits on accounts last reset on an earlier day.

        Returns:
            Ids of the accounts that were reset
        """
        now = self._clock()
        reset: list[str] = []
        for account in self._accounts.values():
            if account.last_reset.date() != now.date():
                log.info(
                    "account_pool.daily_reset",
                    provider=self._provider,
                    account_id=account.id,
                    previous_usage=account.used_today,
                )
                account.used_today = 0
                account.rate_limit_until = None
                account.last_reset = now
                reset.append(account.id)
        return reset

    def is_eligible(self, account: ProviderAccount, estimated_tokens: int) -> bool:
        return (
            account.is_active
            and account.used_today + estimated_tokens <= account.daily_quota
            and not account.is_rate_limited(self._clock())
        )

    def select_best_account(self, estimated_tokens: int) -> ProviderAccount | None:
        """Pick the eligible account with the most remaining quota.

        Args:
            estimated_tokens: Tokens the request is expected to consume

        Returns:
            The account with the greatest headroom (first in input order on
            ties), or None if no account qualifies
        """
        self.reset_if_new_day()
        best: ProviderAccount | None = None
        for account in self._accounts.values():
            if not self.is_eligible(account, estimated_tokens):
                continue
            if best is None or account.remaining_quota > best.remaining_quota:
                best = account

        if best is None:
            log.warning(
                "account_pool.no_account_available",
                provider=self._provider,
                estimated_tokens=estimated_tokens,
            )
        return best

    def select_account(self, account_id: str, estimated_tokens: int) -> ProviderAccount | None:
        """Return a specific account if it can serve the request right now."""
        self.reset_if_new_day()
        account = self._accounts.get(account_id)
        if account is None or not self.is_eligible(account, estimated_tokens):
            return None
        return account

    async def record_usage(self, account_id: str, tokens: int) -> None:
        """Add consumed tokens to an account. Unknown ids are logged and ignored."""
        account = self._accounts.get(account_id)
        if account is None:
            log.warning(
                "account_pool.unknown_account",
                provider=self._provider,
                account_id=account_id,
            )
            return

        async with self._locks[account_id]:
            account.used_today += tokens

        log.debug(
            "account_pool.usage_recorded",
            provider=self._provider,
            account_id=account_id,
            tokens=tokens,
            used_today=account.used_today,
            daily_quota=account.daily_quota,
        )

    async def mark_rate_limited(self, account_id: str) -> None:
        """Exclude an account from selection for the cool-down period."""
        account = self._accounts.get(account_id)
        if account is None:
            return

        async with self._locks[account_id]:
            account.rate_limit_until = self._clock() + self._cooldown

        log.warning(
            "account_pool.rate_limited",
            provider=self._provider,
            account_id=account_id,
            until=account.rate_limit_until.isoformat(),
        )

    def disable_paid(self) -> list[str]:
        """Deactivate every paid-tier account. Returns the ids disabled by this call."""
        disabled = []
        for account in self._accounts.values():
            if account.tier == Tier.PAID and account.is_active:
                account.is_active = False
                disabled.append(account.id)
        if disabled:
            log.warning("account_pool.paid_disabled", provider=self._provider, accounts=disabled)
        return disabled

    def enable(self, account_ids: Iterable[str]) -> None:
        for account_id in account_ids:
            account = self._accounts.get(account_id)
            if account is not None and account.api_key:
                account.is_active = True

    def total_available_quota(self) -> int:
        """Remaining quota summed over accounts that can currently be selected."""
        self.reset_if_new_day()
        now = self._clock()
        return sum(
            account.remaining_quota
            for account in self._accounts.values()
            if account.is_active and not account.is_rate_limited(now)
        )

    def status(self) -> list[dict[str, Any]]:
        self.reset_if_new_day()
        now = self._clock()
        return [
            {
                "id": account.id,
                "name": account.name,
                "quota_used": account.used_today,
                "quota_total": account.daily_quota,
                "is_active": account.is_active,
                "is_rate_limited": account.is_rate_limited(now),
                "rate_limit_until": (
                    account.rate_limit_until.isoformat() if account.rate_limit_until else None
                ),
                "last_reset": account.last_reset.isoformat(),
            }
            for account in self._accounts.values()
        ]
