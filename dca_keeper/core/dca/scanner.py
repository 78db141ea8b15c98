"""
Account Scanner

Discovers DCA accounts from DCACreatedEvent history and loads their current
state. Read-only: nothing here mutates chain or keeper state beyond the
scanner's own freshness watermark.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ...providers.base import ChainReader
from ...providers.sui_rpc import MAX_OBJECTS_PER_REQUEST
from ...sui.bcs import normalize_address
from ..recovery.strategies import RetryStrategy
from .models import DCAAccount

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    accounts: List[DCAAccount] = field(default_factory=list)
    total: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def active(self) -> List[DCAAccount]:
        return [a for a in self.accounts if a.active]


class AccountScanner:
    """
    Finds and loads DCA accounts.

    Example usage:
        scanner = AccountScanner(client, package_id="0x...")
        result = await scanner.scan()
    """

    def __init__(
        self,
        reader: ChainReader,
        package_id: str,
        concurrency: int = 10,
        page_size: int = 50,
        retry: Optional[RetryStrategy] = None,
    ):
        self.reader = reader
        self.package_id = normalize_address(package_id)
        self.page_size = min(page_size, MAX_OBJECTS_PER_REQUEST)
        self.retry = retry or RetryStrategy()
        self._semaphore = asyncio.Semaphore(concurrency)
        # Highest last_time_ms seen per active account; older snapshots come from lagging nodes.
        self._watermarks: Dict[str, int] = {}

    @property
    def created_event_type(self) -> str:
        return f"{self.package_id}::dca::DCACreatedEvent"

    async def discover_account_ids(self) -> List[str]:
        """Every account id ever created, newest first, without duplicates."""
        ids: Dict[str, None] = {}
        cursor = None
        while True:
            page = await self.retry.execute(
                lambda c=cursor: self.reader.query_events(
                    self.created_event_type, cursor=c, limit=self.page_size, descending=True
                ),
                context={"operation": "suix_queryEvents"},
            )
            for event in (page or {}).get("data") or []:
                account_id = (event.get("parsedJson") or {}).get("id")
                if account_id:
                    ids[normalize_address(account_id)] = None
            cursor = (page or {}).get("nextCursor")
            if not (page or {}).get("hasNextPage") or cursor is None:
                break
        logger.debug("Discovered %d DCA accounts", len(ids))
        return list(ids)

    async def fetch_accounts(self, account_ids: List[str], errors: Optional[List[str]] = None) -> List[DCAAccount]:
        """Load accounts in chunks of 50 with bounded parallelism, preserving id order."""
        chunks = [
            account_ids[i:i + MAX_OBJECTS_PER_REQUEST]
            for i in range(0, len(account_ids), MAX_OBJECTS_PER_REQUEST)
        ]

        async def fetch(chunk: List[str]) -> List[dict]:
            async with self._semaphore:
                return await self.retry.execute(
                    lambda: self.reader.multi_get_objects(chunk, show_content=True),
                    context={"operation": "sui_multiGetObjects"},
                )

        results = await asyncio.gather(*(fetch(chunk) for chunk in chunks))

        accounts: List[DCAAccount] = []
        for chunk, responses in zip(chunks, results):
            for account_id, response in zip(chunk, responses or []):
                account = self._parse(account_id, response, errors)
                if account is not None:
                    accounts.append(account)
        return accounts

    def _parse(self, account_id: str, response: dict, errors: Optional[List[str]]) -> Optional[DCAAccount]:
        if response.get("error") or not response.get("data"):
            logger.debug("Skipping %s: object deleted or missing", account_id)
            self._watermarks.pop(normalize_address(account_id), None)
            return None
        try:
            account = DCAAccount.from_object(response)
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Skipping %s: not a DCA account (%s)", account_id, e)
            if errors is not None:
                errors.append(f"{account_id}: {e}")
            return None

        seen = self._watermarks.get(account.id)
        if seen is not None and account.last_time_ms < seen:
            logger.debug(
                "Skipping %s: snapshot last_time_ms %d older than observed %d",
                account.id, account.last_time_ms, seen,
            )
            return None
        if account.active:
            self._watermarks[account.id] = account.last_time_ms
        else:
            # Inactive accounts are never traded; only live ones need a watermark.
            self._watermarks.pop(account.id, None)
        return account

    async def scan(self) -> ScanResult:
        """Discover and load every account."""
        result = ScanResult()
        account_ids = await self.discover_account_ids()
        result.total = len(account_ids)
        result.accounts = await self.fetch_accounts(account_ids, result.errors)
        logger.info(
            "Scanned %d accounts (%d loaded, %d active)",
            result.total, len(result.accounts), len(result.active),
        )
        return result

    async def refresh(self, account_id: str) -> Optional[DCAAccount]:
        """Re-read one account just before acting on it."""
        accounts = await self.fetch_accounts([normalize_address(account_id)])
        return accounts[0] if accounts else None
