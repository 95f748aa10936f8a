"""
Datastore interface and its Supabase implementation.

Tables
------
applications     id (text pk), email (text, indexed), record (jsonb), created_at
email_accounts   one row per MailAccount
automation_logs  account_id, status, processed, imported, errors, duration_ms,
                 error, created_at

The Supabase client is synchronous; every call runs in a worker thread.
"""

import abc
import asyncio
import datetime
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from intake.models.mail import MailAccount

logger = logging.getLogger(__name__)

APPLICATIONS_TABLE = "applications"
ACCOUNTS_TABLE = "email_accounts"
AUTOMATION_LOGS_TABLE = "automation_logs"


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Datastore(abc.ABC):
    """Persistence operations used by the ingestion pipeline and controller."""

    @abc.abstractmethod
    async def find_application_by_email(self, email: str) -> Optional[dict]:
        """Return the stored record for a normalized email, or None."""

    @abc.abstractmethod
    async def create_application(self, record: dict) -> str:
        """Persist a record and return its id (also written into the record)."""

    @abc.abstractmethod
    async def list_email_accounts(self, automation_enabled: Optional[bool] = None) -> List[MailAccount]:
        """All configured mail accounts, optionally filtered by automation flag."""

    @abc.abstractmethod
    async def get_email_account(self, account_id: str) -> Optional[MailAccount]:
        ...

    @abc.abstractmethod
    async def update_account_last_checked(self, account_id: str, timestamp: datetime.datetime) -> None:
        ...

    @abc.abstractmethod
    async def increment_account_stats(
        self,
        account_id: str,
        processed: int = 0,
        imported: int = 0,
        last_error: Optional[str] = None,
    ) -> None:
        ...

    @abc.abstractmethod
    async def log_automation_activity(self, entry: Dict[str, Any]) -> None:
        """Append an automation activity entry.  Must not raise."""


class SupabaseDatastore(Datastore):
    """Datastore backed by Supabase (PostgREST) tables."""

    def __init__(self, client=None):
        if client is None:
            from intake.db import get_supabase_admin
            client = get_supabase_admin()
        self.client = client

    # -- applications -------------------------------------------------------

    def _find_application_sync(self, email: str) -> Optional[dict]:
        result = (
            self.client.table(APPLICATIONS_TABLE)
            .select("id, record")
            .eq("email", email)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        row = result.data[0]
        record = row.get("record") or {}
        record.setdefault("id", row["id"])
        return record

    async def find_application_by_email(self, email: str) -> Optional[dict]:
        if not email:
            return None
        return await asyncio.to_thread(self._find_application_sync, email)

    def _create_application_sync(self, record: dict) -> str:
        application_id = str(uuid4())
        stored = dict(record)
        stored["id"] = application_id

        self.client.table(APPLICATIONS_TABLE).insert({
            "id": application_id,
            "email": stored.get("email", ""),
            "record": stored,
            "created_at": stored.get("createdAt") or _now_iso(),
        }).execute()

        logger.info("Created application %s for %s", application_id, stored.get("email"))
        return application_id

    async def create_application(self, record: dict) -> str:
        return await asyncio.to_thread(self._create_application_sync, record)

    # -- accounts -------------------------------------------------------------

    def _list_accounts_sync(self, automation_enabled: Optional[bool]) -> List[MailAccount]:
        query = self.client.table(ACCOUNTS_TABLE).select("*")
        if automation_enabled is not None:
            query = query.eq("automation_enabled", automation_enabled)
        result = query.execute()
        return [MailAccount(**row) for row in result.data or []]

    async def list_email_accounts(self, automation_enabled: Optional[bool] = None) -> List[MailAccount]:
        return await asyncio.to_thread(self._list_accounts_sync, automation_enabled)

    def _get_account_sync(self, account_id: str) -> Optional[MailAccount]:
        result = self.client.table(ACCOUNTS_TABLE).select("*").eq("id", account_id).limit(1).execute()
        if not result.data:
            return None
        return MailAccount(**result.data[0])

    async def get_email_account(self, account_id: str) -> Optional[MailAccount]:
        return await asyncio.to_thread(self._get_account_sync, account_id)

    def _update_last_checked_sync(self, account_id: str, timestamp: datetime.datetime) -> None:
        self.client.table(ACCOUNTS_TABLE).update(
            {"last_checked": timestamp.isoformat()}
        ).eq("id", account_id).execute()

    async def update_account_last_checked(self, account_id: str, timestamp: datetime.datetime) -> None:
        await asyncio.to_thread(self._update_last_checked_sync, account_id, timestamp)

    def _increment_stats_sync(
        self, account_id: str, processed: int, imported: int, last_error: Optional[str]
    ) -> None:
        # Read-modify-write: only one controller instance writes account stats
        result = (
            self.client.table(ACCOUNTS_TABLE)
            .select("total_processed, total_imported")
            .eq("id", account_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            logger.warning("increment_account_stats: account %s not found", account_id)
            return

        current = result.data[0]
        update: Dict[str, Any] = {
            "total_processed": (current.get("total_processed") or 0) + processed,
            "total_imported": (current.get("total_imported") or 0) + imported,
        }
        if last_error:
            update["last_error"] = last_error
            update["last_error_at"] = _now_iso()

        self.client.table(ACCOUNTS_TABLE).update(update).eq("id", account_id).execute()

    async def increment_account_stats(
        self,
        account_id: str,
        processed: int = 0,
        imported: int = 0,
        last_error: Optional[str] = None,
    ) -> None:
        await asyncio.to_thread(self._increment_stats_sync, account_id, processed, imported, last_error)

    # -- automation log -------------------------------------------------------

    def _log_activity_sync(self, entry: Dict[str, Any]) -> None:
        row = dict(entry)
        row.setdefault("created_at", _now_iso())
        self.client.table(AUTOMATION_LOGS_TABLE).insert(row).execute()

    async def log_automation_activity(self, entry: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._log_activity_sync, entry)
        except Exception as exc:
            logger.error("Failed to write automation log entry: %s", exc)
