"""
Email automation controller.

Owns the polling cadence for all configured mailboxes.  States:

    STOPPED     no timers
    RUNNING     the check-cycle job runs every ``check_interval_minutes``
    MONITORING  only a light job runs every ``monitoring_interval_minutes``,
                waiting for an account to become eligible

Transitions:

    start()                   STOPPED -> RUNNING (or MONITORING if nothing is eligible)
    run_check_cycle()         RUNNING -> MONITORING after N consecutive empty cycles,
                              or at once when every account has automation disabled
    monitor_tick()            MONITORING -> RUNNING when an eligible account appears
    stop() / force_stop()     any -> STOPPED

Accounts are checked concurrently, but an account already being checked is
skipped (the processing registry).  Messages within an account run in
sequential batches with a pause between batches and a per-message timeout.
Stopping clears timers and the registry without cancelling in-flight work.
Each check holds its own registry claim: an abandoned check finishes at most
its current batch and never releases the claim of a newer check.

Only one controller instance may run against a given set of accounts.
"""

import asyncio
import datetime
import enum
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from intake.config import DEFAULT_LOOKBACK_DAYS, MAX_LOOKBACK_DAYS, AutomationSettings
from intake.errors import (
    CredentialError,
    ConnectivityError,
    DuplicateError,
    IngestionError,
    ProcessingTimeoutError,
)
from intake.models.mail import ConnectionConfig, EmailMessage, MailAccount
from intake.services.credentials import decrypt_password
from intake.services.datastore import Datastore
from intake.services.job_filters import is_likely_job_application
from intake.services.normalizer import normalize_email

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "email-check-cycle"
MONITOR_JOB_ID = "account-monitor"


class ControllerState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    MONITORING = "monitoring"


class MessageFailure(BaseModel):
    uid: str
    error_type: str
    reason: str


class AccountCheckResult(BaseModel):
    account_id: str
    skipped: bool = False
    found: int = 0
    processed: int = 0
    imported: int = 0
    duplicates: int = 0
    errors: int = 0
    failures: List[MessageFailure] = []
    error: Optional[str] = None


class CycleReport(BaseModel):
    started_at: datetime.datetime
    eligible_accounts: int = 0
    results: List[AccountCheckResult] = []
    state: ControllerState = ControllerState.RUNNING
    skipped: bool = False


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _isoformat(value: Any) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime.datetime) else None


class _ProcessingClaim:
    """Registry entry owned by one running account check."""

    __slots__ = ("started_at",)

    def __init__(self, started_at: datetime.datetime):
        self.started_at = started_at


class AutomationController:
    """Scheduler and state machine for automated mailbox polling."""

    def __init__(
        self,
        datastore: Datastore,
        transport,
        pipeline,
        scheduler: Optional[AsyncIOScheduler] = None,
        settings: Optional[AutomationSettings] = None,
        decrypt: Callable[[Any], str] = decrypt_password,
    ):
        self.datastore = datastore
        self.transport = transport
        self.pipeline = pipeline
        self.scheduler = scheduler if scheduler is not None else AsyncIOScheduler()
        self.settings = settings or AutomationSettings()
        self.decrypt = decrypt

        self.state = ControllerState.STOPPED
        self.consecutive_empty_checks = 0
        self.started_at: Optional[datetime.datetime] = None
        self.last_check_at: Optional[datetime.datetime] = None
        self.last_monitor_at: Optional[datetime.datetime] = None

        # account id -> claim of the check currently allowed to run
        self._processing: Dict[str, _ProcessingClaim] = {}

    # ------------------------------------------------------------------
    # Scheduler plumbing
    # ------------------------------------------------------------------

    def _ensure_scheduler_running(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def _remove_job(self, job_id: str) -> None:
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)

    def _schedule_check_job(self, run_now: bool) -> None:
        kwargs = {"next_run_time": _utcnow()} if run_now else {}
        self.scheduler.add_job(
            self.run_check_cycle,
            IntervalTrigger(minutes=self.settings.check_interval_minutes),
            id=CHECK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **kwargs,
        )

    def _schedule_monitor_job(self) -> None:
        self.scheduler.add_job(
            self.monitor_tick,
            IntervalTrigger(minutes=self.settings.monitoring_interval_minutes),
            id=MONITOR_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    # ------------------------------------------------------------------
    # Account discovery
    # ------------------------------------------------------------------

    async def _eligible_accounts(self) -> List[MailAccount]:
        accounts = await self.datastore.list_email_accounts(automation_enabled=True)
        return [account for account in accounts if account.is_eligible]

    async def has_active_accounts(self) -> bool:
        """True when at least one account is automation-enabled and active."""
        return len(await self._eligible_accounts()) > 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run_immediately: bool = True) -> ControllerState:
        """
        Start polling.

        Falls back to monitoring mode when no account is eligible.  With
        ``run_immediately`` the first cycle is scheduled right away rather than
        after one interval.
        """
        if self.state == ControllerState.RUNNING:
            logger.info("Email automation already running")
            return self.state

        if not await self.has_active_accounts():
            logger.info("No eligible email accounts, entering monitoring mode")
            await self.start_monitoring()
            return self.state

        self._remove_job(MONITOR_JOB_ID)
        self.state = ControllerState.RUNNING
        self.consecutive_empty_checks = 0
        self.started_at = _utcnow()

        self._ensure_scheduler_running()
        self._schedule_check_job(run_now=run_immediately)

        logger.info(
            "Email automation started: checking every %d minutes",
            self.settings.check_interval_minutes,
        )
        return self.state

    async def stop(self, enable_monitoring: bool = False) -> ControllerState:
        """
        Stop polling and clear the processing registry.

        With ``enable_monitoring`` the controller keeps watching for eligible
        accounts when automation-enabled accounts still exist.
        """
        self._remove_job(CHECK_JOB_ID)
        self._remove_job(MONITOR_JOB_ID)
        self._processing.clear()
        self.consecutive_empty_checks = 0
        self.state = ControllerState.STOPPED
        logger.info("Email automation stopped")

        if enable_monitoring:
            accounts = await self.datastore.list_email_accounts(automation_enabled=True)
            if accounts:
                await self.start_monitoring()

        return self.state

    async def force_stop(self) -> ControllerState:
        """Clear every timer and the registry unconditionally."""
        self._remove_job(CHECK_JOB_ID)
        self._remove_job(MONITOR_JOB_ID)
        abandoned = list(self._processing)
        self._processing.clear()
        self.consecutive_empty_checks = 0
        self.state = ControllerState.STOPPED
        if abandoned:
            logger.warning("Force stop abandoned in-flight checks for accounts: %s", ", ".join(abandoned))
        logger.info("Email automation force-stopped")
        return self.state

    async def force_restart(self) -> ControllerState:
        await self.stop()
        return await self.start()

    async def shutdown(self) -> None:
        await self.force_stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def initialize(self) -> ControllerState:
        """Auto-start on process startup unless disabled in settings."""
        if not self.settings.auto_start:
            logger.info("Email automation auto-start disabled")
            return self.state
        return await self.start()

    # ------------------------------------------------------------------
    # Monitoring mode
    # ------------------------------------------------------------------

    async def start_monitoring(self) -> ControllerState:
        self._remove_job(CHECK_JOB_ID)
        self.state = ControllerState.MONITORING
        self.consecutive_empty_checks = 0

        self._ensure_scheduler_running()
        self._schedule_monitor_job()

        logger.info(
            "Account monitoring started: checking for eligible accounts every %d minutes",
            self.settings.monitoring_interval_minutes,
        )
        return self.state

    async def monitor_tick(self) -> bool:
        """
        Look for eligible accounts; restart full polling if one is found.

        Returns True when polling was restarted.
        """
        if self.state != ControllerState.MONITORING:
            return False

        self.last_monitor_at = _utcnow()
        try:
            eligible = await self.has_active_accounts()
        except Exception as exc:
            logger.error("Account monitoring check failed: %s", exc)
            return False

        if not eligible:
            logger.debug("Monitoring: still no eligible accounts")
            return False

        logger.info("Monitoring: eligible account found, restarting email automation")
        await self.force_restart()
        return self.state == ControllerState.RUNNING

    async def check_for_new_accounts(self) -> dict:
        """Report eligible accounts and start polling if any are waiting."""
        accounts = await self._eligible_accounts()
        started = False
        if accounts and self.state != ControllerState.RUNNING:
            await self.force_restart()
            started = self.state == ControllerState.RUNNING

        return {
            "eligibleAccounts": len(accounts),
            "accountIds": [account.id for account in accounts],
            "state": self.state.value,
            "started": started,
        }

    async def handle_account_removed(self, account_id: str) -> ControllerState:
        """Re-evaluate after an account is deleted or has automation disabled."""
        logger.info("Account %s removed, re-evaluating automation state", account_id)
        if self.state == ControllerState.RUNNING and not await self.has_active_accounts():
            logger.info("No eligible accounts left, switching to monitoring mode")
            await self.start_monitoring()
        return self.state

    # ------------------------------------------------------------------
    # Check cycle
    # ------------------------------------------------------------------

    async def run_check_cycle(self) -> CycleReport:
        """One automation cycle over every eligible account."""
        report = CycleReport(started_at=_utcnow(), state=self.state)
        if self.state != ControllerState.RUNNING:
            report.skipped = True
            return report

        self.last_check_at = report.started_at
        try:
            accounts = await self.datastore.list_email_accounts()
        except Exception as exc:
            logger.error("Failed to load email accounts: %s", exc)
            report.skipped = True
            return report

        eligible = [account for account in accounts if account.is_eligible]
        report.eligible_accounts = len(eligible)

        if not eligible:
            self.consecutive_empty_checks += 1
            logger.info(
                "No eligible accounts (%d/%d consecutive empty checks)",
                self.consecutive_empty_checks, self.settings.max_consecutive_empty_checks,
            )
            all_disabled = bool(accounts) and not any(a.automation_enabled for a in accounts)
            if all_disabled or self.consecutive_empty_checks >= self.settings.max_consecutive_empty_checks:
                logger.info("Switching email automation to monitoring mode")
                await self.start_monitoring()
            report.state = self.state
            return report

        self.consecutive_empty_checks = 0
        outcomes = await asyncio.gather(
            *(self.check_account(account) for account in eligible),
            return_exceptions=True,
        )

        for account, outcome in zip(eligible, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Check of account %s failed: %s", account.id, outcome, exc_info=outcome)
                outcome = AccountCheckResult(account_id=account.id, error=str(outcome))
            report.results.append(outcome)

        report.state = self.state
        logger.info(
            "Check cycle finished: %d accounts, %d imported",
            len(eligible), sum(r.imported for r in report.results),
        )
        return report

    def lookback_since(self, account: MailAccount, now: Optional[datetime.datetime] = None) -> datetime.datetime:
        """Start of the search window: last check, bounded to MAX_LOOKBACK_DAYS."""
        now = now or _utcnow()
        floor = now - datetime.timedelta(days=MAX_LOOKBACK_DAYS)
        since = account.last_checked or (now - datetime.timedelta(days=DEFAULT_LOOKBACK_DAYS))
        if since.tzinfo is None:
            since = since.replace(tzinfo=datetime.timezone.utc)
        return max(since, floor)

    async def filter_new_messages(self, messages: List[EmailMessage]) -> List[EmailMessage]:
        """Keep likely applications whose sender has no stored application."""
        new_messages = []
        for message in messages:
            if not is_likely_job_application(message):
                logger.debug("Skipping non-application message %s: %r", message.uid, message.subject)
                continue
            try:
                existing = await self.datastore.find_application_by_email(
                    normalize_email(message.sender_email)
                )
            except Exception as exc:
                # The duplicate check before the write still applies
                logger.warning("Duplicate lookup failed for %s: %s", message.sender_email, exc)
                new_messages.append(message)
                continue
            if existing is not None:
                logger.info("Skipping %s: application already exists", message.sender_email)
                continue
            new_messages.append(message)
        return new_messages

    async def _record_account_error(self, account_id: str, error: str) -> None:
        try:
            await self.datastore.increment_account_stats(account_id, last_error=error)
        except Exception as exc:
            logger.error("Failed to record error on account %s: %s", account_id, exc)

    async def check_account(self, account: MailAccount) -> AccountCheckResult:
        """Check one mailbox and process its new applications."""
        result = AccountCheckResult(account_id=account.id)
        if account.id in self._processing:
            logger.info("Account %s is already being processed, skipping", account.id)
            result.skipped = True
            return result

        claim = _ProcessingClaim(_utcnow())
        self._processing[account.id] = claim
        started = time.monotonic()
        try:
            config = account.connection_config(self.decrypt)
            await self.transport.validate_connection(config)

            since = self.lookback_since(account)
            messages = await self.transport.list_messages(
                config,
                since,
                job_related=True,
                with_attachments=True,
                max_results=self.settings.max_emails_per_check,
            )
            result.found = len(messages)
            new_messages = await self.filter_new_messages(messages)
            logger.info(
                "Account %s: %d messages since %s, %d new applications",
                account.id, len(messages), since.date(), len(new_messages),
            )

            await self._process_in_batches(config, new_messages, account.id, result, claim)

            await self.datastore.update_account_last_checked(account.id, _utcnow())
            await self.datastore.increment_account_stats(
                account.id, processed=result.processed, imported=result.imported
            )
        except (ConnectivityError, CredentialError, ValueError) as exc:
            result.error = str(exc)
            logger.error("Account %s check failed: %s", account.id, exc)
            await self._record_account_error(account.id, str(exc))
        except Exception as exc:
            result.error = str(exc) or type(exc).__name__
            logger.exception("Account %s check failed unexpectedly", account.id)
            await self._record_account_error(account.id, result.error)
        finally:
            if self._processing.get(account.id) is claim:
                del self._processing[account.id]
            await self.datastore.log_automation_activity({
                "account_id": account.id,
                "status": "error" if result.error else "success",
                "processed": result.processed,
                "imported": result.imported,
                "duplicates": result.duplicates,
                "errors": result.errors,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "error": result.error,
            })

        return result

    async def force_check_account(self, account_id: str) -> AccountCheckResult:
        """Check one account now, whatever its automation flag."""
        account = await self.datastore.get_email_account(account_id)
        if account is None:
            raise ValueError(f"Email account {account_id} not found")
        return await self.check_account(account)

    async def _process_in_batches(
        self,
        config: ConnectionConfig,
        messages: List[EmailMessage],
        account_id: str,
        result: AccountCheckResult,
        claim: _ProcessingClaim,
    ) -> None:
        batch_size = self.settings.batch_size
        for start in range(0, len(messages), batch_size):
            if start > 0:
                await asyncio.sleep(self.settings.batch_delay_seconds)
            if self._processing.get(account_id) is not claim:
                logger.info("Account %s check was stopped, abandoning remaining messages", account_id)
                return

            for message in messages[start:start + batch_size]:
                await self._process_message(config, message, account_id, result)

    async def _process_message(
        self,
        config: ConnectionConfig,
        message: EmailMessage,
        account_id: str,
        result: AccountCheckResult,
    ) -> None:
        result.processed += 1
        timeout = self.settings.processing_timeout_seconds
        try:
            await asyncio.wait_for(
                self.pipeline.process_message(config, message, account_id),
                timeout=timeout,
            )
            result.imported += 1
        except DuplicateError as exc:
            result.duplicates += 1
            logger.info("Duplicate skipped for message %s: %s", message.uid, exc)
        except asyncio.TimeoutError:
            error = ProcessingTimeoutError(f"Message {message.uid} timed out after {timeout:g}s")
            result.errors += 1
            result.failures.append(
                MessageFailure(uid=message.uid, error_type=type(error).__name__, reason=str(error))
            )
            logger.error(str(error))
        except IngestionError as exc:
            result.errors += 1
            result.failures.append(
                MessageFailure(uid=message.uid, error_type=type(exc).__name__, reason=str(exc))
            )
            logger.warning("Message %s from %s skipped: %s", message.uid, message.sender_email, exc)
        except Exception as exc:
            result.errors += 1
            result.failures.append(
                MessageFailure(uid=message.uid, error_type=type(exc).__name__, reason=str(exc))
            )
            logger.exception("Unexpected error processing message %s", message.uid)

    # ------------------------------------------------------------------
    # Settings & status
    # ------------------------------------------------------------------

    def update_settings(self, **changes) -> AutomationSettings:
        """
        Apply validated setting changes.

        A new check interval takes effect immediately on a running timer, as
        does a new monitoring interval while monitoring.
        """
        previous = self.settings
        self.settings = previous.updated(**changes)

        if (
            self.settings.check_interval_minutes != previous.check_interval_minutes
            and self.state == ControllerState.RUNNING
        ):
            self.scheduler.reschedule_job(
                CHECK_JOB_ID, trigger=IntervalTrigger(minutes=self.settings.check_interval_minutes)
            )
            logger.info("Check interval changed to %d minutes", self.settings.check_interval_minutes)

        if (
            self.settings.monitoring_interval_minutes != previous.monitoring_interval_minutes
            and self.state == ControllerState.MONITORING
        ):
            self.scheduler.reschedule_job(
                MONITOR_JOB_ID, trigger=IntervalTrigger(minutes=self.settings.monitoring_interval_minutes)
            )

        return self.settings

    def get_status(self) -> dict:
        job_id = MONITOR_JOB_ID if self.state == ControllerState.MONITORING else CHECK_JOB_ID
        job = self.scheduler.get_job(job_id) if self.state != ControllerState.STOPPED else None

        return {
            "state": self.state.value,
            "isRunning": self.state == ControllerState.RUNNING,
            "isMonitoring": self.state == ControllerState.MONITORING,
            "settings": self.settings.model_dump(),
            "consecutiveEmptyChecks": self.consecutive_empty_checks,
            "processingAccounts": list(self._processing),
            "startedAt": _isoformat(self.started_at),
            "lastCheckAt": _isoformat(self.last_check_at),
            "lastMonitorAt": _isoformat(self.last_monitor_at),
            "nextRunAt": _isoformat(getattr(job, "next_run_time", None)),
        }
