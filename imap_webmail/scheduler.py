"""Background jobs: scheduled sending and Trash auto-purge.

Jobs live in a ScheduleStore; durable storage is left to the deployment, an
in-memory store is provided. A pass sends due pending jobs oldest first and
retries failures on later passes until ``max_retries`` attempts were made.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Protocol

from imap_webmail.emails import MailboxHandler
from imap_webmail.emails.models import ComposeRequest, ScheduledEmail
from imap_webmail.log import logger


class ScheduleStore(Protocol):
    async def add(self, job: ScheduledEmail) -> ScheduledEmail: ...

    async def due(self, now: datetime, limit: int) -> list[ScheduledEmail]: ...

    async def save(self, job: ScheduledEmail) -> None:
        """Update a known job. Jobs cancelled (removed) in the meantime are not re-added."""

    async def list_for_user(self, username: str) -> list[ScheduledEmail]: ...

    async def cancel(self, job_id: int, username: str) -> bool: ...


class InMemoryScheduleStore:
    def __init__(self):
        self._jobs: dict[int, ScheduledEmail] = {}
        self._ids = itertools.count(1)

    async def add(self, job: ScheduledEmail) -> ScheduledEmail:
        job = job.model_copy(update={"id": next(self._ids), "created_at": datetime.now(timezone.utc)})
        self._jobs[job.id] = job
        return job

    async def due(self, now: datetime, limit: int) -> list[ScheduledEmail]:
        pending = [j for j in self._jobs.values() if j.status == "pending" and j.send_at <= now]
        pending.sort(key=lambda j: j.send_at)
        return pending[:limit]

    async def save(self, job: ScheduledEmail) -> None:
        # a job cancelled while a pass was sending it must stay cancelled
        if job.id in self._jobs:
            self._jobs[job.id] = job

    async def list_for_user(self, username: str) -> list[ScheduledEmail]:
        jobs = [j for j in self._jobs.values() if j.username == username]
        return sorted(jobs, key=lambda j: j.send_at)

    async def cancel(self, job_id: int, username: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.username != username or job.status != "pending":
            return False
        del self._jobs[job_id]
        return True


async def schedule_email(
    store: ScheduleStore, username: str, password: str, compose: ComposeRequest, send_at: datetime
) -> ScheduledEmail:
    if send_at.tzinfo is None:
        send_at = send_at.replace(tzinfo=timezone.utc)
    job = await store.add(ScheduledEmail(username=username, password=password, compose=compose, send_at=send_at))
    logger.info(f"[Scheduler] Scheduled job id={job.id} for {username} at {send_at.isoformat()}")
    return job


async def process_scheduled_emails(
    store: ScheduleStore,
    handler: MailboxHandler,
    now: datetime | None = None,
    batch_size: int = 10,
    max_retries: int = 3,
) -> int:
    """Send due jobs once. Returns the number sent successfully."""
    now = now or datetime.now(timezone.utc)
    jobs = await store.due(now, batch_size)
    if not jobs:
        return 0

    logger.info(f"[Scheduler] Processing {len(jobs)} scheduled email(s)")
    sent = 0
    for job in jobs:
        try:
            await handler.send_mail(job.username, job.password, job.compose)
        except Exception as e:
            retry_count = job.retry_count + 1
            status = "failed" if retry_count >= max_retries else "pending"
            logger.error(f"[Scheduler] Failed job id={job.id} attempt={retry_count}: {e}")
            await store.save(
                job.model_copy(update={"retry_count": retry_count, "error_message": str(e), "status": status})
            )
            continue
        await store.save(job.model_copy(update={"status": "sent", "error_message": None}))
        logger.info(f"[Scheduler] Successfully sent job id={job.id}")
        sent += 1
    return sent


async def run_scheduler(
    store: ScheduleStore,
    handler: MailboxHandler,
    interval: float = 30.0,
    batch_size: int = 10,
    max_retries: int = 3,
) -> None:
    """Run passes every ``interval`` seconds until cancelled."""
    while True:
        try:
            await process_scheduled_emails(store, handler, batch_size=batch_size, max_retries=max_retries)
        except Exception as e:
            logger.error(f"[Scheduler] Pass failed: {e}")
        await asyncio.sleep(interval)


async def run_trash_purge(
    handler: MailboxHandler,
    username: str,
    password: str,
    interval: float = 3600.0,
    retention_days: int = 30,
) -> None:
    """Purge old Trash messages of one account every ``interval`` seconds until cancelled."""
    logger.info(f"[Trash Purge] Auto-purge started (every {interval:.0f}s, retention: {retention_days} days)")
    while True:
        try:
            await handler.purge_trash(username, password, retention_days)
        except Exception as e:
            logger.error(f"[Trash Purge] Pass failed for {username}: {e}")
        await asyncio.sleep(interval)
