"""
Submission queue - forwards queued form submissions (contact, quote, order)
to their upstream endpoint, retrying with bounded exponential backoff.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import httpx

import config
from models.sync import QueuedSubmission, SubmissionCreate
from services.errors import ConflictError, PermissionDeniedError, ValidationError
from services.store import Store

logger = logging.getLogger(__name__)

COLLECTION = "sync_queue"
ALLOWED_METHODS = {"POST", "PUT", "PATCH"}


def backoff_delay(retries: int, base: float = config.SYNC_BACKOFF_BASE_SECONDS,
                  maximum: float = config.SYNC_BACKOFF_MAX_SECONDS) -> float:
    """Seconds to wait before the next attempt after `retries` failures"""
    return min(base * (2 ** retries), maximum)


class SyncQueue:
    def __init__(
        self,
        store: Store,
        max_retries: int = config.SYNC_MAX_RETRIES,
        timeout: float = config.SYNC_REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock=None,
        allowed_hosts: Optional[List[str]] = None,
    ):
        self.store = store
        self.allowed_hosts = {h.lower() for h in (config.SYNC_ALLOWED_HOSTS if allowed_hosts is None else allowed_hosts)}
        self.max_retries = max_retries
        self.timeout = timeout
        self.transport = transport
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def enqueue(self, data: SubmissionCreate) -> QueuedSubmission:
        method = data.method.upper()
        if method not in ALLOWED_METHODS:
            raise ValidationError(f"Unsupported method {data.method}")
        if not data.endpoint.startswith(("http://", "https://")):
            raise ValidationError("endpoint must be an absolute http(s) URL")
        try:
            host = httpx.URL(data.endpoint).host.lower()
        except httpx.InvalidURL:
            raise ValidationError("endpoint is not a valid URL")
        if not self.host_allowed(data.endpoint):
            raise PermissionDeniedError(f"Submissions to {host or data.endpoint} are not allowed")

        submission = QueuedSubmission(
            kind=data.kind,
            endpoint=data.endpoint,
            method=method,
            data=data.data,
            next_attempt_at=self.clock(),
        )
        tx = self.store.transaction()
        tx.insert(COLLECTION, submission.model_dump(mode="json"))
        await tx.commit()
        logger.info(f"Enqueued {submission.kind} submission {submission.submission_id}")
        return submission

    def host_allowed(self, endpoint: str) -> bool:
        try:
            return httpx.URL(endpoint).host.lower() in self.allowed_hosts
        except httpx.InvalidURL:
            return False

    async def pending(self) -> List[QueuedSubmission]:
        docs = await self.store.find(COLLECTION, {"status": "queued"}, sort=[("created_at", 1)])
        return [QueuedSubmission(**d) for d in docs]

    async def failed(self) -> List[QueuedSubmission]:
        docs = await self.store.find(COLLECTION, {"status": "failed"}, sort=[("created_at", 1)])
        return [QueuedSubmission(**d) for d in docs]

    async def clear(self) -> int:
        docs = await self.store.find(COLLECTION)
        if not docs:
            return 0
        tx = self.store.transaction()
        for doc in docs:
            tx.delete(COLLECTION, {"submission_id": doc["submission_id"]})
        await tx.commit()
        logger.info(f"Cleared {len(docs)} queued submissions")
        return len(docs)

    async def process_all(self) -> Dict[str, int]:
        """Send every due submission once; returns counts of sent, retrying and failed"""
        now = self.clock()
        due = [s for s in await self.pending() if s.next_attempt_at <= now]
        summary = {"sent": 0, "retrying": 0, "failed": 0}
        if not due:
            return summary

        logger.info(f"Processing {len(due)} queued submissions")
        async with httpx.AsyncClient(transport=self.transport) as client:
            for submission in due:
                allowed = self.host_allowed(submission.endpoint)
                error = await self._send(client, submission) if allowed else "host not allowed"
                try:
                    outcome = await self._record(submission, error, now, give_up=not allowed)
                except ConflictError:
                    logger.info(f"Submission {submission.submission_id} was handled concurrently")
                    continue
                summary[outcome] += 1
        return summary

    async def _send(self, client: httpx.AsyncClient, submission: QueuedSubmission) -> Optional[str]:
        try:
            response = await client.request(
                submission.method,
                submission.endpoint,
                json=submission.data,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return f"HTTP {e.response.status_code}"
        except httpx.HTTPError as e:
            return str(e) or e.__class__.__name__
        return None

    async def _record(self, submission: QueuedSubmission, error: Optional[str], now: datetime,
                      give_up: bool = False) -> str:
        tx = self.store.transaction()
        key = {"submission_id": submission.submission_id}
        if error is None:
            tx.delete(COLLECTION, key, submission.version)
            await tx.commit()
            logger.info(f"Synced submission {submission.submission_id}")
            return "sent"

        retries = submission.retries + 1
        if retries >= self.max_retries or give_up:
            tx.update(COLLECTION, key, submission.version, {
                "retries": retries,
                "status": "failed",
                "last_error": error,
            })
            await tx.commit()
            logger.error(f"Max retries reached for submission {submission.submission_id}: {error}")
            return "failed"

        delay = backoff_delay(submission.retries)
        tx.update(COLLECTION, key, submission.version, {
            "retries": retries,
            "last_error": error,
            "next_attempt_at": (now + timedelta(seconds=delay)).isoformat(),
        })
        await tx.commit()
        logger.warning(f"Submission {submission.submission_id} failed ({error}), retrying in {delay:.0f}s")
        return "retrying"
