"""Sync engine keeping the local mirror consistent with the remote inventory.

Each cycle diffs the remote token inventory against the tokens already in
the mirror, fetches what is missing in page-sized batches, and on
steady-state cycles detects vote status transitions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Sequence

from ..client import PoliteiaClient
from ..errors import InvalidArgument, PersistenceError
from ..models import Category, Proposal, VoteStatus, VoteStatusCode
from ..store import ProposalStore
from .notifications import LoggingNotificationSink, NotificationSink

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 10 * 60


def diff(remote: Iterable[str], local: Iterable[str]) -> list[str]:
    """Return the tokens of `remote` that are not in `local`, in remote order."""
    known = set(local)
    return [token for token in remote if token not in known]


def batched(tokens: Sequence[str], size: int) -> Iterator[list[str]]:
    """Split `tokens` into consecutive batches of at most `size`."""
    if size < 1:
        raise InvalidArgument(f"batch size must be positive, got {size}")
    for start in range(0, len(tokens), size):
        yield list(tokens[start:start + size])


class SyncStatus(Enum):
    """Outcome of a sync cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some batches failed to persist


@dataclass
class SyncReport:
    """Result of a sync cycle."""

    status: SyncStatus = SyncStatus.SUCCESS
    new_proposals: int = 0
    failed_batches: int = 0
    status_changes: int = 0
    fetched: dict[str, int] = field(default_factory=dict)
    timestamp: datetime | None = None


class SyncEngine:
    """Drives initial catch-up and periodic incremental sync of the mirror.

    The engine keeps no progress cursor: the set of known tokens is read
    from the store at the start of every cycle. Cycles never overlap.
    """

    def __init__(
        self,
        client: PoliteiaClient,
        store: ProposalStore,
        sink: NotificationSink | None = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        """Initialize the sync engine.

        Args:
            client: Transport client for the remote service.
            store: Local mirror; the engine is its only writer.
            sink: Receives new-proposal and vote-transition events.
            interval_seconds: Delay between the end of one cycle and the next.
        """
        self._client = client
        self._store = store
        self._sink = sink or LoggingNotificationSink()
        self.interval_seconds = interval_seconds
        self._cycle_lock = asyncio.Lock()
        self._last_sync: datetime | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0
        self._cycles = 0

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    @sink.setter
    def sink(self, sink: NotificationSink) -> None:
        self._sink = sink

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful cycle."""
        return self._last_sync

    async def sync_once(self, notify: bool = False, check_votes: bool = False) -> SyncReport:
        """Run one sync cycle.

        Args:
            notify: Emit `on_new_proposal` for every proposal added.
            check_votes: Compare vote statuses and emit transition events.

        Returns:
            SyncReport for the cycle.

        Raises:
            PropMirrorError: If the cycle had to be aborted.
        """
        async with self._cycle_lock:
            self._cycles += 1
            try:
                report = await self._run_cycle(notify, check_votes)
            except Exception as e:
                self._consecutive_failures += 1
                self._last_error = str(e)
                raise

            self._consecutive_failures = 0
            self._last_error = None
            self._last_sync = report.timestamp
            return report

    async def _run_cycle(self, notify: bool, check_votes: bool) -> SyncReport:
        policy = await self._client.fetch_policy()
        inventory = await self._client.fetch_token_inventory()

        local_tokens = set(self._store.all_tokens())
        missing = {
            category: diff(inventory.tokens_for(category), local_tokens)
            for category in Category.concrete()
        }

        # Overlap is not expected; each listing is fetched and the last one wins
        listed: dict[str, int] = {}
        for tokens in missing.values():
            for token in tokens:
                listed[token] = listed.get(token, 0) + 1
        overlapping = [token for token, n in listed.items() if n > 1]
        if overlapping:
            logger.warning(
                f"{len(overlapping)} tokens are listed under more than one category: "
                f"{', '.join(overlapping)}"
            )

        total = sum(len(tokens) for tokens in missing.values())
        if total:
            logger.info(f"Fetching {total} new proposals")
        else:
            logger.info("No new proposals found")

        report = SyncReport()
        for category in Category.concrete():
            report.fetched[category.name.lower()] = 0
            for batch in batched(missing[category], policy.proposallistpagesize):
                try:
                    await self._sync_batch(category, batch, notify, report)
                except PersistenceError as e:
                    # Proposals saved before the failure stay committed
                    report.failed_batches += 1
                    logger.error(f"Failed to persist {category.name.lower()} batch: {e}")

        if check_votes:
            await self._check_vote_status(report)

        if report.failed_batches:
            report.status = SyncStatus.PARTIAL
        report.timestamp = datetime.now()
        return report

    async def _sync_batch(
        self,
        category: Category,
        batch: list[str],
        notify: bool,
        report: SyncReport,
    ) -> None:
        """Fetch, merge and persist one batch of proposals."""
        proposals, summaries = await asyncio.gather(
            self._client.fetch_batch_proposals(batch),
            self._client.fetch_batch_vote_summaries(batch),
        )

        order = {token: i for i, token in enumerate(batch)}
        unexpected = [p.token for p in proposals if p.token not in order]
        if unexpected:
            logger.warning(f"Ignoring {len(unexpected)} proposals that were not requested")
        proposals = sorted(
            (p for p in proposals if p.token in order), key=lambda p: order[p.token]
        )

        for proposal in proposals:
            proposal.category = category
            summary = summaries.get(proposal.token)
            if summary is not None:
                proposal.vote_summary = summary
                proposal.vote_status = VoteStatus(token=proposal.token, status=summary.status)

            self._store.save(proposal)
            report.new_proposals += 1
            report.fetched[category.name.lower()] += 1

            if notify:
                logger.info(f"Found new proposal {proposal.token}")
                self._notify(self._sink.on_new_proposal, proposal)

    async def _check_vote_status(self, report: SyncReport) -> None:
        """Record vote status changes and emit start/finish events."""
        remote_statuses = await self._client.fetch_votes_status()
        stored = self._store.vote_statuses()

        for remote in remote_statuses:
            current = stored.get(remote.token)
            if current is None or current.status == remote.status:
                continue

            self._store.update_field(remote.token, "vote_status", remote)
            report.status_changes += 1
            logger.info(
                f"Vote status of {remote.token} changed {current.status} -> {remote.status}"
            )

            if remote.status == VoteStatusCode.STARTED:
                callback = self._sink.on_vote_started
            elif remote.status == VoteStatusCode.FINISHED:
                callback = self._sink.on_vote_finished
            else:
                continue

            proposal = self._store.get_by_token(remote.token)
            if proposal is not None:
                self._notify(callback, proposal)

    def _notify(self, callback: Callable[[Proposal], None], proposal: Proposal) -> None:
        try:
            callback(proposal)
        except Exception as e:
            logger.error(f"Notification handler failed for {proposal.token}: {e}", exc_info=True)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Run the sync loop until `stop_event` is set.

        The first successful cycle is the initial catch-up: it adds proposals
        silently and skips the vote status check. Later cycles run every
        `interval_seconds`. A failed cycle is logged and retried at the next
        tick. Setting the stop event never interrupts a cycle in flight.

        Args:
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {self.interval_seconds}s interval")
        initial = True

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                report = await self.sync_once(notify=not initial, check_votes=not initial)
                initial = False
                logger.info(
                    f"Sync: {report.status.value}, "
                    f"new={report.new_proposals}, "
                    f"status_changes={report.status_changes}, "
                    f"failed_batches={report.failed_batches}"
                )
            except Exception as e:
                logger.error(f"Sync cycle failed: {e}", exc_info=True)

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(self.interval_seconds)

        logger.info("Sync loop stopped")

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        return {
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error,
            "cycles": self._cycles,
            "consecutive_failures": self._consecutive_failures,
            "proposals": self._store.get_stats(),
        }
