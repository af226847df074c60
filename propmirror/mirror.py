"""Query surface and sync lifecycle of the local proposal mirror."""

import asyncio
import logging

import httpx

from .client import PoliteiaClient, Session
from .config import Config
from .errors import ProposalNotFound
from .models import Category, Proposal, User, VoteStatus
from .store import ProposalStore, SessionStore
from .sync import NotificationSink, SyncEngine, SyncReport

logger = logging.getLogger(__name__)


class ProposalMirror:
    """Local mirror of the remote proposal catalog.

    Queries read only the local store and never touch the network. The
    background sync task, once started, keeps the store current.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        proposal_store: ProposalStore | None = None,
        session_store: SessionStore | None = None,
        sink: NotificationSink | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the mirror and open its stores.

        Args:
            config: Configuration; defaults are used if None.
            proposal_store: Store for proposals (default from config).
            session_store: Store for the session (default from config).
            sink: Receives sync notifications.
            http_client: Optional preconfigured httpx client for the transport.
        """
        self.config = config or Config()

        self.store = proposal_store or ProposalStore(self.config.store.proposals_db_path)
        self.session_store = session_store or SessionStore(self.config.store.session_db_path)
        self.store.connect()
        self.session_store.connect()

        self.session = Session.load(self.session_store)
        politeia = self.config.politeia
        self.client = PoliteiaClient(
            self.session,
            host=politeia.host,
            api_path=politeia.api_path,
            timeout=politeia.timeout_seconds,
            verify_tls=politeia.verify_tls,
            csrf_token_ttl=politeia.csrf_token_ttl_seconds,
            client=http_client,
        )
        self.engine = SyncEngine(
            self.client,
            self.store,
            sink=sink,
            interval_seconds=self.config.sync.interval_minutes * 60,
        )

        self._stop_event: asyncio.Event | None = None
        self._sync_task: asyncio.Task | None = None

    async def __aenter__(self) -> "ProposalMirror":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ==================== Queries ====================

    def get_proposals(
        self,
        category: Category | str | int = Category.ALL,
        offset: int = 0,
        limit: int = 0,
        newest_first: bool = True,
    ) -> list[Proposal]:
        """List mirrored proposals in a category, paginated and ordered by timestamp."""
        return self.store.find(Category.parse(category), offset, limit, newest_first)

    def get_proposal(self, token: str) -> Proposal:
        """Get a proposal by censorship token.

        Raises:
            ProposalNotFound: If the token is not mirrored.
        """
        proposal = self.store.get_by_token(token)
        if proposal is None:
            raise ProposalNotFound(token)
        return proposal

    def get_proposal_by_id(self, proposal_id: int) -> Proposal:
        """Get a proposal by its local numeric id.

        Raises:
            ProposalNotFound: If no proposal has that id.
        """
        proposal = self.store.get_by_id(proposal_id)
        if proposal is None:
            raise ProposalNotFound(proposal_id)
        return proposal

    def get_vote_status(self, token: str) -> VoteStatus:
        """Get the last known vote status of a proposal.

        Only the status code is guaranteed current. Until the code changes the
        stored status is the one seeded at first sync, with no tallies; read
        the proposal's `vote_summary` for counts, or `fetch_remote_vote_status`
        for live values.
        """
        return self.get_proposal(token).vote_status

    def count(self, category: Category | str | int = Category.ALL) -> int:
        """Count mirrored proposals in a category."""
        return self.store.count(Category.parse(category))

    def counts(self) -> dict[str, int]:
        """Count mirrored proposals in every concrete category."""
        return {c.name.lower(): self.store.count(c) for c in Category.concrete()}

    # ==================== Remote ====================

    async def login(self, email: str, password: str) -> User:
        """Log in to the remote service and persist the session."""
        return await self.client.login(email, password)

    async def fetch_remote_proposal(self, token: str, version: str | None = None) -> Proposal:
        """Fetch a proposal straight from the remote service.

        The result is not written to the mirror.
        """
        return await self.client.fetch_proposal(token, version=version)

    async def fetch_remote_vote_status(self, token: str) -> VoteStatus:
        """Fetch the live vote status of a proposal from the remote service."""
        return await self.client.fetch_vote_status(token)

    async def sync_now(self, notify: bool = False, check_votes: bool = False) -> SyncReport:
        """Run a single sync cycle in the caller's task."""
        return await self.engine.sync_once(notify=notify, check_votes=check_votes)

    # ==================== Sync lifecycle ====================

    @property
    def is_syncing(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    async def start_sync(self, sink: NotificationSink | None = None) -> None:
        """Start the background sync loop."""
        if self.is_syncing:
            return

        if sink is not None:
            self.engine.sink = sink

        self._stop_event = asyncio.Event()
        self._sync_task = asyncio.create_task(self.engine.run(self._stop_event))
        logger.info("Background sync started")

    async def stop_sync(self) -> None:
        """Stop the background sync loop.

        A cycle already in flight runs to completion before this returns.
        """
        if self._sync_task is None:
            return

        self._stop_event.set()
        await self._sync_task
        self._sync_task = None
        self._stop_event = None
        logger.info("Background sync stopped")

    async def close(self) -> None:
        """Stop syncing and release the client and stores."""
        await self.stop_sync()
        await self.client.aclose()
        self.store.close()
        self.session_store.close()
