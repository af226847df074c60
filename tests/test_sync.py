"""Tests for the sync engine."""

import asyncio

import httpx
import pytest

from propmirror.errors import InternalServerError, InvalidArgument, PersistenceError, TransportError
from propmirror.models import Category, VoteStatusCode
from propmirror.sync import SyncEngine, SyncStatus, batched, diff

from conftest import summary_payload


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail after timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def engine(politeia_client, store, sink):
    """Sync engine wired to the fake server, an in-memory store and a recording sink."""
    return SyncEngine(politeia_client, store, sink=sink, interval_seconds=0.05)


def rows(store):
    return [tuple(row) for row in store._conn.execute("SELECT * FROM proposals ORDER BY id")]


class TestDiff:
    """Tests for inventory diffing."""

    def test_keeps_remote_order(self):
        """Test missing tokens come back in remote order."""
        assert diff(["c", "a", "b", "d"], ["a", "d"]) == ["c", "b"]

    def test_nothing_missing(self):
        """Test an empty diff when everything is known."""
        assert diff(["a", "b"], ["b", "a", "z"]) == []

    def test_empty_local(self):
        """Test everything is missing from an empty mirror."""
        assert diff(["a", "b"], []) == ["a", "b"]


class TestBatched:
    """Tests for page-size batching."""

    def test_partitions(self):
        """Test batches are consecutive and bounded by the size."""
        tokens = [str(i) for i in range(7)]
        batches = list(batched(tokens, 3))

        assert batches == [["0", "1", "2"], ["3", "4", "5"], ["6"]]
        assert [t for b in batches for t in b] == tokens

    def test_empty(self):
        """Test no batches for no tokens."""
        assert list(batched([], 5)) == []

    def test_invalid_size(self):
        """Test a non-positive size is rejected."""
        with pytest.raises(InvalidArgument):
            list(batched(["a"], 0))


class TestSyncOnce:
    """Tests for a single sync cycle."""

    @pytest.mark.asyncio
    async def test_initial_catch_up(self, engine, store, server, sink):
        """Test a first cycle mirrors every category silently."""
        server.add("p1", "pre", timestamp=100)
        server.add("a1", "active", status=VoteStatusCode.STARTED, timestamp=200)
        server.add("x1", "approved", status=VoteStatusCode.FINISHED, timestamp=300)

        report = await engine.sync_once()

        assert report.status is SyncStatus.SUCCESS
        assert report.new_proposals == 3
        assert report.fetched["pre"] == 1
        assert report.fetched["rejected"] == 0
        assert store.get_by_token("p1").category is Category.PRE
        assert store.get_by_token("x1").category is Category.APPROVED
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_vote_data_merged(self, engine, store, server):
        """Test summaries are attached by token and seed the vote status."""
        server.add("a1", "active", status=VoteStatusCode.STARTED)

        await engine.sync_once()

        proposal = store.get_by_token("a1")
        assert proposal.vote_summary.status == VoteStatusCode.STARTED
        assert proposal.vote_summary.eligibletickets == 40000
        assert proposal.vote_status.token == "a1"
        assert proposal.vote_status.status == VoteStatusCode.STARTED

    @pytest.mark.asyncio
    async def test_batches_by_page_size(self, engine, store, server, sink):
        """Test two new tokens with page size 1 take two batches, notified in order."""
        server.page_size = 1
        server.add("a1", "active")
        server.add("a2", "active")

        report = await engine.sync_once(notify=True)

        assert server.batches == [["a1"], ["a2"]]
        assert report.new_proposals == 2
        assert sink.events == [("new", "a1"), ("new", "a2")]
        assert store.all_tokens() == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_token_in_two_categories(self, engine, store, server, caplog):
        """Test a token listed twice is fetched per listing and kept under the last one."""
        server.add("t1", "pre")
        server.inventory["active"].append("t1")

        with caplog.at_level("WARNING", logger="propmirror.sync.engine"):
            await engine.sync_once()

        assert server.batches == [["t1"], ["t1"]]
        assert store.count() == 1
        assert store.get_by_token("t1").category is Category.ACTIVE
        assert "more than one category" in caplog.text

    @pytest.mark.asyncio
    async def test_only_missing_fetched(self, engine, server):
        """Test known tokens are not fetched again."""
        server.add("a1", "active")
        await engine.sync_once()

        server.add("a2", "active")
        report = await engine.sync_once()

        assert server.batches == [["a1"], ["a2"]]
        assert report.new_proposals == 1

    @pytest.mark.asyncio
    async def test_no_change_cycle_is_idempotent(self, engine, store, server, sink):
        """Test a cycle with no remote changes leaves the mirror untouched."""
        server.add("a1", "active", status=VoteStatusCode.STARTED)
        server.add("p1", "pre")
        await engine.sync_once()
        before = rows(store)

        report = await engine.sync_once(notify=True, check_votes=True)

        assert report.new_proposals == 0
        assert report.status_changes == 0
        assert rows(store) == before
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_vote_transitions(self, engine, store, server, sink):
        """Test vote start and finish each produce one update and one event."""
        server.add("a1", "active", status=VoteStatusCode.AUTHORIZED)
        await engine.sync_once()

        server.set_status("a1", VoteStatusCode.STARTED)
        report = await engine.sync_once(notify=True, check_votes=True)

        assert report.status_changes == 1
        assert sink.events == [("started", "a1")]
        assert store.get_by_token("a1").vote_status.status == VoteStatusCode.STARTED

        report = await engine.sync_once(notify=True, check_votes=True)
        assert report.status_changes == 0
        assert sink.events == [("started", "a1")]

        server.set_status("a1", VoteStatusCode.FINISHED)
        await engine.sync_once(notify=True, check_votes=True)
        assert sink.events == [("started", "a1"), ("finished", "a1")]

    @pytest.mark.asyncio
    async def test_other_transitions_not_notified(self, engine, store, server, sink):
        """Test transitions to other statuses are stored without an event."""
        server.add("a1", "active", status=VoteStatusCode.NOT_AUTHORIZED)
        await engine.sync_once()

        server.set_status("a1", VoteStatusCode.AUTHORIZED)
        report = await engine.sync_once(notify=True, check_votes=True)

        assert report.status_changes == 1
        assert sink.events == []
        assert store.get_by_token("a1").vote_status.status == VoteStatusCode.AUTHORIZED

    @pytest.mark.asyncio
    async def test_unknown_vote_tokens_ignored(self, engine, store, server, sink):
        """Test vote statuses for proposals outside the mirror are skipped."""
        server.add("a1", "active")
        await engine.sync_once()
        server.summaries["ghost"] = summary_payload(VoteStatusCode.STARTED)

        report = await engine.sync_once(notify=True, check_votes=True)

        assert report.status_changes == 0
        assert store.get_by_token("ghost") is None
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_persistence_failure_aborts_batch(self, engine, store, server, monkeypatch):
        """Test a failed write aborts only its batch; the next cycle retries it."""
        server.page_size = 1
        for token in ("a1", "a2", "a3"):
            server.add(token, "active")

        save = store.save

        def failing_save(proposal):
            if proposal.token == "a2":
                raise PersistenceError("disk full")
            return save(proposal)

        monkeypatch.setattr(store, "save", failing_save)
        report = await engine.sync_once()

        assert report.status is SyncStatus.PARTIAL
        assert report.failed_batches == 1
        assert report.new_proposals == 2
        assert store.all_tokens() == ["a1", "a3"]

        monkeypatch.setattr(store, "save", save)
        report = await engine.sync_once()

        assert report.status is SyncStatus.SUCCESS
        assert report.new_proposals == 1
        assert sorted(store.all_tokens()) == ["a1", "a2", "a3"]

    @pytest.mark.asyncio
    async def test_inventory_failure_leaves_mirror(self, engine, store, server, sink):
        """Test a failed inventory fetch aborts the cycle with no changes."""
        server.add("a1", "active")
        server.failures["/proposals/tokeninventory"] = httpx.Response(500)

        with pytest.raises(InternalServerError):
            await engine.sync_once(notify=True)

        assert store.count() == 0
        assert sink.events == []
        status = engine.get_sync_status()
        assert status["consecutive_failures"] == 1
        assert status["last_sync"] is None
        assert "internal server error" in status["last_error"]

    @pytest.mark.asyncio
    async def test_transport_failure_aborts_cycle(self, engine, store, server):
        """Test a network failure during a batch aborts the cycle."""
        server.add("a1", "active")
        server.failures["/proposals/batch"] = httpx.ConnectError

        with pytest.raises(TransportError):
            await engine.sync_once()

        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_sink_errors_do_not_abort(self, engine, store, server, sink):
        """Test a failing notification handler does not stop the cycle."""
        server.add("a1", "active")
        server.add("a2", "active")

        def explode(proposal):
            raise RuntimeError("sink down")

        sink.on_new_proposal = explode
        report = await engine.sync_once(notify=True)

        assert report.new_proposals == 2
        assert store.count() == 2

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, engine, server):
        """Test a successful cycle clears the failure counters."""
        server.failures["/proposals/tokeninventory"] = httpx.Response(500)
        with pytest.raises(InternalServerError):
            await engine.sync_once()

        del server.failures["/proposals/tokeninventory"]
        await engine.sync_once()

        status = engine.get_sync_status()
        assert status["consecutive_failures"] == 0
        assert status["last_error"] is None
        assert status["last_sync"] is not None
        assert status["cycles"] == 2


class TestRunLoop:
    """Tests for the periodic sync loop."""

    @pytest.mark.asyncio
    async def test_initial_then_incremental(self, engine, store, server, sink):
        """Test the first cycle is silent and later additions are notified."""
        server.add("a1", "active")
        stop = asyncio.Event()
        task = asyncio.create_task(engine.run(stop))

        await wait_until(lambda: store.count() == 1)
        server.add("a2", "active")
        await wait_until(lambda: store.count() == 2)

        stop.set()
        await asyncio.wait_for(task, timeout=2.0)

        assert sink.events == [("new", "a2")]

    @pytest.mark.asyncio
    async def test_retries_after_failure(self, engine, store, server, sink):
        """Test a failed first cycle is retried and stays the silent catch-up."""
        server.add("a1", "active")
        server.failures["/proposals/tokeninventory"] = httpx.Response(500)
        stop = asyncio.Event()
        task = asyncio.create_task(engine.run(stop))

        await wait_until(lambda: server.count("/proposals/tokeninventory") >= 1)
        del server.failures["/proposals/tokeninventory"]
        await wait_until(lambda: store.count() == 1)

        stop.set()
        await asyncio.wait_for(task, timeout=2.0)

        assert sink.events == []

    @pytest.mark.asyncio
    async def test_stops_promptly(self, politeia_client, store, sink):
        """Test setting the stop event ends the wait between cycles."""
        engine = SyncEngine(politeia_client, store, sink=sink, interval_seconds=3600)
        stop = asyncio.Event()
        task = asyncio.create_task(engine.run(stop))

        await wait_until(lambda: engine.last_sync is not None)
        stop.set()

        await asyncio.wait_for(task, timeout=1.0)
        assert task.done()

    @pytest.mark.asyncio
    async def test_stop_during_cycle_lets_it_finish(
        self, engine, politeia_client, store, server, monkeypatch
    ):
        """Test setting the stop event mid-cycle does not abort that cycle."""
        server.add("a1", "active")
        fetching = asyncio.Event()
        release = asyncio.Event()
        fetch_inventory = politeia_client.fetch_token_inventory

        async def paused_fetch():
            fetching.set()
            await release.wait()
            return await fetch_inventory()

        monkeypatch.setattr(politeia_client, "fetch_token_inventory", paused_fetch)
        stop = asyncio.Event()
        task = asyncio.create_task(engine.run(stop))

        await asyncio.wait_for(fetching.wait(), timeout=2.0)
        stop.set()
        release.set()
        await asyncio.wait_for(task, timeout=2.0)

        assert store.count() == 1
        assert engine.last_sync is not None
        assert server.count("/proposals/tokeninventory") == 1

    @pytest.mark.asyncio
    async def test_preset_stop_event(self, engine, server):
        """Test a loop started with the event already set runs no cycle."""
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(engine.run(stop), timeout=1.0)

        assert server.calls == []
