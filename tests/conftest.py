"""Shared fixtures: an in-process fake of the remote proposal service."""

import json

import httpx
import pytest

from propmirror.client import PoliteiaClient, Session
from propmirror.models import Proposal, VoteStatusCode
from propmirror.store import ProposalStore, SessionStore
from propmirror.sync import NotificationSink

API_PATH = "/api/v1"


def proposal_payload(token: str, timestamp: int = 1_600_000_000, name: str | None = None) -> dict:
    """A www v1 proposal record as the server returns it."""
    return {
        "name": name or f"Proposal {token}",
        "state": 2,
        "status": 4,
        "timestamp": timestamp,
        "userid": "user-1",
        "username": "alice",
        "publickey": "pk",
        "signature": "sig",
        "version": "1",
        "numcomments": 3,
        "publishedat": timestamp,
        "censorshiprecord": {"token": token, "merkle": "m", "signature": "s"},
    }


def summary_payload(status: int) -> dict:
    return {
        "status": status,
        "eligibletickets": 40000,
        "duration": 2016,
        "endheight": 500000,
        "quorumpercentage": 20,
        "passpercentage": 60,
        "results": [
            {"option": {"id": "yes", "description": "Approve", "bits": 2}, "votesreceived": 10},
            {"option": {"id": "no", "description": "Reject", "bits": 1}, "votesreceived": 4},
        ],
    }


class FakePoliteia:
    """Fake www v1 server for httpx.MockTransport.

    Records every call; `failures` maps a path to a response or an httpx
    exception class to raise instead of serving it.
    """

    def __init__(self, page_size: int = 20):
        self.page_size = page_size
        self.csrf_token = "csrf-token-1"
        self.inventory: dict[str, list[str]] = {
            "pre": [], "active": [], "approved": [], "rejected": [], "abandoned": [],
        }
        self.proposals: dict[str, dict] = {}
        self.summaries: dict[str, dict] = {}
        self.failures: dict[str, object] = {}
        self.calls: list[tuple[str, str]] = []
        self.requests: list[httpx.Request] = []
        self.batches: list[list[str]] = []

    def add(
        self,
        token: str,
        category: str = "active",
        status: int = VoteStatusCode.NOT_AUTHORIZED,
        timestamp: int = 1_600_000_000,
    ) -> None:
        self.inventory[category].append(token)
        self.proposals[token] = proposal_payload(token, timestamp)
        self.summaries[token] = summary_payload(int(status))

    def set_status(self, token: str, status: int) -> None:
        self.summaries[token]["status"] = int(status)

    def count(self, path: str, method: str | None = None) -> int:
        return sum(1 for m, p in self.calls if p == path and (method is None or m == method))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(API_PATH):
            path = path[len(API_PATH):]
        self.calls.append((request.method, path))
        self.requests.append(request)

        failure = self.failures.get(path)
        if isinstance(failure, httpx.Response):
            return failure
        if isinstance(failure, type) and issubclass(failure, Exception):
            raise failure("simulated failure", request=request)

        if path == "/version":
            return httpx.Response(
                200,
                json={"version": 1, "route": "/v1", "pubkey": "ab", "testnet": False, "mode": "piwww"},
                headers={"X-Csrf-Token": self.csrf_token, "Set-Cookie": "_gorilla_csrf=cookie-1; Path=/"},
            )
        if path == "/policy":
            return httpx.Response(200, json={"proposallistpagesize": self.page_size, "minpasswordlength": 8})
        if path == "/proposals/tokeninventory":
            return httpx.Response(200, json=self.inventory)
        if path == "/proposals/batch":
            tokens = json.loads(request.content)["tokens"]
            self.batches.append(tokens)
            return httpx.Response(
                200, json={"proposals": [self.proposals[t] for t in tokens if t in self.proposals]}
            )
        if path == "/proposals/batchvotesummary":
            tokens = json.loads(request.content)["tokens"]
            return httpx.Response(
                200,
                json={
                    "bestblock": 500100,
                    "summaries": {t: self.summaries[t] for t in tokens if t in self.summaries},
                },
            )
        if path == "/proposals/votestatus":
            return httpx.Response(
                200,
                json={
                    "votesstatus": [
                        {"token": t, "status": s["status"], "totalvotes": 14, "endheight": "500000"}
                        for t, s in self.summaries.items()
                    ]
                },
            )
        if path == "/login":
            return httpx.Response(
                200,
                json={
                    "userid": "user-1",
                    "email": "alice@example.com",
                    "username": "alice",
                    "isadmin": False,
                    "sessionmaxage": 3600,
                },
                headers={"X-Csrf-Token": "csrf-after-login", "Set-Cookie": "session=s3cr3t; Path=/"},
            )
        if path.startswith("/proposals/") and path.endswith("/votestatus"):
            token = path.split("/")[2]
            if token in self.summaries:
                return httpx.Response(200, json={"token": token, "status": self.summaries[token]["status"]})
        elif path.startswith("/proposals/"):
            token = path.split("/")[2]
            if token in self.proposals:
                return httpx.Response(200, json={"proposal": self.proposals[token]})

        return httpx.Response(404, text="not found")


class RecordingSink(NotificationSink):
    """Sink that records (event, token) pairs."""

    def __init__(self):
        self.events: list[tuple[str, str]] = []

    def on_new_proposal(self, proposal: Proposal) -> None:
        self.events.append(("new", proposal.token))

    def on_vote_started(self, proposal: Proposal) -> None:
        self.events.append(("started", proposal.token))

    def on_vote_finished(self, proposal: Proposal) -> None:
        self.events.append(("finished", proposal.token))


@pytest.fixture
def server():
    """Fake remote service."""
    return FakePoliteia()


@pytest.fixture
def session():
    """In-memory session (no persistence)."""
    return Session()


@pytest.fixture
def http_client(server):
    """httpx client routed to the fake server."""
    return httpx.AsyncClient(transport=httpx.MockTransport(server.handler))


@pytest.fixture
def politeia_client(session, http_client):
    """Transport client talking to the fake server."""
    return PoliteiaClient(session, client=http_client)


@pytest.fixture
def store():
    """Create an in-memory ProposalStore."""
    store = ProposalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def session_store():
    """Create an in-memory SessionStore."""
    store = SessionStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_proposal():
    """Factory for Proposal objects."""

    def _make(token: str, timestamp: int = 1_600_000_000, category=None) -> Proposal:
        proposal = Proposal.from_dict(proposal_payload(token, timestamp))
        proposal.category = category
        return proposal

    return _make
