"""HTTP client for the remote proposal service.

Handles session continuity (anti-forgery token and cookies) and maps
non-success responses onto the error taxonomy in `errors`.
"""

import asyncio
import hashlib
import logging
from typing import Any, Callable, TypeVar

import httpx

from ..errors import (
    BadRequest,
    DecodeError,
    Forbidden,
    InternalServerError,
    InvalidArgument,
    NotFound,
    PropMirrorError,
    TransportError,
    Unauthorized,
    UnknownServerError,
    error_message,
)
from ..models import (
    Proposal,
    ServerPolicy,
    ServerVersion,
    TokenInventory,
    User,
    VoteStatus,
    VoteSummary,
)
from .session import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HOST = "https://proposals.decred.org"
API_PATH = "/api/v1"
CSRF_HEADER = "X-Csrf-Token"

VERSION_PATH = "/version"
POLICY_PATH = "/policy"
LOGIN_PATH = "/login"
TOKEN_INVENTORY_PATH = "/proposals/tokeninventory"
BATCH_PROPOSALS_PATH = "/proposals/batch"
BATCH_VOTE_SUMMARY_PATH = "/proposals/batchvotesummary"
VOTES_STATUS_PATH = "/proposals/votestatus"
PROPOSAL_DETAILS_PATH = "/proposals/{token}"
VOTE_STATUS_PATH = "/proposals/{token}/votestatus"


def _decode(parse: Callable[[Any], T], data: Any, what: str) -> T:
    """Run a model parser, reporting any shape mismatch as DecodeError."""
    try:
        return parse(data)
    except DecodeError as e:
        raise DecodeError(f"error decoding {what}: {e}") from e
    except (TypeError, ValueError, AttributeError, KeyError) as e:
        raise DecodeError(f"error decoding {what}: {e}") from e


def _field(data: Any, key: str, what: str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise DecodeError(f"error decoding {what}: missing field {key}")
    return data[key]


class PoliteiaClient:
    """Async client for the proposal service's www v1 API.

    Notes
    - Every operation first makes sure a valid anti-forgery token is held,
      fetching the server version if it is absent or expired.
    - Transport failures raise `TransportError`; nothing is retried here.
    - Batch operations do not paginate; callers keep batches within the
      server policy's page size.
    """

    def __init__(
        self,
        session: Session,
        *,
        host: str = DEFAULT_HOST,
        api_path: str = API_PATH,
        timeout: float = 10.0,
        verify_tls: bool = True,
        csrf_token_ttl: float = 86400.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            session: Session state; restored cookies are loaded into the jar.
            host: Origin of the remote service.
            api_path: Versioned API prefix.
            timeout: Request timeout in seconds.
            verify_tls: Verify the server's TLS certificate.
            csrf_token_ttl: Seconds a fetched anti-forgery token is trusted.
            client: Optional preconfigured httpx client (not closed by us).
        """
        self.session = session
        self.base_url = host.rstrip("/") + api_path
        self._csrf_token_ttl = csrf_token_ttl
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, verify=verify_tls)
        self._session_lock = asyncio.Lock()
        self._load_cookies()

    async def aclose(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "PoliteiaClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Cookies ---------------

    def _load_cookies(self) -> None:
        for cookie in self.session.cookies:
            self._client.cookies.set(
                cookie["name"],
                cookie["value"],
                domain=cookie.get("domain", ""),
                path=cookie.get("path", "/"),
            )

    def _dump_cookies(self) -> list[dict[str, Any]]:
        return [
            {
                "name": c.name,
                "value": c.value,
                "domain": c.domain,
                "path": c.path,
                "secure": c.secure,
                "expires": c.expires,
            }
            for c in self._client.cookies.jar
        ]

    # --------------- Session ---------------

    async def ensure_session(self) -> None:
        """Make sure a valid anti-forgery token is held.

        Fetches the server version when the token is absent or expired.
        Failures of that fetch propagate unchanged.
        """
        if self.session.has_valid_csrf_token():
            return

        async with self._session_lock:
            # Another task may have refreshed while we waited
            if self.session.has_valid_csrf_token():
                return
            logger.debug("No valid CSRF token held, fetching server version")
            await self.fetch_version()

    def _capture_session(self, response: httpx.Response) -> None:
        token = response.headers.get(CSRF_HEADER)
        if token:
            self.session.set_csrf_token(token, self._csrf_token_ttl)
        self.session.set_cookies(self._dump_cookies())

    # --------------- Requests ---------------

    def _classify(self, response: httpx.Response) -> PropMirrorError:
        status = response.status_code

        if status == 404:
            return NotFound("resource not found", status_code=status)
        if status == 500:
            return InternalServerError("internal server error", status_code=status)
        if status == 403:
            return Forbidden(response.text, status_code=status)
        if status in (400, 401):
            try:
                payload = response.json()
            except ValueError as e:
                return DecodeError(f"error decoding HTTP {status} error body: {e}")

            code = payload.get("errorcode") if isinstance(payload, dict) else None
            if not isinstance(code, int) or isinstance(code, bool):
                code = None
            context = payload.get("errorcontext") if isinstance(payload, dict) else None

            if status == 401:
                return Unauthorized(
                    f"unauthorized: {error_message(code)}",
                    status_code=status,
                    error_code=code,
                    context=context,
                )
            return BadRequest(
                f"bad request: {error_message(code)}",
                status_code=status,
                error_code=code,
                context=context,
            )

        return UnknownServerError(
            f"{error_message(None)} (HTTP {status})", status_code=status
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Any = None,
        params: dict[str, str] | None = None,
        ensure_session: bool = True,
    ) -> tuple[Any, httpx.Response]:
        """Issue one request and decode its JSON body.

        Returns:
            Tuple of (decoded body, raw response).
        """
        if ensure_session:
            await self.ensure_session()

        csrf_token = self.session.csrf_token
        headers = {CSRF_HEADER: csrf_token} if csrf_token else {}
        url = f"{self.base_url}{path}"

        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(
                method, url, json=json_data, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            error = self._classify(response)
            logger.debug(f"{method} {path} -> HTTP {response.status_code}: {error}")
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"error decoding {path} response: {e}") from e

        return data, response

    # --------------- Public API ---------------

    async def fetch_version(self) -> ServerVersion:
        """Fetch the server version, refreshing the anti-forgery token and cookies."""
        data, response = await self._request("GET", VERSION_PATH, ensure_session=False)
        version = _decode(ServerVersion.from_dict, data, "version")
        self._capture_session(response)
        return version

    async def fetch_policy(self) -> ServerPolicy:
        """Fetch the server policy once; later calls reuse the held value."""
        if self.session.policy is not None:
            return self.session.policy

        data, _ = await self._request("GET", POLICY_PATH)
        policy = _decode(ServerPolicy.from_dict, data, "policy")
        logger.info(f"Server policy loaded (page size {policy.proposallistpagesize})")
        return self.session.set_policy(policy)

    async def fetch_token_inventory(self) -> TokenInventory:
        """Fetch the remote token inventory for all five categories."""
        data, _ = await self._request("GET", TOKEN_INVENTORY_PATH)
        return _decode(TokenInventory.from_dict, data, "token inventory")

    async def fetch_batch_proposals(self, tokens: list[str]) -> list[Proposal]:
        """Fetch proposal records for exactly the given tokens.

        Args:
            tokens: Censorship tokens; at most the policy's page size.

        Returns:
            Proposal records in server order.
        """
        if not tokens:
            return []
        self._check_batch_size(tokens)

        data, _ = await self._request(
            "POST", BATCH_PROPOSALS_PATH, json_data={"tokens": list(tokens)}
        )
        raw = _field(data, "proposals", "batch proposals")
        if not isinstance(raw, list):
            raise DecodeError("error decoding batch proposals: proposals is not a list")

        proposals = [_decode(Proposal.from_dict, p, "batch proposals") for p in raw]

        missing = set(tokens) - {p.token for p in proposals}
        if missing:
            logger.warning(f"Batch proposals reply is missing {len(missing)} requested tokens")
        return proposals

    async def fetch_batch_vote_summaries(self, tokens: list[str]) -> dict[str, VoteSummary]:
        """Fetch vote summaries for the given tokens, keyed by token.

        Raises:
            InvalidArgument: If `tokens` is empty.
        """
        if not tokens:
            raise InvalidArgument("censorship tokens cannot be empty")
        self._check_batch_size(tokens)

        data, _ = await self._request(
            "POST", BATCH_VOTE_SUMMARY_PATH, json_data={"tokens": list(tokens)}
        )
        raw = _field(data, "summaries", "batch vote summary")
        if not isinstance(raw, dict):
            raise DecodeError("error decoding batch vote summary: summaries is not an object")

        return {
            token: _decode(VoteSummary.from_dict, summary, "batch vote summary")
            for token, summary in raw.items()
        }

    async def fetch_votes_status(self) -> list[VoteStatus]:
        """Fetch the vote status of every proposal the server tracks."""
        data, _ = await self._request("GET", VOTES_STATUS_PATH)
        raw = _field(data, "votesstatus", "votes status")
        if not isinstance(raw, list):
            raise DecodeError("error decoding votes status: votesstatus is not a list")
        return [_decode(VoteStatus.from_dict, s, "votes status") for s in raw]

    async def fetch_vote_status(self, token: str) -> VoteStatus:
        """Fetch the vote status of a single proposal."""
        data, _ = await self._request("GET", VOTE_STATUS_PATH.format(token=token))
        return _decode(VoteStatus.from_dict, data, "vote status")

    async def fetch_proposal(self, token: str, version: str | None = None) -> Proposal:
        """Fetch a single proposal, optionally at a specific version."""
        params = {"version": version} if version else None
        data, _ = await self._request(
            "GET", PROPOSAL_DETAILS_PATH.format(token=token), params=params
        )
        return _decode(Proposal.from_dict, _field(data, "proposal", "proposal"), "proposal")

    async def login(self, email: str, password: str) -> User:
        """Log in and persist the resulting session.

        The password is sent as its hex SHA3-256 digest.
        """
        digest = hashlib.sha3_256(password.encode("utf-8")).hexdigest()

        data, response = await self._request(
            "POST", LOGIN_PATH, json_data={"email": email, "password": digest}
        )
        user = _decode(User.from_dict, data, "login")

        token = response.headers.get(CSRF_HEADER)
        if token:
            self.session.set_csrf_token(token, self._csrf_token_ttl)
        self.session.set_session(self._dump_cookies(), user)
        return user

    def _check_batch_size(self, tokens: list[str]) -> None:
        policy = self.session.policy
        if policy is not None and len(tokens) > policy.proposallistpagesize:
            raise InvalidArgument(
                f"batch of {len(tokens)} tokens exceeds page size "
                f"{policy.proposallistpagesize}"
            )
