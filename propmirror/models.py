"""Data model for mirrored proposals and the remote API payloads.

Field names in `to_dict()`/`from_dict()` follow the remote API's JSON so the
same shapes are used on the wire and in the local store.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from .errors import DecodeError, InvalidArgument


class Category(IntEnum):
    """Proposal category. ALL is a query wildcard and is never stored."""

    ALL = 1
    PRE = 2
    ACTIVE = 3
    APPROVED = 4
    REJECTED = 5
    ABANDONED = 6

    @classmethod
    def concrete(cls) -> list["Category"]:
        """The five storable categories, in sync order."""
        return [cls.PRE, cls.ACTIVE, cls.APPROVED, cls.REJECTED, cls.ABANDONED]

    @classmethod
    def parse(cls, value: "str | int | Category") -> "Category":
        """Parse a category from its name ("active") or numeric value."""
        if isinstance(value, Category):
            return value
        try:
            if isinstance(value, int):
                return cls(value)
            return cls[value.strip().upper()]
        except (KeyError, ValueError) as e:
            raise InvalidArgument(f"unknown category: {value!r}") from e


class VoteStatusCode(IntEnum):
    """Vote status codes of the remote www v1 API."""

    INVALID = 0
    NOT_AUTHORIZED = 1
    AUTHORIZED = 2
    STARTED = 3
    FINISHED = 4
    DOESNT_EXIST = 5


def _require(data: dict[str, Any], key: str) -> Any:
    if not isinstance(data, dict):
        raise DecodeError(f"expected object, got {type(data).__name__}")
    if key not in data:
        raise DecodeError(f"missing field: {key}")
    return data[key]


def _int(data: dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"field {key} is not a number: {value!r}")
    return int(value)


def _str(data: dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise DecodeError(f"field {key} is not a string: {value!r}")
    return value


def _list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"field {key} is not a list: {value!r}")
    return value


@dataclass(frozen=True)
class CensorshipRecord:
    token: str
    merkle: str = ""
    signature: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token, "merkle": self.merkle, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CensorshipRecord":
        token = _require(data, "token")
        if not isinstance(token, str) or not token:
            raise DecodeError(f"invalid censorship token: {token!r}")
        return cls(
            token=token,
            merkle=_str(data, "merkle"),
            signature=_str(data, "signature"),
        )


@dataclass(frozen=True)
class VoteOption:
    id: str
    description: str = ""
    bits: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "description": self.description, "bits": self.bits}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoteOption":
        return cls(
            id=_str(data, "id"),
            description=_str(data, "description"),
            bits=_int(data, "bits"),
        )


@dataclass(frozen=True)
class VoteOptionResult:
    option: VoteOption
    votesreceived: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"option": self.option.to_dict(), "votesreceived": self.votesreceived}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoteOptionResult":
        return cls(
            option=VoteOption.from_dict(_require(data, "option")),
            votesreceived=_int(data, "votesreceived"),
        )


@dataclass(frozen=True)
class VoteSummary:
    """Aggregate vote tallies for one proposal."""

    status: int = VoteStatusCode.INVALID
    eligibletickets: int = 0
    duration: int = 0
    endheight: int = 0
    quorumpercentage: int = 0
    passpercentage: int = 0
    results: tuple[VoteOptionResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": int(self.status),
            "eligibletickets": self.eligibletickets,
            "duration": self.duration,
            "endheight": self.endheight,
            "quorumpercentage": self.quorumpercentage,
            "passpercentage": self.passpercentage,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoteSummary":
        _require(data, "status")
        return cls(
            status=_int(data, "status"),
            eligibletickets=_int(data, "eligibletickets"),
            duration=_int(data, "duration"),
            endheight=_int(data, "endheight"),
            quorumpercentage=_int(data, "quorumpercentage"),
            passpercentage=_int(data, "passpercentage"),
            results=tuple(VoteOptionResult.from_dict(r) for r in _list(data, "results")),
        )


@dataclass(frozen=True)
class VoteStatus:
    """Per-token voting state as reported by the vote status routes."""

    token: str = ""
    status: int = VoteStatusCode.INVALID
    optionsresult: tuple[VoteOptionResult, ...] = ()
    totalvotes: int = 0
    endheight: str = ""
    bestblock: str = ""
    numofeligiblevotes: int = 0
    quorumpercentage: int = 0
    passpercentage: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "status": int(self.status),
            "optionsresult": [r.to_dict() for r in self.optionsresult],
            "totalvotes": self.totalvotes,
            "endheight": self.endheight,
            "bestblock": self.bestblock,
            "numofeligiblevotes": self.numofeligiblevotes,
            "quorumpercentage": self.quorumpercentage,
            "passpercentage": self.passpercentage,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoteStatus":
        _require(data, "status")
        return cls(
            token=_str(data, "token"),
            status=_int(data, "status"),
            optionsresult=tuple(
                VoteOptionResult.from_dict(r) for r in _list(data, "optionsresult")
            ),
            totalvotes=_int(data, "totalvotes"),
            # endheight/bestblock are strings in the www v1 API
            endheight=str(data.get("endheight") or ""),
            bestblock=str(data.get("bestblock") or ""),
            numofeligiblevotes=_int(data, "numofeligiblevotes"),
            quorumpercentage=_int(data, "quorumpercentage"),
            passpercentage=_int(data, "passpercentage"),
        )


@dataclass
class Proposal:
    """A mirrored governance proposal.

    `id` is assigned by the local store; the censorship token is the
    correlation key with the remote service.
    """

    censorshiprecord: CensorshipRecord
    name: str = ""
    state: int = 0
    status: int = 0
    timestamp: int = 0
    userid: str = ""
    username: str = ""
    publickey: str = ""
    signature: str = ""
    version: str = ""
    numcomments: int = 0
    statuschangemessage: str = ""
    publishedat: int = 0
    censoredat: int = 0
    abandonedat: int = 0
    id: int | None = None
    category: Category | None = None
    vote_status: VoteStatus = field(default_factory=VoteStatus)
    vote_summary: VoteSummary = field(default_factory=VoteSummary)

    @property
    def token(self) -> str:
        return self.censorshiprecord.token

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "status": self.status,
            "timestamp": self.timestamp,
            "userid": self.userid,
            "username": self.username,
            "publickey": self.publickey,
            "signature": self.signature,
            "version": self.version,
            "numcomments": self.numcomments,
            "statuschangemessage": self.statuschangemessage,
            "publishedat": self.publishedat,
            "censoredat": self.censoredat,
            "abandonedat": self.abandonedat,
            "censorshiprecord": self.censorshiprecord.to_dict(),
            "category": int(self.category) if self.category is not None else None,
            "votestatus": self.vote_status.to_dict(),
            "votesummary": self.vote_summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Proposal":
        record = CensorshipRecord.from_dict(_require(data, "censorshiprecord"))

        category = data.get("category")
        try:
            parsed_category = Category(category) if category is not None else None
        except ValueError as e:
            raise DecodeError(f"invalid category: {category!r}") from e

        vote_status = data.get("votestatus")
        vote_summary = data.get("votesummary")
        local_id = data.get("id")

        return cls(
            censorshiprecord=record,
            name=_str(data, "name"),
            state=_int(data, "state"),
            status=_int(data, "status"),
            timestamp=_int(data, "timestamp"),
            userid=_str(data, "userid"),
            username=_str(data, "username"),
            publickey=_str(data, "publickey"),
            signature=_str(data, "signature"),
            version=_str(data, "version"),
            numcomments=_int(data, "numcomments"),
            statuschangemessage=_str(data, "statuschangemessage"),
            publishedat=_int(data, "publishedat"),
            censoredat=_int(data, "censoredat"),
            abandonedat=_int(data, "abandonedat"),
            id=int(local_id) if local_id is not None else None,
            category=parsed_category,
            vote_status=VoteStatus.from_dict(vote_status) if vote_status else VoteStatus(),
            vote_summary=VoteSummary.from_dict(vote_summary) if vote_summary else VoteSummary(),
        )


@dataclass(frozen=True)
class TokenInventory:
    """Snapshot of remote tokens, one ordered list per concrete category."""

    pre: tuple[str, ...] = ()
    active: tuple[str, ...] = ()
    approved: tuple[str, ...] = ()
    rejected: tuple[str, ...] = ()
    abandoned: tuple[str, ...] = ()

    def tokens_for(self, category: Category) -> tuple[str, ...]:
        """Return the token list for one concrete category."""
        if category is Category.ALL:
            raise InvalidArgument("the ALL category has no inventory list")
        return getattr(self, category.name.lower())

    def to_dict(self) -> dict[str, Any]:
        return {
            "pre": list(self.pre),
            "active": list(self.active),
            "approved": list(self.approved),
            "rejected": list(self.rejected),
            "abandoned": list(self.abandoned),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenInventory":
        if not isinstance(data, dict):
            raise DecodeError(f"expected object, got {type(data).__name__}")

        def tokens(key: str) -> tuple[str, ...]:
            values = _list(data, key)
            if not all(isinstance(v, str) for v in values):
                raise DecodeError(f"field {key} must contain strings")
            return tuple(values)

        return cls(
            pre=tokens("pre"),
            active=tokens("active"),
            approved=tokens("approved"),
            rejected=tokens("rejected"),
            abandoned=tokens("abandoned"),
        )


@dataclass(frozen=True)
class ServerVersion:
    version: int
    route: str = ""
    pubkey: str = ""
    testnet: bool = False
    mode: str = ""
    activeusersession: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "route": self.route,
            "pubkey": self.pubkey,
            "testnet": self.testnet,
            "mode": self.mode,
            "activeusersession": self.activeusersession,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerVersion":
        _require(data, "version")
        return cls(
            version=_int(data, "version"),
            route=_str(data, "route"),
            pubkey=_str(data, "pubkey"),
            testnet=bool(data.get("testnet", False)),
            mode=_str(data, "mode"),
            activeusersession=bool(data.get("activeusersession", False)),
        )


@dataclass(frozen=True)
class ServerPolicy:
    """Server-declared operational limits.

    Only `proposallistpagesize` drives the sync engine; the rest is kept for
    display.
    """

    proposallistpagesize: int
    minpasswordlength: int = 0
    minusernamelength: int = 0
    maxusernamelength: int = 0
    maximages: int = 0
    maximagesize: int = 0
    maxmds: int = 0
    maxmdsize: int = 0
    maxproposalnamelength: int = 0
    minproposalnamelength: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposallistpagesize": self.proposallistpagesize,
            "minpasswordlength": self.minpasswordlength,
            "minusernamelength": self.minusernamelength,
            "maxusernamelength": self.maxusernamelength,
            "maximages": self.maximages,
            "maximagesize": self.maximagesize,
            "maxmds": self.maxmds,
            "maxmdsize": self.maxmdsize,
            "maxproposalnamelength": self.maxproposalnamelength,
            "minproposalnamelength": self.minproposalnamelength,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerPolicy":
        _require(data, "proposallistpagesize")
        page_size = _int(data, "proposallistpagesize")
        if page_size < 1:
            raise DecodeError(f"invalid proposal list page size: {page_size}")
        return cls(
            proposallistpagesize=page_size,
            minpasswordlength=_int(data, "minpasswordlength"),
            minusernamelength=_int(data, "minusernamelength"),
            maxusernamelength=_int(data, "maxusernamelength"),
            maximages=_int(data, "maximages"),
            maximagesize=_int(data, "maximagesize"),
            maxmds=_int(data, "maxmds"),
            maxmdsize=_int(data, "maxmdsize"),
            maxproposalnamelength=_int(data, "maxproposalnamelength"),
            minproposalnamelength=_int(data, "minproposalnamelength"),
        )


@dataclass(frozen=True)
class User:
    """Logged-in user, as returned by the login route."""

    userid: str
    email: str = ""
    username: str = ""
    isadmin: bool = False
    publickey: str = ""
    sessionmaxage: int = 0
    lastlogintime: int = 0
    proposalcredits: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "userid": self.userid,
            "email": self.email,
            "username": self.username,
            "isadmin": self.isadmin,
            "publickey": self.publickey,
            "sessionmaxage": self.sessionmaxage,
            "lastlogintime": self.lastlogintime,
            "proposalcredits": self.proposalcredits,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        _require(data, "userid")
        return cls(
            userid=_str(data, "userid"),
            email=_str(data, "email"),
            username=_str(data, "username"),
            isadmin=bool(data.get("isadmin", False)),
            publickey=_str(data, "publickey"),
            sessionmaxage=_int(data, "sessionmaxage"),
            lastlogintime=_int(data, "lastlogintime"),
            proposalcredits=_int(data, "proposalcredits"),
        )
