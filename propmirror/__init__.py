"""Local mirror of a remote proposal and voting catalog."""

from .config import Config, load_config
from .errors import (
    DecodeError,
    PersistenceError,
    PropMirrorError,
    ProposalNotFound,
    ServerError,
    TransportError,
)
from .mirror import ProposalMirror
from .models import Category, Proposal, TokenInventory, VoteStatus, VoteStatusCode, VoteSummary

__version__ = "0.1.0"

__all__ = [
    "Category",
    "Config",
    "DecodeError",
    "PersistenceError",
    "PropMirrorError",
    "Proposal",
    "ProposalMirror",
    "ProposalNotFound",
    "ServerError",
    "TokenInventory",
    "TransportError",
    "VoteStatus",
    "VoteStatusCode",
    "VoteSummary",
    "load_config",
]
