"""Local persistence for the proposal mirror.

Provides SQLite storage for:
- The authenticated session (singleton record)
- Mirrored proposal records, indexed by token, id and category
"""

from .proposal_store import ProposalStore
from .session_store import SessionRecord, SessionStore

__all__ = ["ProposalStore", "SessionRecord", "SessionStore"]
