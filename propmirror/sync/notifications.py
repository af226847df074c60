"""Notification sinks for sync events."""

import logging
from abc import ABC, abstractmethod

from ..models import Proposal

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Receives new-proposal and vote-transition events from the sync engine.

    Methods are called from the engine's background task after the mirror
    write succeeded. Implementations must return promptly.
    """

    @abstractmethod
    def on_new_proposal(self, proposal: Proposal) -> None:
        """A proposal was added to the mirror."""

    @abstractmethod
    def on_vote_started(self, proposal: Proposal) -> None:
        """Voting on a mirrored proposal started."""

    @abstractmethod
    def on_vote_finished(self, proposal: Proposal) -> None:
        """Voting on a mirrored proposal finished."""


class LoggingNotificationSink(NotificationSink):
    """Sink that only logs events."""

    def on_new_proposal(self, proposal: Proposal) -> None:
        logger.info(f"New proposal: {proposal.name!r} ({proposal.token})")

    def on_vote_started(self, proposal: Proposal) -> None:
        logger.info(f"Vote started: {proposal.name!r} ({proposal.token})")

    def on_vote_finished(self, proposal: Proposal) -> None:
        logger.info(f"Vote finished: {proposal.name!r} ({proposal.token})")
