"""
Submitter Lifecycle

State transitions for a submitter:

    created -> sent -> opened -> completed
                              -> declined

Timestamps are set once and never cleared. Re-sending or re-opening is
a no-op; completing or declining a finished submitter is an error, and
so is completing or declining one that was never sent. Completing or
declining stamps `opened_at` when the open was not recorded.

The only exception is a signer marked completed at creation, which
skips the sent and opened states.
"""

import logging
from datetime import datetime
from typing import Optional

from .exceptions import InvalidTransitionError
from .types import Submitter, utc_now

logger = logging.getLogger(__name__)


class SubmitterLifecycle:
    """Applies lifecycle events to a submitter in place."""

    @classmethod
    def mark_sent(cls, submitter: Submitter, at: datetime = None) -> Submitter:
        if submitter.sent_at is None:
            submitter.sent_at = at or utc_now()
            logger.debug(f"Submitter {submitter.id} sent")
        return submitter

    @classmethod
    def mark_opened(cls, submitter: Submitter, at: datetime = None) -> Submitter:
        cls.ensure_not_finished(submitter, 'open')
        cls.ensure_sent(submitter, 'open')

        if submitter.opened_at is None:
            submitter.opened_at = at or utc_now()
            logger.debug(f"Submitter {submitter.id} opened")
        return submitter

    @classmethod
    def complete(cls, submitter: Submitter, at: datetime = None, require_sent: bool = True) -> Submitter:
        """
        Complete a submitter.

        Args:
            require_sent: False only for signers completed at creation
        """
        cls.ensure_not_finished(submitter, 'complete')
        at = at or utc_now()

        if require_sent:
            cls.mark_opened(submitter, at)

        submitter.completed_at = at
        logger.info(f"Submitter {submitter.id} completed")
        return submitter

    @classmethod
    def decline(cls, submitter: Submitter, reason: Optional[str] = None, at: datetime = None) -> Submitter:
        cls.ensure_not_finished(submitter, 'decline')
        at = at or utc_now()
        cls.mark_opened(submitter, at)

        submitter.declined_at = at
        submitter.decline_reason = reason
        logger.info(f"Submitter {submitter.id} declined")
        return submitter

    @staticmethod
    def ensure_not_finished(submitter: Submitter, event: str) -> None:
        if submitter.completed_at is not None or submitter.declined_at is not None:
            raise InvalidTransitionError(
                f"Cannot {event} submitter {submitter.id}: already {submitter.status}",
                submitter_uuid=submitter.uuid,
                event=event
            )

    @staticmethod
    def ensure_sent(submitter: Submitter, event: str) -> None:
        if submitter.sent_at is None:
            raise InvalidTransitionError(
                f"Submitter {submitter.id} cannot {event} before it is sent",
                submitter_uuid=submitter.uuid,
                event=event
            )
