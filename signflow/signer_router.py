"""
Signer Router

Decides which submitters receive the next signature request wave.

Precedence:
    1. Any role declares an order -> every pending submitter whose role
       has the lowest order among roles still pending. Roles without an
       order rank after all ordered roles.
    2. Order policy 'preserved' -> the first pending submitter in role
       declaration order.
    3. Otherwise -> every pending submitter.

Archived, expired and declined submissions produce an empty wave.
"""

import logging
from datetime import datetime
from typing import Dict, List

from .types import Submission, Submitter, SubmittersOrder

logger = logging.getLogger(__name__)


class SignerRouter:
    """Stateless wave computation; safe to call repeatedly."""

    @classmethod
    def next_wave(cls, submission: Submission, now: datetime = None) -> List[Submitter]:
        """
        Get the submitters whose turn it is.

        Already-notified submitters are included; tracking what was sent
        is the orchestrator's job.
        """
        if submission.is_archived or submission.is_expired(now):
            logger.debug(f"Submission {submission.id} is archived or expired, no wave")
            return []

        if any(s.is_declined for s in submission.submitters):
            logger.debug(f"Submission {submission.id} was declined, no wave")
            return []

        pending_by_role: Dict[str, List[Submitter]] = {}
        for submitter in submission.submitters:
            if not submitter.is_completed:
                pending_by_role.setdefault(submitter.uuid, []).append(submitter)

        if not pending_by_role:
            return []

        roles = submission.template_submitters

        if any(r.order is not None for r in roles):
            # Unordered roles share a wave after every ordered one
            last = max(r.order for r in roles if r.order is not None) + 1
            effective_order = {
                r.uuid: r.order if r.order is not None else last
                for r in roles
            }
            pending_orders = [effective_order[uuid] for uuid in pending_by_role if uuid in effective_order]
            if not pending_orders:
                return []
            min_order = min(pending_orders)

            return [
                submitter
                for role in roles if effective_order[role.uuid] == min_order
                for submitter in pending_by_role.get(role.uuid, [])
            ]

        if submission.submitters_order == SubmittersOrder.PRESERVED:
            for role in roles:
                if role.uuid in pending_by_role:
                    return [pending_by_role[role.uuid][0]]
            return []

        return [
            submitter
            for role in roles
            for submitter in pending_by_role.get(role.uuid, [])
        ]
