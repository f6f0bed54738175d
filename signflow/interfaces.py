"""
External Collaborators

Narrow interfaces the workflow core consumes: identity lookup, the
asset store and the notifier. Each is an abstract base class, so an
implementation missing a method fails when it is instantiated. The
in-memory implementations back tests and local runs.

Persistence lives in store.py.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .types import Submitter, User, new_uuid

logger = logging.getLogger(__name__)


class IdentityDirectory(ABC):
    """Resolves authenticated users within an account."""

    @abstractmethod
    def get_user(self, account_id: Any, user_id: Any) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def find_by_email(self, account_id: Any, email: str) -> Optional[User]:
        raise NotImplementedError


class AssetStore(ABC):
    """Stored signature assets and their attachment to submitters."""

    @abstractmethod
    def load_initials(self, user: User) -> Optional[str]:
        """Return the blob id of the user's stored initials, if any."""
        raise NotImplementedError

    @abstractmethod
    def attach(self, submitter: Submitter, blob_id: str) -> str:
        """
        Attach a blob to a submitter and return the attachment uuid.

        Must be idempotent: attaching the same blob twice returns the
        existing attachment.
        """
        raise NotImplementedError


class Notifier(ABC):
    """Fire-and-forget signature request dispatch."""

    @abstractmethod
    def notify(self, wave: Sequence[Submitter], delay_seconds: Optional[int] = None) -> None:
        raise NotImplementedError


class InMemoryIdentityDirectory(IdentityDirectory):
    """Identity lookup over a fixed list of users."""

    def __init__(self, users: Sequence[User] = ()):
        self._users: List[User] = list(users)

    def add(self, user: User) -> User:
        self._users.append(user)
        return user

    def get_user(self, account_id: Any, user_id: Any) -> Optional[User]:
        if user_id is None:
            return None
        return next(
            (u for u in self._users if u.id == user_id and u.account_id == account_id),
            None
        )

    def find_by_email(self, account_id: Any, email: str) -> Optional[User]:
        if not email:
            return None
        email = email.lower()
        return next(
            (u for u in self._users if (u.email or '').lower() == email and u.account_id == account_id),
            None
        )


class InMemoryAssetStore(AssetStore):
    """Asset store keeping initials blobs and attachments in dicts."""

    def __init__(self, initials: Dict[Any, str] = None):
        self._initials: Dict[Any, str] = dict(initials or {})
        self._attachments: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def save_initials(self, user: User, blob_id: str) -> None:
        self._initials[user.id] = blob_id

    def load_initials(self, user: User) -> Optional[str]:
        return self._initials.get(user.id)

    def attach(self, submitter: Submitter, blob_id: str) -> str:
        key = (submitter.id, blob_id)
        with self._lock:
            attachment_uuid = self._attachments.get(key)
            if attachment_uuid is None:
                attachment_uuid = new_uuid()
                self._attachments[key] = attachment_uuid
                logger.debug(f"Attached blob {blob_id} to submitter {submitter.id}")

        if attachment_uuid not in submitter.attachments:
            submitter.attachments.append(attachment_uuid)
        return attachment_uuid

    def attachments_for(self, submitter: Submitter) -> List[str]:
        return [uuid for (submitter_id, _), uuid in self._attachments.items() if submitter_id == submitter.id]


class RecordingNotifier(Notifier):
    """Notifier that records every wave instead of sending anything."""

    def __init__(self):
        self.sent: List[Tuple[List[str], Optional[int]]] = []

    def notify(self, wave: Sequence[Submitter], delay_seconds: Optional[int] = None) -> None:
        self.sent.append(([s.id for s in wave], delay_seconds))
        logger.info(f"Recorded signature request for {len(wave)} submitter(s)")

    @property
    def notified_ids(self) -> List[str]:
        return [submitter_id for ids, _ in self.sent for submitter_id in ids]
