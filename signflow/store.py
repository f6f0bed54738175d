"""
Submission Store

Persistence for submissions and submitters on SQLAlchemy Core.

Submitter writes use an optimistic version check: an update only
applies when the stored version matches the one the caller loaded,
otherwise StaleRecordError is raised and the caller reloads and retries.

Stored timestamps are UTC; SQLite drops tzinfo, so naive values read
back are localized to UTC.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from .config import Config
from .exceptions import StaleRecordError, TransientDependencyError, ValidationError
from .models import metadata, submissions, submitters
from .types import (
    FieldDefinition,
    SchemaEntry,
    SignerRoleDefinition,
    Submission,
    Submitter,
    SubmittersOrder,
    as_utc,
)

logger = logging.getLogger(__name__)


def _id(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class SubmissionStore:
    """Loads and saves submissions with their submitters."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @classmethod
    def from_url(cls, url: str = None) -> 'SubmissionStore':
        """Create a store, creating tables if needed."""
        engine = create_engine(url or Config.DATABASE_URL, echo=False)
        metadata.create_all(engine)
        return cls(engine)

    def save_submission(self, submission: Submission) -> Submission:
        """
        Insert or update a submission and all of its submitters.

        The template snapshot columns are only written on insert.
        """
        saved = []
        try:
            with self._engine.begin() as conn:
                exists = conn.execute(
                    select(submissions.c.id).where(submissions.c.id == submission.id)
                ).first()

                if exists is None:
                    conn.execute(insert(submissions).values(
                        id=submission.id,
                        template_slug=submission.template_slug,
                        template_fields=[f.to_dict() for f in submission.template_fields],
                        template_submitters=[r.to_dict() for r in submission.template_submitters],
                        template_schema=[s.to_dict() for s in submission.template_schema],
                        created_at=submission.created_at,
                        **self._submission_state(submission)
                    ))
                else:
                    conn.execute(
                        update(submissions)
                        .where(submissions.c.id == submission.id)
                        .values(**self._submission_state(submission))
                    )

                for position, submitter in enumerate(submission.submitters):
                    submitter.submission_id = submission.id
                    saved.append((submitter, self._write_submitter(conn, submitter, position)))
        except OperationalError as e:
            raise TransientDependencyError(f"Failed to save submission {submission.id}: {e}", dependency='persistence')

        for submitter, version in saved:
            submitter.version = version

        logger.debug(f"Saved submission {submission.id} with {len(saved)} submitter(s)")
        return submission

    def save_submitter(self, submitter: Submitter) -> Submitter:
        """Atomically update a single submitter, checking its version."""
        try:
            with self._engine.begin() as conn:
                version = self._write_submitter(conn, submitter)
        except OperationalError as e:
            raise TransientDependencyError(f"Failed to save submitter {submitter.id}: {e}", dependency='persistence')

        submitter.version = version
        return submitter

    def claim_wave(self, submission: Submission, key: str) -> bool:
        """
        Atomically claim a dispatch key for the submission's next wave.

        The claim bumps `wave_generation` only if the stored generation
        still matches the caller's copy, so of two workers holding the
        same generation exactly one wins.

        Returns:
            True if this caller owns the wave, False if another claimed it
        """
        generation = submission.wave_generation
        keys = list(submission.dispatched_keys) + [key]
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(submissions)
                    .where(submissions.c.id == submission.id)
                    .where(submissions.c.wave_generation == generation)
                    .values(wave_generation=generation + 1, dispatched_keys=keys)
                )
        except OperationalError as e:
            raise TransientDependencyError(f"Failed to claim wave {key}: {e}", dependency='persistence')

        if result.rowcount == 0:
            return False

        submission.wave_generation = generation + 1
        submission.dispatched_keys = keys
        return True

    def release_wave(self, submission: Submission, key: str) -> None:
        """Undo a claim whose delivery failed so the wave can be retried."""
        generation = submission.wave_generation
        keys = [k for k in submission.dispatched_keys if k != key]
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    update(submissions)
                    .where(submissions.c.id == submission.id)
                    .where(submissions.c.wave_generation == generation)
                    .values(wave_generation=generation - 1, dispatched_keys=keys)
                )
        except OperationalError as e:
            raise TransientDependencyError(f"Failed to release wave {key}: {e}", dependency='persistence')

        submission.wave_generation = generation - 1
        submission.dispatched_keys = keys
        logger.info(f"Released wave {key}")

    def load_submission(self, submission_id: str) -> Submission:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(submissions).where(submissions.c.id == submission_id)
                ).mappings().first()
                if row is None:
                    raise ValidationError(f"Submission not found: {submission_id}")

                submitter_rows = conn.execute(
                    select(submitters)
                    .where(submitters.c.submission_id == submission_id)
                    .order_by(submitters.c.position)
                ).mappings().all()
        except OperationalError as e:
            raise TransientDependencyError(f"Failed to load submission {submission_id}: {e}", dependency='persistence')

        return Submission(
            id=row['id'],
            account_id=row['account_id'],
            created_by_user_id=row['created_by_user_id'],
            template_slug=row['template_slug'],
            template_fields=tuple(FieldDefinition.from_dict(f) for f in row['template_fields']),
            template_submitters=tuple(SignerRoleDefinition.from_dict(r) for r in row['template_submitters']),
            template_schema=tuple(SchemaEntry.from_dict(s) for s in row['template_schema']),
            submitters_order=SubmittersOrder(row['submitters_order']),
            submitters=[self._to_submitter(r) for r in submitter_rows],
            source=row['source'],
            created_at=as_utc(row['created_at']),
            expire_at=as_utc(row['expire_at']),
            archived_at=as_utc(row['archived_at']),
            wave_generation=row['wave_generation'],
            dispatched_keys=list(row['dispatched_keys'] or []),
        )

    def load_submitter(self, submitter_id: str) -> Submitter:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    select(submitters).where(submitters.c.id == submitter_id)
                ).mappings().first()
        except OperationalError as e:
            raise TransientDependencyError(f"Failed to load submitter {submitter_id}: {e}", dependency='persistence')

        if row is None:
            raise ValidationError(f"Submitter not found: {submitter_id}")
        return self._to_submitter(row)

    @staticmethod
    def _submission_state(submission: Submission) -> Dict[str, Any]:
        """Columns that may change after creation."""
        return {
            'account_id': _id(submission.account_id),
            'created_by_user_id': _id(submission.created_by_user_id),
            'submitters_order': submission.submitters_order.value,
            'source': submission.source,
            'expire_at': submission.expire_at,
            'archived_at': submission.archived_at,
            'wave_generation': submission.wave_generation,
            'dispatched_keys': list(submission.dispatched_keys),
        }

    @staticmethod
    def _write_submitter(conn: Connection, submitter: Submitter, position: int = None) -> int:
        """Insert a new submitter or update with a version check. Returns the new version."""
        state = {
            'email': submitter.email,
            'name': submitter.name,
            'phone': submitter.phone,
            'field_values': dict(submitter.values),
            'preferences': dict(submitter.preferences),
            'attachments': list(submitter.attachments),
            'sent_at': submitter.sent_at,
            'opened_at': submitter.opened_at,
            'completed_at': submitter.completed_at,
            'declined_at': submitter.declined_at,
            'decline_reason': submitter.decline_reason,
        }

        if submitter.version == 0:
            conn.execute(insert(submitters).values(
                id=submitter.id,
                submission_id=submitter.submission_id,
                uuid=submitter.uuid,
                position=position or 0,
                version=1,
                **state
            ))
            return 1

        if position is not None:
            state['position'] = position

        result = conn.execute(
            update(submitters)
            .where(submitters.c.id == submitter.id)
            .where(submitters.c.version == submitter.version)
            .values(version=submitter.version + 1, **state)
        )

        if result.rowcount == 0:
            raise StaleRecordError(
                f"Submitter {submitter.id} was modified concurrently (expected version {submitter.version})",
                record_id=submitter.id,
                expected_version=submitter.version
            )

        return submitter.version + 1

    @staticmethod
    def _to_submitter(row) -> Submitter:
        return Submitter(
            id=row['id'],
            submission_id=row['submission_id'],
            uuid=row['uuid'],
            email=row['email'],
            name=row['name'],
            phone=row['phone'],
            values=dict(row['field_values'] or {}),
            preferences=dict(row['preferences'] or {}),
            attachments=list(row['attachments'] or []),
            sent_at=as_utc(row['sent_at']),
            opened_at=as_utc(row['opened_at']),
            completed_at=as_utc(row['completed_at']),
            declined_at=as_utc(row['declined_at']),
            decline_reason=row['decline_reason'],
            version=row['version'],
        )
