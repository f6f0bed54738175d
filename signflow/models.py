"""SQLAlchemy Core table definitions for submissions and submitters.

Template snapshots are stored as JSON on the submission row and are
never rewritten after the first insert. Submitter rows carry a version
column used for optimistic concurrency.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

submissions = Table(
    "submissions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(64)),
    Column("created_by_user_id", String(64)),
    Column("template_slug", String(120), nullable=False),
    # Write-once snapshot of the template
    Column("template_fields", JSON, nullable=False),
    Column("template_submitters", JSON, nullable=False),
    Column("template_schema", JSON, nullable=False),
    Column("submitters_order", String(20), nullable=False, default="random"),
    Column("source", String(20)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expire_at", DateTime(timezone=True)),
    Column("archived_at", DateTime(timezone=True)),
    Column("wave_generation", Integer, nullable=False, default=0),
    Column("dispatched_keys", JSON, nullable=False),
)

submitters = Table(
    "submitters",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("submission_id", String(36), ForeignKey("submissions.id"), nullable=False),
    Column("position", Integer, nullable=False, default=0),
    Column("uuid", String(36), nullable=False),
    Column("email", String(255)),
    Column("name", String(255)),
    Column("phone", String(40)),
    Column("field_values", JSON, nullable=False),
    Column("preferences", JSON, nullable=False),
    Column("attachments", JSON, nullable=False),
    Column("sent_at", DateTime(timezone=True)),
    Column("opened_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    Column("declined_at", DateTime(timezone=True)),
    Column("decline_reason", Text),
    Column("version", Integer, nullable=False, default=1),
    Index("ix_submitters_submission_id", "submission_id"),
)
