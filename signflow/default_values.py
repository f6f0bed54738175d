"""
Default Value Resolver

Pre-fills field values for a submitter from, in order:
    - candidate profile preferences (submitter.preferences['default_values'])
    - the authenticated user's name
    - the preference chain / template default
    - the user's stored initials

Preference chain lookup order for a field:
    default_values[field.type]
    default_values[display label]   (candidate profile fields)
    default_values[field.name]
    field.default_value
"""

import logging
from typing import Any, Optional

from .condition_evaluator import is_blank
from .interfaces import AssetStore
from .types import (
    CANDIDATE_FIELD_LABELS,
    FieldDefinition,
    FieldType,
    Submission,
    Submitter,
    User,
)

logger = logging.getLogger(__name__)

FULL_NAME_FIELDS = ('full name', 'legal name')


class DefaultValueResolver:
    """
    Resolves default values for submitter fields.

    resolve() is pure apart from attaching the user's initials asset to
    the submitter, which is idempotent.
    """

    def __init__(self, assets: AssetStore = None):
        self.assets = assets

    def resolve(
        self,
        field_def: FieldDefinition,
        submitter: Submitter,
        user: Optional[User] = None
    ) -> Any:
        """
        Resolve the value to pre-fill for a single field.

        Args:
            field_def: Field from the submission snapshot
            submitter: Submitter owning the field
            user: Authenticated user matching the submitter, if any

        Returns:
            The value, or None when nothing applies
        """
        field_name = (field_def.name or '').strip().lower()

        if field_def.type.is_candidate_profile:
            logger.debug(f"Candidate field detected: {field_def.type.value}")
            return self.preference_value(
                field_def, submitter, field_def.type.value, CANDIDATE_FIELD_LABELS[field_def.type]
            )

        # Legacy profession fields predate the candidate field types
        if field_def.type == FieldType.PROFESSION or 'profession' in field_name:
            logger.debug(f"Profession field detected: {field_def.uuid}")
            return self.preference_value(field_def, submitter, 'profession', field_def.name)

        if user is not None:
            if field_name in FULL_NAME_FIELDS and user.full_name:
                return user.full_name
            if field_name == 'first name' and user.first_name:
                return user.first_name
            if field_name == 'last name' and user.last_name:
                return user.last_name

        value = self.preference_value(field_def, submitter, field_def.type.value, None)
        if not is_blank(value):
            return value

        if field_def.type == FieldType.INITIALS and user is not None and self.assets is not None:
            blob_id = self.assets.load_initials(user)
            if blob_id:
                return self.assets.attach(submitter, blob_id)

        return field_def.default_value

    @staticmethod
    def preference_value(
        field_def: FieldDefinition,
        submitter: Submitter,
        type_key: str,
        display_label: Optional[str]
    ) -> Any:
        """Walk the preference chain; first non-blank value wins."""
        default_values = submitter.default_values

        for key in (type_key, display_label, field_def.name):
            if key and not is_blank(default_values.get(key)):
                return default_values[key]

        return field_def.default_value

    def fill_defaults(
        self,
        submission: Submission,
        submitter: Submitter,
        user: Optional[User] = None,
        force_refill: bool = False
    ) -> bool:
        """
        Store resolved defaults into submitter.values.

        Fields that already hold a value are skipped unless force_refill
        is set. Returns True if any value changed, so callers can skip
        no-op writes.
        """
        values_updated = False

        for field_def in submission.template_fields:
            if field_def.submitter_uuid != submitter.uuid:
                continue

            current = submitter.values.get(field_def.uuid)
            if not force_refill and not is_blank(current):
                continue

            value = self.resolve(field_def, submitter, user)

            if is_blank(value) or value == current:
                continue

            submitter.values[field_def.uuid] = value
            values_updated = True

        if values_updated:
            logger.debug(f"Filled default values for submitter {submitter.id}")

        return values_updated
