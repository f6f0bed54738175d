"""
Condition Evaluator

Resolves whether a field or document schema entry is visible given the
values collected so far in a submission.

Conditions are folded left to right. An `or` condition combines with the
result immediately before it; every other condition starts a new entry
that is AND-ed with the rest:

    [A and, B or]        -> (A or B)
    [A and, B and, C or] -> A and (B or C)

Conditions that depend on a field owned by the signer being evaluated
cannot be decided server-side yet. They count as satisfied and are
handed back as deferred so the form can re-check them as the signer types.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple, Union

from .types import (
    Condition,
    ConditionAction,
    ConditionOperation,
    FieldDefinition,
    SchemaEntry,
    Submission,
    Submitter,
)

logger = logging.getLogger(__name__)

ConditionalItem = Union[FieldDefinition, SchemaEntry]


def is_blank(value: Any) -> bool:
    """True for None, False, empty or whitespace-only strings and empty collections."""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


class ConditionEvaluator:
    """
    Evaluates field and schema visibility conditions.

    All methods are pure: they read the submission snapshot and values
    and never mutate them.
    """

    @classmethod
    def visible(
        cls,
        item: ConditionalItem,
        values: Dict[str, Any],
        fields_index: Dict[str, FieldDefinition],
        for_submitter_uuid: Optional[str] = None
    ) -> Tuple[bool, List[Condition]]:
        """
        Check whether an item is visible.

        Args:
            item: Field or schema entry carrying conditions
            values: field uuid -> collected value
            fields_index: field uuid -> FieldDefinition of the snapshot
            for_submitter_uuid: Signer currently being evaluated; conditions
                on that signer's own fields are deferred

        Returns:
            (visible, deferred_conditions)
        """
        deferred: List[Condition] = []

        if not item.conditions:
            return True, deferred

        acc: List[bool] = []

        for condition in item.conditions:
            referenced = fields_index.get(condition.field_uuid)

            if referenced is None:
                logger.warning(
                    f"Condition references missing field '{condition.field_uuid}'; "
                    f"hiding {cls._describe(item)}"
                )
                result = False
            elif for_submitter_uuid is not None and referenced.submitter_uuid == for_submitter_uuid:
                deferred.append(condition)
                result = True
            else:
                result = cls.check_condition(condition, values, fields_index)

            if condition.operation == ConditionOperation.OR and acc:
                acc.append(acc.pop() or result)
            else:
                acc.append(result)

        return all(acc), deferred

    @classmethod
    def check_condition(
        cls,
        condition: Condition,
        values: Dict[str, Any],
        fields_index: Dict[str, FieldDefinition]
    ) -> bool:
        """Evaluate a single condition against the stored values."""
        value = values.get(condition.field_uuid)
        action = condition.action

        if action in (ConditionAction.EMPTY, ConditionAction.UNCHECKED):
            return is_blank(value)

        if action in (ConditionAction.NOT_EMPTY, ConditionAction.CHECKED):
            return not is_blank(value)

        if action in (ConditionAction.EQUAL, ConditionAction.CONTAINS):
            return cls._matches(condition, value, fields_index.get(condition.field_uuid))

        if action in (ConditionAction.NOT_EQUAL, ConditionAction.DOES_NOT_CONTAIN):
            return not cls._matches(condition, value, fields_index.get(condition.field_uuid))

        if action in (ConditionAction.GREATER_THAN, ConditionAction.LESS_THAN):
            try:
                left, right = float(value), float(condition.value)
            except (TypeError, ValueError):
                return False
            return left > right if action == ConditionAction.GREATER_THAN else left < right

        return True

    @classmethod
    def _matches(cls, condition: Condition, value: Any, field_def: Optional[FieldDefinition]) -> bool:
        """
        Check if the stored value (or any element of a list value)
        equals the condition value. For option fields the condition
        value may be an option uuid.
        """
        if is_blank(value):
            return False

        expected = {str(condition.value)}
        if field_def is not None and field_def.options:
            option = field_def.find_option(condition.value)
            if option is not None and option.value is not None:
                expected.add(str(option.value))

        stored = value if isinstance(value, (list, tuple)) else [value]
        return any(str(v) in expected for v in stored if v is not None)

    @classmethod
    def filtered_schema(
        cls,
        submission: Submission,
        values: Dict[str, Any] = None,
        for_submitter_uuid: str = None
    ) -> List[SchemaEntry]:
        """Schema entries (documents) that apply given all collected values."""
        fields_index = submission.fields_index
        entries = []

        for entry in submission.template_schema:
            if entry.conditions:
                if values is None:
                    values = submission.collected_values()
                is_visible, _ = cls.visible(entry, values, fields_index, for_submitter_uuid)
                if not is_visible:
                    continue
            entries.append(entry)

        return entries

    @classmethod
    def filtered_fields(
        cls,
        submission: Submission,
        submitter: Submitter,
        only_submitter_fields: bool = True
    ) -> List[FieldDefinition]:
        """
        Fields that apply to one signer.

        Conditions on other signers' fields are evaluated against their
        collected values; conditions on this signer's own fields are
        deferred and re-attached to the returned field.
        """
        fields_index = submission.fields_index
        values = None
        fields = []

        for field_def in submission.template_fields:
            if only_submitter_fields and field_def.submitter_uuid != submitter.uuid:
                continue

            if field_def.conditions:
                if values is None:
                    values = submission.collected_values()

                is_visible, deferred = cls.visible(field_def, values, fields_index, submitter.uuid)
                if not is_visible:
                    logger.debug(f"Field '{field_def.uuid}' hidden for submitter {submitter.uuid}")
                    continue

                if tuple(deferred) != field_def.conditions:
                    field_def = replace(field_def, conditions=tuple(deferred))

            fields.append(field_def)

        return fields

    @staticmethod
    def _describe(item: ConditionalItem) -> str:
        if isinstance(item, FieldDefinition):
            return f"field '{item.uuid}'"
        return f"schema entry '{item.attachment_uuid}'"
