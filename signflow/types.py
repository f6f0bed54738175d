"""
Signing Workflow Type Definitions

Dataclasses representing templates, submissions and submitters.
Template definitions are immutable after loading and validated at the
boundary; submissions hold a frozen snapshot of the template they were
created from, and submitters carry the mutable runtime state.
"""

import uuid as uuid_lib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import pytz

from .config import Config
from .exceptions import ValidationError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(pytz.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; aware ones pass through."""
    if value is not None and value.tzinfo is None:
        return pytz.utc.localize(value)
    return value


def new_uuid() -> str:
    return str(uuid_lib.uuid4())


class FieldType(Enum):
    """Closed set of field kinds a template may declare."""
    TEXT = "text"
    SIGNATURE = "signature"
    INITIALS = "initials"
    DATE = "date"
    DATENOW = "datenow"
    NUMBER = "number"
    IMAGE = "image"
    CHECKBOX = "checkbox"
    MULTIPLE = "multiple"
    FILE = "file"
    RADIO = "radio"
    SELECT = "select"
    CELLS = "cells"
    STAMP = "stamp"
    PAYMENT = "payment"
    PHONE = "phone"
    VERIFICATION = "verification"
    HEADING = "heading"
    STRIKETHROUGH = "strikethrough"

    # Legacy profession kind, resolved like a candidate profile field
    PROFESSION = "profession"

    # Candidate profile kinds, pre-filled from submitter preferences
    CANDIDATE_PROFESSION = "candidateprofession"
    CANDIDATE_PRIMARY_PROFESSION = "candidateprimaryprofession"
    CANDIDATE_SPECIALTY = "candidatespecialty"
    CANDIDATE_PRIMARY_SPECIALTY = "candidateprimaryspecialty"
    CANDIDATE_FULL_NAME = "candidatefullname"
    CANDIDATE_LAST_NAME = "candidatelastname"
    CANDIDATE_FIRST_NAME = "candidatefirstname"
    CANDIDATE_EMAIL = "candidateemail"
    CANDIDATE_ADDRESS = "candidateaddress"
    CANDIDATE_CITY = "candidatecity"
    CANDIDATE_STATE = "candidatestate"
    CANDIDATE_ZIP = "candidatezip"
    CANDIDATE_SSN = "candidatessn"
    CANDIDATE_AVAILABLE_FROM_DATE = "candidateavailablefromdate"
    CANDIDATE_PRIMARY_PHONE = "candidateprimaryphone"

    @property
    def is_candidate_profile(self) -> bool:
        return self in CANDIDATE_FIELD_LABELS


# Display labels used as preference keys for candidate profile fields
CANDIDATE_FIELD_LABELS: Dict[FieldType, str] = {
    FieldType.CANDIDATE_PROFESSION: 'Candidate Profession',
    FieldType.CANDIDATE_PRIMARY_PROFESSION: 'Candidate Primary Profession',
    FieldType.CANDIDATE_SPECIALTY: 'Candidate Specialty',
    FieldType.CANDIDATE_PRIMARY_SPECIALTY: 'Candidate Primary Specialty',
    FieldType.CANDIDATE_FULL_NAME: 'Candidate Full Name',
    FieldType.CANDIDATE_LAST_NAME: 'Candidate Last Name',
    FieldType.CANDIDATE_FIRST_NAME: 'Candidate First Name',
    FieldType.CANDIDATE_EMAIL: 'Candidate Email',
    FieldType.CANDIDATE_ADDRESS: 'Candidate Address',
    FieldType.CANDIDATE_CITY: 'Candidate City',
    FieldType.CANDIDATE_STATE: 'Candidate State',
    FieldType.CANDIDATE_ZIP: 'Candidate Zipcode',
    FieldType.CANDIDATE_SSN: 'Candidate SSN',
    FieldType.CANDIDATE_AVAILABLE_FROM_DATE: 'Candidate Available From Date',
    FieldType.CANDIDATE_PRIMARY_PHONE: 'Candidate Primary Phone',
}


class ConditionAction(Enum):
    """Comparators a condition can apply to the referenced field's value."""
    EMPTY = "empty"
    UNCHECKED = "unchecked"
    NOT_EMPTY = "not_empty"
    CHECKED = "checked"
    EQUAL = "equal"
    CONTAINS = "contains"
    NOT_EQUAL = "not_equal"
    DOES_NOT_CONTAIN = "does_not_contain"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class ConditionOperation(Enum):
    """How a condition folds into the accumulated visibility result."""
    AND = "and"
    OR = "or"


class SubmittersOrder(Enum):
    """Notification policy for templates without explicit role order."""
    PRESERVED = "preserved"
    RANDOM = "random"


def _require(data: Dict[str, Any], key: str, kind: str) -> Any:
    """Fetch a required key from a raw definition dict."""
    if not isinstance(data, dict):
        raise ValidationError(f"{kind} definition must be a mapping, got {type(data).__name__}")
    if data.get(key) in (None, ''):
        raise ValidationError(f"{kind} is missing required '{key}'", field=key)
    return data[key]


def _parse_enum(enum_cls, raw: Any, kind: str):
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = sorted(e.value for e in enum_cls)
        raise ValidationError(f"Unknown {kind} '{raw}'. Allowed: {allowed}", field=kind)


@dataclass(frozen=True)
class Condition:
    """
    A visibility rule referencing another field's value.

    Attributes:
        field_uuid: The field whose stored value is inspected
        value: Value compared against (option uuid or literal)
        action: Comparator to apply
        operation: How the result folds with the accumulated result
    """
    field_uuid: str
    value: Any = None
    action: ConditionAction = ConditionAction.EQUAL
    operation: ConditionOperation = ConditionOperation.AND

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Condition':
        return cls(
            field_uuid=_require(data, 'field_uuid', 'Condition'),
            value=data.get('value'),
            action=_parse_enum(ConditionAction, data.get('action', 'equal'), 'condition action'),
            operation=_parse_enum(ConditionOperation, data.get('operation') or 'and', 'condition operation'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field_uuid': self.field_uuid,
            'value': self.value,
            'action': self.action.value,
            'operation': self.operation.value,
        }


@dataclass(frozen=True)
class FieldOption:
    """A selectable option of a select/radio/multiple field."""
    uuid: str
    value: Any

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FieldOption':
        return cls(uuid=_require(data, 'uuid', 'Field option'), value=data.get('value'))

    def to_dict(self) -> Dict[str, Any]:
        return {'uuid': self.uuid, 'value': self.value}


@dataclass(frozen=True)
class FieldDefinition:
    """
    A template field owned by one signer role.

    Attributes:
        uuid: Unique within the template
        submitter_uuid: Owning signer role
        name: Field label as shown in the template
        type: Field kind
        required: Whether the signer must fill it before completing
        default_value: Template-level default
        conditions: Ordered visibility rules (empty = always visible)
        options: Choices for select-like fields
    """
    uuid: str
    submitter_uuid: str
    name: str = ''
    type: FieldType = FieldType.TEXT
    required: bool = False
    default_value: Any = None
    conditions: Tuple[Condition, ...] = ()
    options: Tuple[FieldOption, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FieldDefinition':
        return cls(
            uuid=_require(data, 'uuid', 'Field'),
            submitter_uuid=_require(data, 'submitter_uuid', 'Field'),
            name=data.get('name') or '',
            type=_parse_enum(FieldType, data.get('type', 'text'), 'field type'),
            required=bool(data.get('required', False)),
            default_value=data.get('default_value'),
            conditions=tuple(Condition.from_dict(c) for c in data.get('conditions') or []),
            options=tuple(FieldOption.from_dict(o) for o in data.get('options') or []),
        )

    def find_option(self, option_uuid: Any) -> Optional[FieldOption]:
        return next((o for o in self.options if o.uuid == option_uuid), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uuid': self.uuid,
            'submitter_uuid': self.submitter_uuid,
            'name': self.name,
            'type': self.type.value,
            'required': self.required,
            'default_value': self.default_value,
            'conditions': [c.to_dict() for c in self.conditions],
            'options': [o.to_dict() for o in self.options],
        }


@dataclass(frozen=True)
class SchemaEntry:
    """A document attachment in the template schema, optionally conditional."""
    attachment_uuid: str
    name: str = ''
    conditions: Tuple[Condition, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SchemaEntry':
        return cls(
            attachment_uuid=_require(data, 'attachment_uuid', 'Schema entry'),
            name=data.get('name') or '',
            conditions=tuple(Condition.from_dict(c) for c in data.get('conditions') or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attachment_uuid': self.attachment_uuid,
            'name': self.name,
            'conditions': [c.to_dict() for c in self.conditions],
        }


@dataclass(frozen=True)
class SignerRoleDefinition:
    """
    A signer role in a template.

    Attributes:
        uuid: Role identifier, reused as the submitter uuid
        name: Display name (e.g., "First Party")
        order: Lower values are notified earlier; None means unordered
        email: Fixed signer email for predefined roles
    """
    uuid: str
    name: str
    order: Optional[int] = None
    email: Optional[str] = None

    @property
    def is_predefined(self) -> bool:
        return bool(self.email)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SignerRoleDefinition':
        order = data.get('order')
        if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
            raise ValidationError(f"Role order must be an integer, got {order!r}", field='order')
        return cls(
            uuid=_require(data, 'uuid', 'Signer role'),
            name=data.get('name') or '',
            order=order,
            email=data.get('email'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'uuid': self.uuid, 'name': self.name, 'order': self.order, 'email': self.email}


@dataclass(frozen=True)
class TemplateDefinition:
    """
    Complete definition of a signing template.

    One YAML file = one TemplateDefinition. Referential integrity is
    checked on construction through from_dict, so a malformed template
    never reaches a submission.
    """
    slug: str
    name: str
    submitters: Tuple[SignerRoleDefinition, ...]
    fields: Tuple[FieldDefinition, ...]
    schema: Tuple[SchemaEntry, ...] = ()
    submitters_order: SubmittersOrder = SubmittersOrder.RANDOM
    shared_link: bool = False
    expire_after_days: Optional[int] = None
    schema_version: str = '1.0'

    def get_role(self, role_uuid: str) -> Optional[SignerRoleDefinition]:
        """Get a role definition by its uuid."""
        return next((r for r in self.submitters if r.uuid == role_uuid), None)

    def get_fields_for_role(self, role_uuid: str) -> List[FieldDefinition]:
        """Get all fields that belong to a specific role."""
        return [f for f in self.fields if f.submitter_uuid == role_uuid]

    def undefined_roles(self) -> List[SignerRoleDefinition]:
        """Roles without a fixed email, i.e. filled in by whoever signs."""
        return [r for r in self.submitters if not r.is_predefined]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TemplateDefinition':
        """
        Create a TemplateDefinition from a parsed YAML dict.

        Raises ValidationError if the definition is malformed or has
        dangling references.
        """
        slug = _require(data, 'slug', 'Template')
        try:
            roles = tuple(SignerRoleDefinition.from_dict(r) for r in data.get('submitters') or [])
            fields = tuple(FieldDefinition.from_dict(f) for f in data.get('fields') or [])
            schema = tuple(SchemaEntry.from_dict(s) for s in data.get('schema') or [])
            order = _parse_enum(
                SubmittersOrder, data.get('submitters_order') or Config.DEFAULT_SUBMITTERS_ORDER, 'submitters order'
            )
        except ValidationError as e:
            raise ValidationError(f"Template '{slug}': {e}", template_slug=slug, field=e.field)

        template = cls(
            slug=slug,
            name=data.get('name') or slug,
            submitters=roles,
            fields=fields,
            schema=schema,
            submitters_order=order,
            shared_link=bool(data.get('shared_link', False)),
            expire_after_days=data.get('expire_after_days'),
            schema_version=str(data.get('schema_version', '1.0')),
        )
        template.validate()
        return template

    def validate(self) -> None:
        """Check uniqueness and referential integrity."""
        if not self.submitters:
            raise ValidationError(f"Template '{self.slug}' has no signer roles", template_slug=self.slug)

        role_uuids = [r.uuid for r in self.submitters]
        if len(role_uuids) != len(set(role_uuids)):
            duplicates = {u for u in role_uuids if role_uuids.count(u) > 1}
            raise ValidationError(f"Duplicate role uuids: {duplicates}", template_slug=self.slug)

        field_uuids = [f.uuid for f in self.fields]
        if len(field_uuids) != len(set(field_uuids)):
            duplicates = {u for u in field_uuids if field_uuids.count(u) > 1}
            raise ValidationError(f"Duplicate field uuids: {duplicates}", template_slug=self.slug)

        known_roles = set(role_uuids)
        known_fields = set(field_uuids)
        for field_def in self.fields:
            if field_def.submitter_uuid not in known_roles:
                raise ValidationError(
                    f"Field '{field_def.uuid}' references unknown role '{field_def.submitter_uuid}'. "
                    f"Available roles: {sorted(known_roles)}",
                    template_slug=self.slug,
                    field=field_def.uuid
                )

        for item in list(self.fields) + list(self.schema):
            item_id = getattr(item, 'uuid', None) or getattr(item, 'attachment_uuid', None)
            for condition in item.conditions:
                if condition.field_uuid not in known_fields:
                    raise ValidationError(
                        f"Condition on '{item_id}' references unknown field '{condition.field_uuid}'",
                        template_slug=self.slug,
                        field=item_id
                    )


@dataclass
class User:
    """An authenticated account user, as returned by identity lookup."""
    id: Any
    email: str
    first_name: str = ''
    last_name: str = ''
    account_id: Any = None

    @property
    def full_name(self) -> Optional[str]:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full if full else None


@dataclass(frozen=True)
class RequestContext:
    """Explicit account/user scope passed into every workflow call."""
    account_id: Any
    user_id: Any = None


@dataclass
class Submitter:
    """
    Runtime state of one signer within a submission.

    `uuid` matches a role uuid of the submission snapshot. Lifecycle
    timestamps are set once and never cleared; see lifecycle.py.
    """
    uuid: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    id: str = field(default_factory=new_uuid)
    submission_id: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    preferences: Dict[str, Any] = field(default_factory=dict)
    attachments: List[str] = field(default_factory=list)
    sent_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    version: int = 0

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_declined(self) -> bool:
        return self.declined_at is not None

    @property
    def default_values(self) -> Dict[str, Any]:
        return self.preferences.get('default_values') or {}

    @property
    def status(self) -> str:
        if self.completed_at:
            return 'completed'
        if self.declined_at:
            return 'declined'
        if self.opened_at:
            return 'opened'
        if self.sent_at:
            return 'sent'
        return 'created'


@dataclass
class Submission:
    """
    One run of a template.

    The template_* attributes are a snapshot taken at creation and are
    write-once: later template edits never alter an in-flight submission.
    """
    template_slug: str
    template_fields: Tuple[FieldDefinition, ...]
    template_submitters: Tuple[SignerRoleDefinition, ...]
    template_schema: Tuple[SchemaEntry, ...] = ()
    submitters_order: SubmittersOrder = SubmittersOrder.RANDOM
    submitters: List[Submitter] = field(default_factory=list)
    id: str = field(default_factory=new_uuid)
    account_id: Any = None
    created_by_user_id: Any = None
    source: str = 'api'
    created_at: datetime = field(default_factory=utc_now)
    expire_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    wave_generation: int = 0
    dispatched_keys: List[str] = field(default_factory=list)

    _WRITE_ONCE = ('template_fields', 'template_submitters', 'template_schema')

    def __setattr__(self, name, value):
        if name in self._WRITE_ONCE and name in self.__dict__:
            raise ValidationError(f"Submission snapshot '{name}' is write-once")
        super().__setattr__(name, value)

    @classmethod
    def from_template(cls, template: TemplateDefinition, **kwargs) -> 'Submission':
        """Create a submission holding a snapshot of the template."""
        kwargs.setdefault('submitters_order', template.submitters_order)
        return cls(
            template_slug=template.slug,
            template_fields=tuple(template.fields),
            template_submitters=tuple(template.submitters),
            template_schema=tuple(template.schema),
            **kwargs
        )

    @property
    def fields_index(self) -> Dict[str, FieldDefinition]:
        return {f.uuid: f for f in self.template_fields}

    def get_role(self, role_uuid: str) -> Optional[SignerRoleDefinition]:
        return next((r for r in self.template_submitters if r.uuid == role_uuid), None)

    def get_submitter(self, submitter_id: str) -> Optional[Submitter]:
        return next((s for s in self.submitters if s.id == submitter_id), None)

    def add_submitter(self, submitter: Submitter) -> Submitter:
        """Attach a submitter, checking its uuid against the role snapshot."""
        if self.get_role(submitter.uuid) is None:
            raise ValidationError(
                f"Submitter role '{submitter.uuid}' not found in submission snapshot",
                template_slug=self.template_slug
            )
        submitter.submission_id = self.id
        self.submitters.append(submitter)
        return submitter

    def collected_values(self) -> Dict[str, Any]:
        """All values collected so far, merged across signers."""
        values: Dict[str, Any] = {}
        for submitter in self.submitters:
            values.update(submitter.values)
        return values

    def is_expired(self, now: datetime = None) -> bool:
        if self.expire_at is None:
            return False
        return as_utc(now or utc_now()) >= as_utc(self.expire_at)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def is_completed(self) -> bool:
        return bool(self.submitters) and all(s.is_completed for s in self.submitters)


class EffectKind(Enum):
    """Outbound side effects the caller is expected to execute."""
    SEND_SIGNATURE_REQUEST = "send_signature_request"
    WEBHOOK = "webhook"
    SCHEDULE_EXPIRATION = "schedule_expiration"
    PROCESS_COMPLETION = "process_completion"


@dataclass(frozen=True)
class Effect:
    """
    A side effect produced by the orchestrator.

    The core never performs delivery itself; callers (or
    WorkflowOrchestrator.dispatch) execute effects and own retries.
    """
    kind: EffectKind
    submission_id: str
    submitter_ids: Tuple[str, ...] = ()
    event: Optional[str] = None
    idempotency_key: Optional[str] = None
    delay_seconds: Optional[int] = None
    run_at: Optional[datetime] = None


@dataclass
class WorkflowStep:
    """
    Result of advancing a submission: the wave and the effects to run.

    `idempotency_key` identifies the wave generation; dispatch claims it
    once per submission.
    """
    submission: Submission
    wave: List[Submitter] = field(default_factory=list)
    effects: List[Effect] = field(default_factory=list)
    idempotency_key: Optional[str] = None

    def effects_of(self, kind: EffectKind) -> List[Effect]:
        return [e for e in self.effects if e.kind == kind]
