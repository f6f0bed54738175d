"""
Signing Workflow Core

Coordinates multi-party document signing: which signers are notified
and when, which fields each signer sees, what gets pre-filled, and how
signer emails are repaired before use as identity keys. Templates are
defined in YAML files and snapshotted into submissions.

Usage:
    from signflow import TemplateLoader, SubmissionStore, WorkflowOrchestrator, RequestContext

    # On startup
    TemplateLoader.load_all()
    store = SubmissionStore.from_url()

    # When sending a template out
    orchestrator = WorkflowOrchestrator(store, notifier)
    template = TemplateLoader.get_or_raise('candidate-onboarding')
    step = orchestrator.create_submission(
        RequestContext(account_id=1, user_id=7),
        template,
        [{'role': 'Candidate', 'email': 'jane@gmial.com'}]
    )
    for effect in step.effects:
        ...
"""

from .types import (
    FieldType,
    ConditionAction,
    ConditionOperation,
    SubmittersOrder,
    Condition,
    FieldOption,
    FieldDefinition,
    SchemaEntry,
    SignerRoleDefinition,
    TemplateDefinition,
    User,
    RequestContext,
    Submitter,
    Submission,
    EffectKind,
    Effect,
    WorkflowStep
)

from .exceptions import (
    SigningError,
    ConfigurationError,
    ValidationError,
    InvalidTransitionError,
    RateLimitedError,
    TransientDependencyError,
    StaleRecordError
)

from .config import Config
from .domain_typos import DomainTypoDictionary
from .email_normalizer import EmailNormalizer, normalize_email
from .condition_evaluator import ConditionEvaluator
from .default_values import DefaultValueResolver
from .signer_router import SignerRouter
from .lifecycle import SubmitterLifecycle
from .interfaces import (
    IdentityDirectory,
    AssetStore,
    Notifier,
    InMemoryIdentityDirectory,
    InMemoryAssetStore,
    RecordingNotifier
)
from .store import SubmissionStore
from .loader import TemplateLoader
from .orchestrator import WorkflowOrchestrator

__all__ = [
    # Types
    'FieldType',
    'ConditionAction',
    'ConditionOperation',
    'SubmittersOrder',
    'Condition',
    'FieldOption',
    'FieldDefinition',
    'SchemaEntry',
    'SignerRoleDefinition',
    'TemplateDefinition',
    'User',
    'RequestContext',
    'Submitter',
    'Submission',
    'EffectKind',
    'Effect',
    'WorkflowStep',

    # Exceptions
    'SigningError',
    'ConfigurationError',
    'ValidationError',
    'InvalidTransitionError',
    'RateLimitedError',
    'TransientDependencyError',
    'StaleRecordError',

    # Services
    'Config',
    'DomainTypoDictionary',
    'EmailNormalizer',
    'normalize_email',
    'ConditionEvaluator',
    'DefaultValueResolver',
    'SignerRouter',
    'SubmitterLifecycle',
    'SubmissionStore',
    'TemplateLoader',
    'WorkflowOrchestrator',

    # Collaborators
    'IdentityDirectory',
    'AssetStore',
    'Notifier',
    'InMemoryIdentityDirectory',
    'InMemoryAssetStore',
    'RecordingNotifier',
]
