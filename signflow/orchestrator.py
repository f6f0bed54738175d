"""
Workflow Orchestrator

Composes the signing core:

    create_submission -> snapshot template, bind signers, fill defaults,
                         route the first wave, dispatch it
    submit_values     -> store answers, complete the signer, route the next wave
    advance_workflow  -> compute the next wave and its effects

Every public call returns a WorkflowStep listing the side effects the
caller must run (webhooks, expiry scheduling, completion processing).
Only signature request dispatch is executed here, through the Notifier,
and at most once per idempotency key.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from .condition_evaluator import ConditionEvaluator, is_blank
from .config import Config
from .default_values import DefaultValueResolver
from .email_normalizer import EmailNormalizer
from .exceptions import ValidationError
from .interfaces import AssetStore, IdentityDirectory, InMemoryIdentityDirectory, Notifier
from .lifecycle import SubmitterLifecycle
from .signer_router import SignerRouter
from .store import SubmissionStore
from .types import (
    Effect,
    EffectKind,
    FieldDefinition,
    RequestContext,
    SchemaEntry,
    SignerRoleDefinition,
    Submission,
    Submitter,
    SubmittersOrder,
    TemplateDefinition,
    User,
    WorkflowStep,
    as_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

EMAIL_REGEXP = re.compile(r'[^@\s,;<>/]+@[^@\s,;<>/]+')


class WorkflowOrchestrator:
    """
    Entry point for submission workflows.

    Args:
        store: Persistence for submissions and submitters
        notifier: Signature request dispatch
        identity: User lookup for default values
        assets: Initials asset store for default values
        normalizer: Email normalizer for signer emails
        send_delay_seconds: Delay passed to the notifier with each wave
    """

    def __init__(
        self,
        store: SubmissionStore,
        notifier: Notifier,
        identity: IdentityDirectory = None,
        assets: AssetStore = None,
        normalizer: EmailNormalizer = None,
        send_delay_seconds: Optional[int] = None
    ):
        self.store = store
        self.notifier = notifier
        self.identity = identity or InMemoryIdentityDirectory()
        self.resolver = DefaultValueResolver(assets)
        self.normalizer = normalizer or EmailNormalizer()
        self.send_delay_seconds = send_delay_seconds if send_delay_seconds is not None else Config.SEND_DELAY_SECONDS

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_submission(
        self,
        ctx: RequestContext,
        template: TemplateDefinition,
        signer_inputs: List[Dict[str, Any]],
        submitters_order: Union[SubmittersOrder, str, None] = None,
        expire_at: Optional[datetime] = None,
        source: str = 'api',
        send: bool = True
    ) -> WorkflowStep:
        """
        Create a submission and route its first wave.

        Each signer input may carry:
            uuid / role     -> role by uuid or by name (else by position)
            email, name, phone
            values          -> field uuid or field name -> value
            default_values  -> preference chain values for defaults
            preferences     -> extra submitter preferences
            send_email      -> False to never notify this signer
            completed       -> True to complete the signer at creation

        A naive `expire_at` is taken as UTC.

        Returns:
            WorkflowStep whose submission is the new Submission
        """
        if not template.fields:
            raise ValidationError(f"Template '{template.slug}' does not contain fields", template_slug=template.slug)
        if not signer_inputs:
            raise ValidationError("At least one signer is required", template_slug=template.slug)

        submission = self._new_submission(ctx, template, source, submitters_order, expire_at)

        completed_ids = []
        for index, data in enumerate(signer_inputs):
            role = self._match_role(template, data, index)
            submitter = submission.add_submitter(self._build_submitter(submission, role, data))
            if data.get('completed'):
                completed_ids.append(submitter.id)

        self._assign_predefined(submission)
        self._fill_all_defaults(ctx, submission)

        for submitter_id in completed_ids:
            SubmitterLifecycle.complete(submission.get_submitter(submitter_id), require_sent=False)

        self.store.save_submission(submission)
        logger.info(
            f"Created submission {submission.id} from '{template.slug}' "
            f"with {len(submission.submitters)} submitter(s)"
        )

        effects = self._creation_effects(submission)
        effects.extend(
            Effect(kind=EffectKind.PROCESS_COMPLETION, submission_id=submission.id, submitter_ids=(submitter_id,))
            for submitter_id in completed_ids
        )
        if submission.is_completed:
            effects.append(self._webhook(submission, 'submission.completed'))

        step = self.advance_workflow(ctx, submission, dispatch=send)
        step.effects = effects + step.effects
        return step

    def create_from_emails(
        self,
        ctx: RequestContext,
        template: TemplateDefinition,
        emails: Union[str, Iterable[str]],
        send: bool = True
    ) -> List[WorkflowStep]:
        """
        Create one submission per distinct email, bound to the first
        role without a fixed email.

        `emails` may be a list or free text containing addresses.
        """
        if isinstance(emails, str):
            emails = EMAIL_REGEXP.findall(emails)

        unique = []
        for raw in emails:
            email = self.normalizer.normalize(raw)
            if email and email not in unique:
                unique.append(email)

        if not unique:
            raise ValidationError("No valid emails given", template_slug=template.slug, field='emails')

        undefined = template.undefined_roles()
        role = undefined[0] if undefined else template.submitters[0]
        return [
            self.create_submission(ctx, template, [{'uuid': role.uuid, 'email': email}], source='invite', send=send)
            for email in unique
        ]

    def start_from_link(
        self,
        ctx: RequestContext,
        template: TemplateDefinition,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None
    ) -> WorkflowStep:
        """
        Start a submission from a template's shared link.

        The signer takes the first role without a fixed email and gets
        the form directly, so they count as sent.
        """
        if not template.shared_link:
            raise ValidationError(f"Template '{template.slug}' is not shared", template_slug=template.slug)

        undefined = template.undefined_roles()
        if len(undefined) > 1:
            raise ValidationError(
                "This submission has multiple signers, which prevents the use of a sharing link",
                template_slug=template.slug
            )

        email = self.normalizer.normalize(email)
        if not email:
            raise ValidationError("Email is required", template_slug=template.slug, field='email')

        role = undefined[0] if undefined else template.submitters[0]
        submission = self._new_submission(ctx, template, 'link', None, None)
        submitter = submission.add_submitter(Submitter(
            uuid=role.uuid,
            email=email,
            name=name,
            phone=phone,
            preferences={'send_email': True}
        ))
        self._assign_predefined(submission)
        self._fill_all_defaults(ctx, submission)
        SubmitterLifecycle.mark_sent(submitter)

        self.store.save_submission(submission)
        logger.info(f"Started submission {submission.id} from shared link '{template.slug}'")

        return WorkflowStep(submission=submission, wave=[submitter], effects=self._creation_effects(submission))

    # ------------------------------------------------------------------
    # Signer operations
    # ------------------------------------------------------------------

    def fill_defaults(
        self,
        ctx: RequestContext,
        submission: Submission,
        submitter: Submitter,
        force_refill: bool = False
    ) -> Submitter:
        """Pre-fill a submitter's fields, persisting only when something changed."""
        self._ensure_member(submission, submitter)
        user = self._user_for(ctx, submitter, self._current_user(ctx))

        if self.resolver.fill_defaults(submission, submitter, user, force_refill=force_refill):
            self.store.save_submitter(submitter)

        return submitter

    def visible_fields(self, submission: Submission, submitter: Submitter) -> List[FieldDefinition]:
        """Fields the signer should see, with same-signer conditions deferred."""
        self._ensure_member(submission, submitter)
        return ConditionEvaluator.filtered_fields(submission, submitter)

    def filtered_schema(self, submission: Submission) -> List[SchemaEntry]:
        """Documents of the submission that apply given all collected values."""
        return ConditionEvaluator.filtered_schema(submission)

    def open(self, ctx: RequestContext, submission: Submission, submitter: Submitter) -> Submitter:
        self._ensure_member(submission, submitter)
        SubmitterLifecycle.mark_opened(submitter)
        self.store.save_submitter(submitter)
        return submitter

    def submit_values(
        self,
        ctx: RequestContext,
        submission: Submission,
        submitter: Submitter,
        values: Dict[str, Any],
        complete: bool = True
    ) -> WorkflowStep:
        """
        Store a signer's answers and optionally complete them.

        Completing requires every visible required field of the signer
        to hold a value. When the signer completes, the next wave is
        routed and dispatched.
        """
        self._ensure_member(submission, submitter)
        self._ensure_active(submission)
        SubmitterLifecycle.ensure_not_finished(submitter, 'submit')
        SubmitterLifecycle.ensure_sent(submitter, 'submit')
        SubmitterLifecycle.mark_opened(submitter)

        submitter.values.update(self._normalize_values(submission, submitter, values or {}))

        effects: List[Effect] = []

        if complete:
            missing = self._missing_required(submission, submitter)
            if missing:
                raise ValidationError(
                    f"Missing required fields: {', '.join(f.name or f.uuid for f in missing)}",
                    template_slug=submission.template_slug,
                    field=missing[0].uuid
                )
            SubmitterLifecycle.complete(submitter)

        self.store.save_submitter(submitter)

        if not complete:
            return WorkflowStep(submission=submission)

        effects.append(Effect(
            kind=EffectKind.PROCESS_COMPLETION,
            submission_id=submission.id,
            submitter_ids=(submitter.id,)
        ))
        effects.append(self._webhook(submission, 'form.completed', submitter))
        if submission.is_completed:
            effects.append(self._webhook(submission, 'submission.completed'))

        step = self.advance_workflow(ctx, submission)
        step.effects = effects + step.effects
        return step

    def decline(
        self,
        ctx: RequestContext,
        submission: Submission,
        submitter: Submitter,
        reason: Optional[str] = None
    ) -> WorkflowStep:
        self._ensure_member(submission, submitter)
        SubmitterLifecycle.decline(submitter, reason)
        self.store.save_submitter(submitter)
        return WorkflowStep(submission=submission, effects=[self._webhook(submission, 'form.declined', submitter)])

    def archive(self, ctx: RequestContext, submission: Submission) -> WorkflowStep:
        """Archive a submission; later routing yields empty waves."""
        if submission.archived_at is None:
            submission.archived_at = utc_now()
            self.store.save_submission(submission)
            logger.info(f"Archived submission {submission.id}")
        return WorkflowStep(submission=submission, effects=[self._webhook(submission, 'submission.archived')])

    # ------------------------------------------------------------------
    # Routing and dispatch
    # ------------------------------------------------------------------

    def advance_workflow(
        self,
        ctx: RequestContext,
        submission: Submission,
        dispatch: bool = True,
        now: datetime = None
    ) -> WorkflowStep:
        """
        Compute the signers to notify now and the send effect for them.

        Signers already sent are left out, so calling this repeatedly
        never yields a second request for the same signer. A non-empty
        wave carries the idempotency key of the next wave generation.
        """
        wave = [s for s in SignerRouter.next_wave(submission, now) if s.sent_at is None]
        step = WorkflowStep(submission=submission, wave=wave)

        if not wave:
            return step

        step.idempotency_key = f"{submission.id}:{submission.wave_generation + 1}"

        notifiable = [
            s for s in wave
            if s.email and s.preferences.get('send_email', True) is not False
        ]
        if notifiable:
            step.effects.append(Effect(
                kind=EffectKind.SEND_SIGNATURE_REQUEST,
                submission_id=submission.id,
                submitter_ids=tuple(s.id for s in notifiable),
                idempotency_key=step.idempotency_key,
                delay_seconds=self.send_delay_seconds
            ))

        if dispatch:
            self.dispatch(step)

        return step

    def dispatch(self, step: WorkflowStep) -> List[Submitter]:
        """
        Hand the step's wave to the notifier, at most once per wave.

        The wave generation is claimed in the store before the notifier
        runs, so concurrent workers holding separate copies of the
        submission cannot both notify. A worker that loses the claim
        skips the wave. If the notifier raises (RateLimitedError
        included) the claim is released and nothing is stamped, so the
        same step can be retried.

        Wave members without notification (send_email false or no
        email) are stamped sent without a notifier call; they get their
        link out of band.
        """
        submission = step.submission
        key = step.idempotency_key

        if key is None or not step.wave:
            return []

        if key in submission.dispatched_keys:
            logger.info(f"Skipping already dispatched wave {key}")
            return []

        if not self.store.claim_wave(submission, key):
            logger.info(f"Wave {key} was claimed by another worker, skipping")
            return []

        notified: List[Submitter] = []
        delay_seconds = None
        for effect in step.effects_of(EffectKind.SEND_SIGNATURE_REQUEST):
            delay_seconds = effect.delay_seconds
            wave = [submission.get_submitter(submitter_id) for submitter_id in effect.submitter_ids]
            notified.extend(s for s in wave if s is not None and s.sent_at is None)

        if notified:
            try:
                self.notifier.notify(notified, delay_seconds=delay_seconds)
            except Exception:
                self.store.release_wave(submission, key)
                raise

        for submitter in step.wave:
            SubmitterLifecycle.mark_sent(submitter)

        self.store.save_submission(submission)
        logger.info(f"Dispatched wave {key} to {len(notified)} submitter(s)")

        return notified

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_submission(
        self,
        ctx: RequestContext,
        template: TemplateDefinition,
        source: str,
        submitters_order: Union[SubmittersOrder, str, None],
        expire_at: Optional[datetime]
    ) -> Submission:
        created_at = utc_now()
        expire_at = as_utc(expire_at)
        if expire_at is None and template.expire_after_days:
            expire_at = created_at + timedelta(days=template.expire_after_days)

        kwargs = {}
        if submitters_order is not None:
            kwargs['submitters_order'] = SubmittersOrder(submitters_order)

        return Submission.from_template(
            template,
            account_id=ctx.account_id,
            created_by_user_id=ctx.user_id,
            source=source,
            created_at=created_at,
            expire_at=expire_at,
            **kwargs
        )

    @staticmethod
    def _match_role(template: TemplateDefinition, data: Dict[str, Any], index: int) -> SignerRoleDefinition:
        """Find the role for a signer input by uuid, then name, then position."""
        if data.get('uuid'):
            role = template.get_role(data['uuid'])
            if role is None:
                raise ValidationError(
                    f"Role uuid '{data['uuid']}' not found in template",
                    template_slug=template.slug,
                    field='uuid'
                )
            return role

        if data.get('role'):
            wanted = str(data['role']).strip().lower()
            role = next((r for r in template.submitters if r.name.strip().lower() == wanted), None)
            if role is None:
                raise ValidationError(
                    f"Role '{data['role']}' not found in template",
                    template_slug=template.slug,
                    field='role'
                )
            return role

        if index >= len(template.submitters):
            raise ValidationError(
                f"Signer #{index + 1} has no matching role; template defines {len(template.submitters)}",
                template_slug=template.slug
            )
        return template.submitters[index]

    def _build_submitter(self, submission: Submission, role: SignerRoleDefinition, data: Dict[str, Any]) -> Submitter:
        preferences = dict(data.get('preferences') or {})
        if data.get('default_values'):
            preferences['default_values'] = dict(data['default_values'])
        if 'send_email' in data:
            preferences['send_email'] = bool(data['send_email'])

        submitter = Submitter(
            uuid=role.uuid,
            email=self.normalizer.normalize(data.get('email') or role.email) or None,
            name=data.get('name'),
            phone=data.get('phone'),
            preferences=preferences
        )
        submitter.values = self._normalize_values(submission, submitter, data.get('values') or {})
        return submitter

    def _assign_predefined(self, submission: Submission) -> None:
        """Add submitters for roles with a fixed email that were not supplied."""
        bound = {s.uuid for s in submission.submitters}
        for role in submission.template_submitters:
            if role.is_predefined and role.uuid not in bound:
                submission.add_submitter(Submitter(
                    uuid=role.uuid,
                    email=self.normalizer.normalize(role.email) or None,
                    name=role.name
                ))
                logger.debug(f"Assigned predefined signer for role '{role.name}'")

    def _normalize_values(
        self,
        submission: Submission,
        submitter: Submitter,
        values: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Map value keys (field uuid or field name) to the signer's own field uuids."""
        fields_index = submission.fields_index
        own_fields = [f for f in submission.template_fields if f.submitter_uuid == submitter.uuid]
        by_name = {f.name.strip().lower(): f for f in own_fields if f.name}

        normalized = {}
        for key, value in values.items():
            field_def = fields_index.get(key) or by_name.get(str(key).strip().lower())

            if field_def is None:
                raise ValidationError(
                    f"Unknown field '{key}'",
                    template_slug=submission.template_slug,
                    field=str(key)
                )
            if field_def.submitter_uuid != submitter.uuid:
                raise ValidationError(
                    f"Field '{key}' belongs to another signer",
                    template_slug=submission.template_slug,
                    field=field_def.uuid
                )

            normalized[field_def.uuid] = value

        return normalized

    def _missing_required(self, submission: Submission, submitter: Submitter) -> List[FieldDefinition]:
        """Visible required fields of the signer that have no value yet."""
        values = submission.collected_values()
        fields_index = submission.fields_index
        missing = []

        for field_def in ConditionEvaluator.filtered_fields(submission, submitter):
            if field_def.conditions:
                # Deferred same-signer conditions can be decided now
                is_visible, _ = ConditionEvaluator.visible(field_def, values, fields_index)
                if not is_visible:
                    continue
            if field_def.required and is_blank(submitter.values.get(field_def.uuid)):
                missing.append(field_def)

        return missing

    def _fill_all_defaults(self, ctx: RequestContext, submission: Submission) -> None:
        current_user = self._current_user(ctx)
        for submitter in submission.submitters:
            user = self._user_for(ctx, submitter, current_user)
            self.resolver.fill_defaults(submission, submitter, user)

    def _current_user(self, ctx: RequestContext) -> Optional[User]:
        if ctx.user_id is None:
            return None
        return self.identity.get_user(ctx.account_id, ctx.user_id)

    def _user_for(self, ctx: RequestContext, submitter: Submitter, current_user: Optional[User]) -> Optional[User]:
        """The authenticated user matching the submitter's email, if any."""
        if not submitter.email:
            return None
        if current_user is not None and (current_user.email or '').lower() == submitter.email.lower():
            return current_user
        return self.identity.find_by_email(ctx.account_id, submitter.email)

    @staticmethod
    def _ensure_member(submission: Submission, submitter: Submitter) -> None:
        if submission.get_submitter(submitter.id) is not submitter:
            raise ValidationError(
                f"Submitter {submitter.id} does not belong to submission {submission.id}",
                template_slug=submission.template_slug
            )

    @staticmethod
    def _ensure_active(submission: Submission) -> None:
        if submission.is_archived or submission.is_expired():
            raise ValidationError(
                f"Submission {submission.id} is archived or expired",
                template_slug=submission.template_slug
            )

    @staticmethod
    def _creation_effects(submission: Submission) -> List[Effect]:
        effects = [WorkflowOrchestrator._webhook(submission, 'submission.created')]
        if submission.expire_at is not None:
            effects.append(Effect(
                kind=EffectKind.SCHEDULE_EXPIRATION,
                submission_id=submission.id,
                run_at=submission.expire_at
            ))
        return effects

    @staticmethod
    def _webhook(submission: Submission, event: str, submitter: Submitter = None) -> Effect:
        return Effect(
            kind=EffectKind.WEBHOOK,
            submission_id=submission.id,
            submitter_ids=(submitter.id,) if submitter else (),
            event=event
        )
