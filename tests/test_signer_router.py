"""
Signer Router and Lifecycle Tests

Run with: python -m pytest tests/test_signer_router.py -v
"""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from signflow import (
    InvalidTransitionError,
    SignerRouter,
    Submission,
    Submitter,
    SubmitterLifecycle,
    SubmittersOrder,
    TemplateDefinition,
    ValidationError,
)
from signflow.types import utc_now


def make_submission(roles, order='random'):
    template = TemplateDefinition.from_dict({
        'slug': 'routing',
        'submitters_order': order,
        'submitters': roles,
        'fields': [{'uuid': f"f-{r['uuid']}", 'submitter_uuid': r['uuid']} for r in roles],
    })
    submission = Submission.from_template(template)
    for role in roles:
        submission.add_submitter(Submitter(uuid=role['uuid'], email=f"{role['uuid'].lower()}@test.com"))
    return submission


def wave_roles(submission):
    return [s.uuid for s in SignerRouter.next_wave(submission)]


def complete(submission, role_uuid):
    submitter = next(s for s in submission.submitters if s.uuid == role_uuid)
    SubmitterLifecycle.mark_sent(submitter)
    SubmitterLifecycle.complete(submitter)


class TestExplicitOrder:
    """Test routing when roles declare an order."""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.submission = make_submission([
            {'uuid': 'A', 'name': 'First', 'order': 1},
            {'uuid': 'B', 'name': 'Second', 'order': 1},
            {'uuid': 'C', 'name': 'Third', 'order': 2},
        ])

    def test_ties_fire_together(self):
        assert wave_roles(self.submission) == ['A', 'B']

    def test_next_order_after_ties_complete(self):
        complete(self.submission, 'A')
        assert wave_roles(self.submission) == ['B']

        complete(self.submission, 'B')
        assert wave_roles(self.submission) == ['C']

    def test_idempotent(self):
        assert wave_roles(self.submission) == wave_roles(self.submission)

    def test_all_complete_gives_empty_wave(self):
        for role_uuid in ('A', 'B', 'C'):
            complete(self.submission, role_uuid)
        assert wave_roles(self.submission) == []

    def test_unordered_roles_go_after_ordered_ones(self):
        submission = make_submission([
            {'uuid': 'A', 'name': 'First', 'order': 5},
            {'uuid': 'B', 'name': 'Second'},
        ])
        assert wave_roles(submission) == ['A']

        complete(submission, 'A')
        assert wave_roles(submission) == ['B']

    def test_unordered_roles_share_the_last_wave(self):
        submission = make_submission([
            {'uuid': 'A', 'name': 'First'},
            {'uuid': 'B', 'name': 'Second', 'order': 1},
            {'uuid': 'C', 'name': 'Third'},
        ])
        assert wave_roles(submission) == ['B']

        complete(submission, 'B')
        assert wave_roles(submission) == ['A', 'C']

    def test_order_wins_over_preserved_policy(self):
        submission = make_submission([
            {'uuid': 'A', 'name': 'First', 'order': 2},
            {'uuid': 'B', 'name': 'Second', 'order': 1},
        ], order='preserved')
        assert wave_roles(submission) == ['B']


class TestPolicies:
    """Test routing without explicit order."""

    def test_preserved_first_role_only(self):
        submission = make_submission([
            {'uuid': 'A', 'name': 'First'},
            {'uuid': 'B', 'name': 'Second'},
            {'uuid': 'C', 'name': 'Third'},
        ], order='preserved')

        assert submission.submitters_order == SubmittersOrder.PRESERVED
        assert wave_roles(submission) == ['A']

        # Later roles completing out of turn do not change the head
        complete(submission, 'C')
        assert wave_roles(submission) == ['A']

        complete(submission, 'A')
        assert wave_roles(submission) == ['B']

    def test_random_everyone_pending(self):
        submission = make_submission([
            {'uuid': 'A', 'name': 'First'},
            {'uuid': 'B', 'name': 'Second'},
        ])
        assert wave_roles(submission) == ['A', 'B']

        complete(submission, 'A')
        assert wave_roles(submission) == ['B']


class TestInactiveSubmissions:
    """Test that archived, expired and declined submissions stop routing."""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.submission = make_submission([
            {'uuid': 'A', 'name': 'First'},
            {'uuid': 'B', 'name': 'Second'},
        ])

    def test_archived(self):
        self.submission.archived_at = utc_now()
        assert wave_roles(self.submission) == []

    def test_expired(self):
        self.submission.expire_at = utc_now() - timedelta(minutes=1)
        assert wave_roles(self.submission) == []

    def test_not_yet_expired(self):
        self.submission.expire_at = utc_now() + timedelta(days=1)
        assert wave_roles(self.submission) == ['A', 'B']

    def test_naive_expiry_compared_as_utc(self):
        self.submission.expire_at = utc_now().replace(tzinfo=None) + timedelta(days=1)
        assert wave_roles(self.submission) == ['A', 'B']

        self.submission.expire_at = utc_now().replace(tzinfo=None) - timedelta(minutes=1)
        assert wave_roles(self.submission) == []

    def test_declined(self):
        submitter = self.submission.submitters[0]
        SubmitterLifecycle.mark_sent(submitter)
        SubmitterLifecycle.decline(submitter, 'Wrong document')
        assert wave_roles(self.submission) == []


class TestLifecycle:
    """Test submitter state transitions."""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.submitter = Submitter(uuid='A')

    def test_happy_path(self):
        SubmitterLifecycle.mark_sent(self.submitter)
        SubmitterLifecycle.mark_opened(self.submitter)
        SubmitterLifecycle.complete(self.submitter)

        assert self.submitter.status == 'completed'
        assert self.submitter.sent_at <= self.submitter.opened_at <= self.submitter.completed_at

    def test_timestamps_set_once(self):
        SubmitterLifecycle.mark_sent(self.submitter)
        first_sent = self.submitter.sent_at

        SubmitterLifecycle.mark_sent(self.submitter, at=utc_now() + timedelta(hours=1))

        assert self.submitter.sent_at == first_sent

    def test_open_before_sent(self):
        with pytest.raises(InvalidTransitionError):
            SubmitterLifecycle.mark_opened(self.submitter)

    def test_complete_and_decline_are_exclusive(self):
        SubmitterLifecycle.mark_sent(self.submitter)
        SubmitterLifecycle.complete(self.submitter)

        with pytest.raises(InvalidTransitionError):
            SubmitterLifecycle.decline(self.submitter)
        assert self.submitter.declined_at is None

    def test_cannot_complete_after_decline(self):
        SubmitterLifecycle.mark_sent(self.submitter)
        SubmitterLifecycle.decline(self.submitter, 'No')

        with pytest.raises(ValidationError):
            SubmitterLifecycle.complete(self.submitter)
        assert self.submitter.completed_at is None
        assert self.submitter.decline_reason == 'No'

    def test_complete_before_sent(self):
        with pytest.raises(InvalidTransitionError):
            SubmitterLifecycle.complete(self.submitter)
        assert self.submitter.completed_at is None

    def test_decline_before_sent(self):
        with pytest.raises(InvalidTransitionError):
            SubmitterLifecycle.decline(self.submitter, 'Too early')
        assert self.submitter.declined_at is None
        assert self.submitter.decline_reason is None

    def test_complete_records_open(self):
        SubmitterLifecycle.mark_sent(self.submitter)
        SubmitterLifecycle.complete(self.submitter)

        assert self.submitter.opened_at == self.submitter.completed_at

    def test_complete_at_creation_skips_sent(self):
        SubmitterLifecycle.complete(self.submitter, require_sent=False)

        assert self.submitter.status == 'completed'
        assert self.submitter.sent_at is None


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
