"""
Tests for the event type catalogue and decision messages.
"""
from apps.policy.decisions import Decision, Outcome, ReasonCode
from apps.policy.event_types import EventType, catalogue, category_of, is_known_event_type
from apps.policy.messages import COMPACT, DETAILED, describe


class TestEventTypes:

    def test_catalogue_covers_every_event_type(self):
        grouped = catalogue()
        values = [item['value'] for items in grouped.values() for item in items]

        assert sorted(grouped) == ['financial', 'governance', 'social']
        assert sorted(values) == sorted(EventType.values)
        assert len(values) == 14

    def test_categories(self):
        assert category_of('payment') == 'financial'
        assert category_of('media_post') == 'social'
        assert category_of('emergency_action') == 'governance'

    def test_unknown_event_type(self):
        assert is_known_event_type('payment')
        assert not is_known_event_type('teleport')
        assert not is_known_event_type(None)


class TestDecisions:

    def test_allow(self):
        decision = Decision.allow()
        assert decision.allowed and not decision.requires_approval
        assert decision.outcome == Outcome.ALLOWED

    def test_approval_required_is_not_allowed(self):
        decision = Decision.approval_required()
        assert not decision.allowed
        assert decision.requires_approval
        assert decision.reason_code == ReasonCode.REQUIRES_APPROVAL

    def test_resolution_error_fails_closed(self):
        decision = Decision.resolution_error(RuntimeError('db down'))
        assert not decision.allowed
        assert decision.is_error
        assert decision.reason_code == ReasonCode.UNKNOWN
        assert 'error' not in decision.as_dict()


class TestDescribe:

    def test_every_reason_has_both_styles(self):
        for reason in ReasonCode:
            decision = Decision.deny(reason)
            compact = describe(decision, COMPACT)
            detailed = describe(decision, DETAILED)
            assert compact and detailed
            assert compact != detailed

    def test_allowed_message(self):
        assert describe(Decision.allow()) == 'Allowed'
