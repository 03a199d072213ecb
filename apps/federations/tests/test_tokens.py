"""
Tests for member token generation and validation.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
import pytest
from django.conf import settings

from apps.federations.services import MemberTokenService


@pytest.mark.django_db
class TestMemberTokenService:
    """Test MemberTokenService."""

    def test_round_trip_resolves_member(self, adult):
        token = MemberTokenService.generate_token(adult)
        assert MemberTokenService.get_member_from_token(token) == adult

    def test_payload_carries_member_and_federation(self, adult):
        payload = MemberTokenService.validate_token(MemberTokenService.generate_token(adult))
        assert payload['member_id'] == str(adult.id)
        assert payload['federation_id'] == str(adult.federation_id)

    def test_expired_token_is_rejected(self, adult):
        past = datetime.now(dt_timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {
                'member_id': str(adult.id),
                'federation_id': str(adult.federation_id),
                'exp': past,
                'iat': past - timedelta(hours=1),
            },
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )
        assert MemberTokenService.validate_token(token) is None
        assert MemberTokenService.get_member_from_token(token) is None

    def test_wrong_signature_is_rejected(self, adult):
        token = jwt.encode(
            {'member_id': str(adult.id), 'federation_id': str(adult.federation_id)},
            'another-signing-key-that-is-long-enough-0000',
            algorithm='HS256'
        )
        assert MemberTokenService.get_member_from_token(token) is None

    def test_inactive_member_is_rejected(self, adult):
        token = MemberTokenService.generate_token(adult)
        adult.is_active = False
        adult.save(update_fields=['is_active'])
        assert MemberTokenService.get_member_from_token(token) is None

    def test_federation_mismatch_is_rejected(self, adult, other_federation):
        token = jwt.encode(
            {'member_id': str(adult.id), 'federation_id': str(other_federation.id)},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )
        assert MemberTokenService.get_member_from_token(token) is None

    def test_malformed_member_id_is_rejected(self, adult):
        token = jwt.encode(
            {'member_id': 'not-a-uuid', 'federation_id': str(adult.federation_id)},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )
        assert MemberTokenService.get_member_from_token(token) is None
