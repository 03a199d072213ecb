"""
Member token service.

Members authenticate with an HS256 JWT carrying their member and
federation ids. Token issuance belongs to the identity system; this service
is what the engine uses to mint tokens for it and to validate them.
"""
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, Optional

import jwt
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError

from apps.federations.models import Member

logger = logging.getLogger(__name__)


class MemberTokenService:
    """
    Service for member bearer tokens: generation, validation, member lookup.
    """

    @classmethod
    def generate_token(cls, member: Member) -> str:
        now = datetime.now(dt_timezone.utc)
        payload = {
            'member_id': str(member.id),
            'federation_id': str(member.federation_id),
            'role': member.role,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }
        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_token(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Decode a token and return its payload, or None if it is invalid or expired.
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired member token")
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_member_from_token(cls, token: str) -> Optional[Member]:
        """
        Resolve the active member a token belongs to.

        The role claim is informational only; the stored role is authoritative.
        """
        payload = cls.validate_token(token)
        if not payload:
            return None

        member_id = payload.get('member_id')
        federation_id = payload.get('federation_id')
        if not member_id or not federation_id:
            return None

        try:
            return Member.objects.get_active(member_id, federation_id=federation_id)
        except (ValueError, DjangoValidationError):
            return None
