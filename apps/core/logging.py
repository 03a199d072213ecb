"""
Structured logging helpers: JSON formatter, secret masking and security events.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class SecretMasker:
    """
    Mask bearer tokens and secrets before they reach log sinks.
    """

    BEARER_PATTERN = re.compile(r'(Bearer\s+)[A-Za-z0-9\-_\.]+', re.IGNORECASE)
    KEY_VALUE_PATTERN = re.compile(
        r'(token|secret|password|authorization|nsec)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )

    SENSITIVE_FIELDS = {
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key', 'password', 'nsec',
    }

    @classmethod
    def mask_text(cls, text):
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub(r'\1********', text)
        return cls.KEY_VALUE_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive values in a dictionary."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if str(key).lower() in cls.SENSITIVE_FIELDS and value and not isinstance(value, (dict, list)):
                masked[key] = '********'
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


class MaskingFilter(logging.Filter):
    """
    Logging filter that masks secrets in the message and its string args.

    Always lets the record through.
    """

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = SecretMasker.mask_text(record.msg)

        if isinstance(record.args, tuple) and record.args:
            record.args = tuple(SecretMasker.mask_text(arg) for arg in record.args)

        return True


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Promotes ``request_id``, ``federation_id`` and ``member_id`` from the
    record's extras and masks secrets everywhere else.
    """

    RESERVED = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName',
    }
    PROMOTED = ('request_id', 'federation_id', 'member_id', 'task_id', 'task_name')

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': SecretMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in self.PROMOTED:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = str(value)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': SecretMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    SecretMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        for key, value in record.__dict__.items():
            if key in self.RESERVED or key in self.PROMOTED or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = SecretMasker.mask_dict(value)
            elif isinstance(value, str):
                value = SecretMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = SecretMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for security-relevant policy events.

    Everything goes to the ``security`` logger. Events in ``CRITICAL_EVENTS``
    are additionally reported to Sentry.
    """

    CRITICAL_EVENTS = {
        'privilege_escalation_attempt',
        'four_eyes_violation',
        'cross_federation_access',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'privilege_escalation_attempt',
            ...     actor_id='...',
            ...     federation_id='...',
            ...     operation='set_role_permissions'
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = SecretMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_privilege_escalation(actor, operation: str, target_role: str = None, target_member_id=None):
        """Log an attempt to act on a peer or superior role."""
        SecurityLogger.log_event(
            'privilege_escalation_attempt',
            level='error',
            actor_id=str(actor.id),
            actor_role=actor.role,
            federation_id=str(actor.federation_id),
            operation=operation,
            target_role=target_role,
            target_member_id=str(target_member_id) if target_member_id else None,
        )

    @staticmethod
    def log_four_eyes_violation(member_id, request_id, federation_id):
        """Log a requester attempting to decide their own approval request."""
        SecurityLogger.log_event(
            'four_eyes_violation',
            level='error',
            member_id=str(member_id),
            approval_request_id=str(request_id),
            federation_id=str(federation_id),
        )

    @staticmethod
    def log_cross_federation_access(member, requested_federation_id, path: str = None):
        SecurityLogger.log_event(
            'cross_federation_access',
            level='error',
            member_id=str(member.id),
            federation_id=str(member.federation_id),
            requested_federation_id=str(requested_federation_id),
            path=path,
        )

    @staticmethod
    def log_invalid_token(reason: str, ip_address: str = None, path: str = None):
        SecurityLogger.log_event(
            'invalid_token',
            level='warning',
            reason=reason,
            ip_address=ip_address,
            path=path,
        )
