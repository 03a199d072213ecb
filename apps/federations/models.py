"""
Federation tenancy models.

A federation is the policy namespace: every rule, override, window and
approval request belongs to exactly one federation. Members carry the role
that the policy engine resolves against.
"""
from django.db import models

from apps.core.models import BaseModel
from apps.policy.hierarchy import Role


class FederationManager(models.Manager):
    """Manager for Federation queries."""

    def by_slug(self, slug):
        return self.filter(slug=slug).first()

    def active(self):
        return self.filter(status=Federation.STATUS_ACTIVE)


class Federation(BaseModel):
    """
    A group of members sharing one permission namespace (e.g. a family).
    """

    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_SUSPENDED, 'Suspended'),
    ]

    name = models.CharField(max_length=200, help_text="Display name")
    slug = models.SlugField(max_length=100, unique=True, help_text="URL-safe identifier")
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
        help_text="Suspended federations deny every non-private action"
    )

    objects = FederationManager()

    class Meta:
        db_table = 'federations'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.slug})"

    def is_active(self):
        return self.status == self.STATUS_ACTIVE


class MemberManager(models.Manager):
    """Manager for Member queries."""

    def for_federation(self, federation):
        return self.filter(federation=federation)

    def active(self):
        return self.filter(is_active=True, deleted_at__isnull=True)

    def get_active(self, member_id, federation_id=None):
        """Return the active member or None."""
        queryset = self.active().select_related('federation').filter(id=member_id)
        if federation_id is not None:
            queryset = queryset.filter(federation_id=federation_id)
        return queryset.first()


class Member(BaseModel):
    """
    A principal inside a federation, identified by a durable unique id (duid).
    """

    federation = models.ForeignKey(
        Federation,
        on_delete=models.CASCADE,
        related_name='members',
        db_index=True
    )
    duid = models.CharField(
        max_length=128,
        unique=True,
        help_text="Durable unique identifier of the member"
    )
    display_name = models.CharField(max_length=200, blank=True)
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.ADULT,
        db_index=True
    )
    is_active = models.BooleanField(default=True, db_index=True)

    objects = MemberManager()

    class Meta:
        db_table = 'federation_members'
        ordering = ['federation', 'display_name']
        indexes = [
            models.Index(fields=['federation', 'role']),
        ]

    def __str__(self):
        return f"{self.display_name or self.duid} ({self.role}) @ {self.federation.slug}"

    @property
    def is_authenticated(self):
        # Member instances only reach views through a validated token.
        return True

    @property
    def is_anonymous(self):
        return False
