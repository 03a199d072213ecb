"""
Role hierarchy for federation members.

guardian > steward > adult > offspring form a strict total order. ``private``
sits outside the order: a private member has sovereign authority over their
own resources and never manages anyone else.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

from django.db import models


class Role(models.TextChoices):
    PRIVATE = 'private', 'Private'
    OFFSPRING = 'offspring', 'Offspring'
    ADULT = 'adult', 'Adult'
    STEWARD = 'steward', 'Steward'
    GUARDIAN = 'guardian', 'Guardian'


ROLE_LEVELS = MappingProxyType({
    Role.OFFSPRING.value: 1,
    Role.ADULT.value: 2,
    Role.STEWARD.value: 3,
    Role.GUARDIAN.value: 4,
})

# Roles a steward may configure rules for, override, or reassign.
STEWARD_MANAGEABLE_ROLES = frozenset({
    Role.PRIVATE.value,
    Role.OFFSPRING.value,
    Role.ADULT.value,
})


@dataclass(frozen=True)
class RoleChangeValidation:
    valid: bool
    reason: Optional[str] = None


class RoleHierarchy:
    """
    Static ordering and manage-eligibility rules over the five roles.
    """

    @classmethod
    def level(cls, role) -> Optional[int]:
        """Return the role's level, or None for ``private`` and unknown roles."""
        return ROLE_LEVELS.get(str(role))

    @classmethod
    def is_at_least(cls, role, minimum) -> bool:
        role_level = cls.level(role)
        minimum_level = cls.level(minimum)
        if role_level is None or minimum_level is None:
            return False
        return role_level >= minimum_level

    @classmethod
    def min_approver_role(cls) -> str:
        """Lowest role eligible to decide an approval request."""
        return Role.STEWARD.value

    @classmethod
    def is_administrator(cls, role) -> bool:
        """Guardians and stewards may configure federation policy."""
        return cls.is_at_least(role, Role.STEWARD)

    @classmethod
    def can_manage_role(cls, actor_role, target_role) -> bool:
        """
        Whether ``actor_role`` may configure rules, overrides or windows that
        apply to ``target_role``.

        Guardians manage every role; stewards only private, offspring and adult.
        """
        actor_role = str(actor_role)
        if actor_role == Role.GUARDIAN:
            return True
        if actor_role == Role.STEWARD:
            return str(target_role) in STEWARD_MANAGEABLE_ROLES
        return False

    @classmethod
    def can_change_role(cls, actor_role, target_current_role, desired_new_role) -> RoleChangeValidation:
        """
        Decide whether an actor may move a member from one role to another.

        Nobody may manage a peer or superior, nor assign a role at or above
        their own. Guardians may otherwise set any role; stewards only
        move members between offspring and adult; adults may only keep an
        offspring as offspring; offspring may not change roles at all.
        """
        actor_role = str(actor_role)
        target_current_role = str(target_current_role)
        desired_new_role = str(desired_new_role)

        if Role.PRIVATE in (actor_role, target_current_role, desired_new_role):
            return RoleChangeValidation(False, 'Private members are outside the role hierarchy')

        actor_level = cls.level(actor_role)
        current_level = cls.level(target_current_role)
        new_level = cls.level(desired_new_role)
        if actor_level is None or current_level is None or new_level is None:
            return RoleChangeValidation(False, 'Unknown role')

        if current_level >= actor_level:
            return RoleChangeValidation(False, 'Cannot change role of user with same or higher authority')

        if new_level >= actor_level:
            return RoleChangeValidation(False, 'Cannot assign a role at or above your own authority')

        if actor_role == Role.GUARDIAN:
            return RoleChangeValidation(True)

        if actor_role == Role.STEWARD:
            if Role.GUARDIAN in (target_current_role, desired_new_role):
                return RoleChangeValidation(False, 'Stewards cannot manage guardian roles')
            manageable = {Role.OFFSPRING.value, Role.ADULT.value}
            if target_current_role in manageable and desired_new_role in manageable:
                return RoleChangeValidation(True)
            return RoleChangeValidation(False, 'Stewards can only manage offspring and adult roles')

        if actor_role == Role.ADULT:
            if target_current_role == Role.OFFSPRING and desired_new_role == Role.OFFSPRING:
                return RoleChangeValidation(True)
            return RoleChangeValidation(False, 'Adults can only manage offspring roles')

        return RoleChangeValidation(False, 'Offspring cannot change user roles')
