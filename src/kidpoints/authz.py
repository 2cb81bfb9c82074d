"""Caller identity and the authorization checks shared by every workflow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .models import Activity, Profile, Role
from .store import PROFILES, Store


@dataclass(slots=True, frozen=True)
class Caller:
    """Identity supplied by the upstream authentication layer."""

    profile_id: str
    role: Role
    family_id: str

    def __post_init__(self) -> None:
        if not self.profile_id or not self.family_id:
            raise ValidationError("Caller identity requires a profile and a family.")
        try:
            object.__setattr__(self, "role", Role(self.role))
        except ValueError as exc:
            raise ValidationError(f"Unknown role {self.role!r}.") from exc

    @property
    def is_parent(self) -> bool:
        return self.role is Role.PARENT


class Authorizer:
    """Single place where role, family, self and assignee checks happen."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def require_parent(self, caller: Caller, action: str = "do this") -> None:
        if caller.role is not Role.PARENT:
            raise ForbiddenError(f"Only parents can {action}.")

    def require_child(self, caller: Caller, action: str = "do this") -> None:
        if caller.role is not Role.CHILD:
            raise ForbiddenError(f"Only children can {action}.")

    def family_profile(self, caller: Caller, profile_id: str) -> Profile:
        return self.store.get(PROFILES, profile_id, family_id=caller.family_id)

    def family_child(self, caller: Caller, profile_id: str) -> Profile:
        profile = self.family_profile(caller, profile_id)
        if profile.role is not Role.CHILD:
            raise ValidationError(f"Profile {profile_id} is not a child.")
        return profile

    def resolve_subject(self, caller: Caller, profile_id: Optional[str]) -> str:
        """Return the profile a read targets; children may only read themselves."""

        if profile_id is None or profile_id == caller.profile_id:
            return caller.profile_id
        if caller.role is not Role.PARENT:
            raise ForbiddenError("Children can only view their own records.")
        return self.family_profile(caller, profile_id).id

    def check_activity_scope(self, caller: Caller, activity: Activity) -> None:
        if activity.family_id != caller.family_id:
            raise NotFoundError(f"Activity {activity.id} not found.")
        if caller.role is Role.CHILD and activity.assigned_to not in (None, caller.profile_id):
            raise ForbiddenError("This activity is assigned to someone else.")


class ProfileDirectory:
    """Minimal family roster used to validate assignees and subjects."""

    def __init__(self, store: Store, authorizer: Authorizer) -> None:
        self.store = store
        self.authorizer = authorizer

    def register(self, profile: Profile) -> Profile:
        """Add a profile created by family onboarding."""

        return self.store.insert(PROFILES, profile)

    def get_profile(self, caller: Caller, profile_id: str) -> Profile:
        return self.authorizer.family_profile(caller, profile_id)

    def list_profiles(self, caller: Caller, *, role: Role | str | None = None) -> list[Profile]:
        filters: dict = {"family_id": caller.family_id}
        if role is not None:
            filters["role"] = Role(role)
        return self.store.find(PROFILES, filters, order_by=("name", "id"))

    def remove_profile(self, caller: Caller, profile_id: str) -> None:
        self.authorizer.require_parent(caller, "delete profiles")
        if profile_id == caller.profile_id:
            raise ForbiddenError("Parents cannot delete their own profile.")
        profile = self.authorizer.family_profile(caller, profile_id)
        self.store.delete(PROFILES, profile.id)


__all__ = ["Caller", "Authorizer", "ProfileDirectory"]
