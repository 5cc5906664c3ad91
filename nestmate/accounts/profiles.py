"""User profiles and onboarding.

A profile is created when a user signs up.  Onboarding later picks the
account type (``individual`` or ``business``) exactly once; the choice drives
the listing quota through the entitlement resolver and cannot be undone.
"""

from __future__ import annotations

import logging

from nestmate.core.clock import Clock
from nestmate.core.exceptions import DuplicateRecord, UserTypeAlreadySet
from nestmate.core.models import Gender, Profile, UserType
from nestmate.storage.repository import Repositories
from nestmate.storage.retry import retry_on_conflict

__all__ = ["ProfileService"]

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, repos: Repositories, clock: Clock, *, conflict_max_attempts: int = 3) -> None:
        self._repos = repos
        self._clock = clock
        self._conflict_max_attempts = conflict_max_attempts

    async def create_profile(
        self,
        user_id: str,
        display_name: str = "",
        gender: Gender | None = None,
        phone_number: str | None = None,
    ) -> Profile:
        """Create the profile of a new user.  Returns the stored one if it exists."""
        now = self._clock.now()
        profile = Profile(
            id=user_id,
            display_name=display_name.strip(),
            gender=gender,
            phone_number=phone_number,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._repos.profiles.insert(profile)
        except DuplicateRecord:
            return await self._repos.profiles.require(user_id)
        logger.info("Profile %s created", user_id)
        return profile

    async def get_profile(self, user_id: str) -> Profile:
        return await self._repos.profiles.require(user_id)

    async def set_user_type(self, user_id: str, user_type: UserType) -> Profile:
        """Pick the account type during onboarding.

        Raises:
            ProfileNotFound: If the user has no profile.
            UserTypeAlreadySet: If a type was already chosen, even the same one.
        """

        async def _once() -> Profile:
            profile = await self._repos.profiles.require(user_id)
            if profile.user_type is not None:
                raise UserTypeAlreadySet(user_id)
            updated = profile.model_copy(
                update={
                    "user_type": user_type,
                    "updated_at": max(self._clock.now(), profile.updated_at),
                }
            )
            return await self._repos.profiles.replace(profile, updated)

        profile = await retry_on_conflict(
            _once,
            max_attempts=self._conflict_max_attempts,
            operation="set_user_type",
        )
        logger.info("User %s onboarded as %s", user_id, user_type)
        return profile
