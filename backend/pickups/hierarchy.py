"""
Hierarchy-Scoped Query Layer — who can see and act on which pickups.

Roles and the supervisory chain (marketer → admin → super-admin →
master-admin) are owned by the user service. The engine only consults them
through ``HierarchyResolver``; ``SqlHierarchyResolver`` reads the ``users``
mirror table the user service keeps in sync.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import User
from pickups.errors import Forbidden


class Role(str, Enum):
    MARKETER = "marketer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    MASTER_ADMIN = "master_admin"
    DEALER = "dealer"


SUPERVISOR_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN, Role.MASTER_ADMIN})


@dataclass(frozen=True)
class SupervisorChain:
    """A marketer and the supervisors directly above them."""

    marketer_id: uuid.UUID
    marketer_name: str | None = None
    location: str | None = None
    admin_id: uuid.UUID | None = None
    admin_name: str | None = None
    super_admin_id: uuid.UUID | None = None
    super_admin_name: str | None = None

    def supervisor_ids(self) -> set[uuid.UUID]:
        return {uid for uid in (self.admin_id, self.super_admin_id) if uid is not None}


class HierarchyResolver(ABC):
    """Read-only view of roles and supervision used by the pickup engine."""

    @abstractmethod
    async def get_user(self, user_id: uuid.UUID) -> User | None:
        """Return the user or None."""

    @abstractmethod
    async def resolve_visible_marketers(self, viewer_id: uuid.UUID, role: Role | str) -> set[uuid.UUID] | None:
        """Marketer ids visible to the viewer. None means unrestricted."""

    @abstractmethod
    async def supervisor_chain(self, marketer_id: uuid.UUID) -> SupervisorChain:
        """Resolve the marketer's admin and super-admin."""

    @abstractmethod
    async def master_admin_ids(self) -> list[uuid.UUID]:
        """All master-admin user ids."""

    async def require_role(self, user_id: uuid.UUID, role: Role | str) -> User:
        """Return the user if their stored role matches, else raise Forbidden."""
        user = await self.get_user(user_id)
        if user is None or user.role != Role(role).value:
            raise Forbidden("Viewer role does not match the user directory", viewer_id=user_id, role=Role(role).value)
        return user

    async def can_act_on(
        self,
        actor_id: uuid.UUID,
        marketer_id: uuid.UUID,
        *,
        allow_owner: bool,
        recorded_admin_id: uuid.UUID | None = None,
    ) -> bool:
        """
        True when the actor has authority over the marketer's pickups.

        The owning marketer counts only when allow_owner is set; the admin
        recorded on the pickup keeps authority even after a reassignment.
        """
        if allow_owner and actor_id == marketer_id:
            return True
        actor = await self.get_user(actor_id)
        if actor is None:
            return False
        if actor.role == Role.MASTER_ADMIN.value:
            return True
        if actor.role not in {Role.ADMIN.value, Role.SUPER_ADMIN.value}:
            return False
        if recorded_admin_id is not None and actor_id == recorded_admin_id:
            return True
        chain = await self.supervisor_chain(marketer_id)
        return actor_id in chain.supervisor_ids()


class SqlHierarchyResolver(HierarchyResolver):
    """Hierarchy lookups over the ``users`` mirror table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def resolve_visible_marketers(self, viewer_id: uuid.UUID, role: Role | str) -> set[uuid.UUID] | None:
        role = Role(role)
        await self.require_role(viewer_id, role)

        if role == Role.MASTER_ADMIN:
            return None
        if role == Role.MARKETER:
            return {viewer_id}
        if role == Role.ADMIN:
            result = await self.db.execute(
                select(User.user_id).where(User.role == Role.MARKETER.value, User.admin_id == viewer_id)
            )
            return {row.user_id for row in result.all()}
        if role == Role.SUPER_ADMIN:
            admins = select(User.user_id).where(User.role == Role.ADMIN.value, User.super_admin_id == viewer_id)
            result = await self.db.execute(
                select(User.user_id).where(
                    User.role == Role.MARKETER.value,
                    (User.admin_id.in_(admins)) | (User.super_admin_id == viewer_id),
                )
            )
            return {row.user_id for row in result.all()}
        return set()

    async def supervisor_chain(self, marketer_id: uuid.UUID) -> SupervisorChain:
        marketer = await self.get_user(marketer_id)
        if marketer is None:
            return SupervisorChain(marketer_id=marketer_id)

        admin = await self.get_user(marketer.admin_id) if marketer.admin_id else None
        super_admin_id = admin.super_admin_id if admin is not None and admin.super_admin_id else marketer.super_admin_id
        super_admin = await self.get_user(super_admin_id) if super_admin_id else None

        return SupervisorChain(
            marketer_id=marketer.user_id,
            marketer_name=marketer.full_name,
            location=marketer.location,
            admin_id=admin.user_id if admin else None,
            admin_name=admin.full_name if admin else None,
            super_admin_id=super_admin.user_id if super_admin else None,
            super_admin_name=super_admin.full_name if super_admin else None,
        )

    async def master_admin_ids(self) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(User.user_id).where(User.role == Role.MASTER_ADMIN.value).order_by(User.created_at)
        )
        return [row.user_id for row in result.all()]
