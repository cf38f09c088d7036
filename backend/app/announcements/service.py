import logging
from typing import List, Optional

from sqlalchemy import select, or_, and_, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.announcements.models import Announcement, PRIORITIES, TARGET_ROLES
from app.announcements.schemas import AnnouncementRead
from app.auth.models import User
from app.core.errors import NotFoundError, StorageError, ValidationError
from app.realtime.gateway import SessionGateway
from app.realtime.protocol import NEW_ANNOUNCEMENT

logger = logging.getLogger(__name__)


class AnnouncementService:
    def __init__(self, db: Session, gateway: SessionGateway):
        self.db = db
        self.gateway = gateway

    @staticmethod
    def _validate(title, content, target_role, priority) -> None:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Title cannot be empty")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Content cannot be empty")
        if target_role not in TARGET_ROLES:
            raise ValidationError(f"target_role must be one of: {', '.join(TARGET_ROLES)}")
        if priority not in PRIORITIES:
            raise ValidationError(f"priority must be one of: {', '.join(PRIORITIES)}")

    def _commit(self, announcement: Optional[Announcement] = None) -> None:
        try:
            self.db.commit()
            if announcement is not None:
                self.db.refresh(announcement)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Announcement write failed: {e}")
            raise StorageError("Announcement could not be saved") from e

    def _persist(self, announcement: Announcement) -> AnnouncementRead:
        self.db.add(announcement)
        self._commit(announcement)
        return AnnouncementRead.model_validate(announcement)

    async def create_announcement(
        self,
        creator: User,
        title: str,
        content: str,
        target_role: Optional[str] = None,
        grade: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> AnnouncementRead:
        """
        Store an announcement and push it to every live session.

        The live push deliberately ignores target_role and grade; only the
        listing applies them.
        """
        target_role = target_role or "all"
        priority = priority or "normal"
        self._validate(title, content, target_role, priority)

        announcement = Announcement(
            title=title.strip(),
            content=content.strip(),
            created_by=creator.id,
            target_role=target_role,
            grade=grade,
            priority=priority,
        )
        created = await run_in_threadpool(self._persist, announcement)
        logger.info(f"Announcement {created.id} created by {creator.id} for {target_role}")

        try:
            fanout = await self.gateway.broadcast_all(NEW_ANNOUNCEMENT, created)
            logger.debug(f"Announcement {created.id} reached {fanout.delivered} live sessions")
        except Exception as e:
            logger.error(f"Broadcast of announcement {created.id} failed: {e}")
        return created

    def list_announcements(self, requester: User, grade: Optional[str] = None) -> List[AnnouncementRead]:
        conditions = []
        if requester.role != "admin":
            conditions.append(
                or_(Announcement.target_role == "all", Announcement.target_role == requester.role)
            )
        if grade:
            conditions.append(or_(Announcement.grade == grade, Announcement.grade.is_(None)))

        stmt = select(Announcement).order_by(desc(Announcement.created_at), desc(Announcement.id))
        if conditions:
            stmt = stmt.where(and_(*conditions))

        try:
            rows = self.db.scalars(stmt).all()
        except SQLAlchemyError as e:
            raise StorageError("Announcements could not be loaded") from e
        return [AnnouncementRead.model_validate(a) for a in rows]

    def _get(self, announcement_id: int) -> Announcement:
        announcement = self.db.get(Announcement, announcement_id)
        if announcement is None:
            raise NotFoundError("Announcement not found")
        return announcement

    def get_announcement(self, announcement_id: int) -> AnnouncementRead:
        return AnnouncementRead.model_validate(self._get(announcement_id))

    def update_announcement(self, announcement_id: int, changes: dict) -> AnnouncementRead:
        announcement = self._get(announcement_id)
        for field, val in changes.items():
            setattr(announcement, field, val)
        self._validate(
            announcement.title, announcement.content,
            announcement.target_role, announcement.priority,
        )
        self._commit(announcement)
        return AnnouncementRead.model_validate(announcement)

    def delete_announcement(self, announcement_id: int) -> None:
        announcement = self._get(announcement_id)
        self.db.delete(announcement)
        self._commit()
        logger.info(f"Announcement {announcement_id} deleted")
