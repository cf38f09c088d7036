from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.announcements.schemas import AnnouncementCreate, AnnouncementRead, AnnouncementUpdate
from app.announcements.service import AnnouncementService
from app.auth.deps import get_current_user, require_roles
from app.auth.models import User
from app.core.config import settings
from app.core.database import get_session
from app.core.limiter import limiter
from app.realtime.gateway import SessionGateway, get_gateway

router = APIRouter(tags=["announcements"])


def get_announcement_service(
    db: Session = Depends(get_session),
    gateway: SessionGateway = Depends(get_gateway),
) -> AnnouncementService:
    return AnnouncementService(db, gateway)


@router.get(
    "",
    response_model=List[AnnouncementRead],
    summary="Announcements visible to the current user",
    description="Admins see everything; others see 'all' plus their own role. "
                "With grade, only that grade and grade-less announcements.",
)
def list_announcements(
    grade: Optional[str] = Query(None, max_length=40),
    service: AnnouncementService = Depends(get_announcement_service),
    current_user: User = Depends(get_current_user),
):
    return service.list_announcements(current_user, grade=grade)


@router.get("/{announcement_id}", response_model=AnnouncementRead)
def get_announcement(
    announcement_id: int = Path(..., ge=1),
    service: AnnouncementService = Depends(get_announcement_service),
    current_user: User = Depends(get_current_user),
):
    return service.get_announcement(announcement_id)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=AnnouncementRead,
    summary="Create and broadcast an announcement",
    description="Admins and teachers only. Pushed live to every connected session.",
)
@limiter.limit(settings.ANNOUNCEMENT_CREATE_RATE_LIMIT)
async def create_announcement(
    request: Request,
    payload: AnnouncementCreate = Body(...),
    service: AnnouncementService = Depends(get_announcement_service),
    current_user: User = Depends(require_roles("admin", "teacher")),
):
    return await service.create_announcement(
        current_user,
        title=payload.title,
        content=payload.content,
        target_role=payload.target_role,
        grade=payload.grade,
        priority=payload.priority,
    )


@router.put("/{announcement_id}", response_model=AnnouncementRead)
def update_announcement(
    announcement_id: int = Path(..., ge=1),
    payload: AnnouncementUpdate = Body(...),
    service: AnnouncementService = Depends(get_announcement_service),
    current_user: User = Depends(require_roles("admin", "teacher")),
):
    return service.update_announcement(announcement_id, payload.model_dump(exclude_unset=True))


@router.delete("/{announcement_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_announcement(
    announcement_id: int = Path(..., ge=1),
    service: AnnouncementService = Depends(get_announcement_service),
    current_user: User = Depends(require_roles("admin")),
):
    service.delete_announcement(announcement_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
