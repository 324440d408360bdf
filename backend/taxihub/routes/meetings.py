"""Meeting routes."""
from __future__ import annotations

import datetime
import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import SessionContext, require_permission, write_activity_log
from taxihub.models import Meeting
from taxihub.rbac import Action
from taxihub.routes.taxis import resolve_target_rank

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


class MeetingCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    meeting_date: datetime.datetime
    location: str = Field(min_length=1, max_length=200)
    agenda: str | None = None
    rank_id: uuid.UUID | None = None


def meeting_to_dict(meeting: Meeting) -> dict:
    return {
        "id": str(meeting.id),
        "rank_id": str(meeting.rank_id) if meeting.rank_id else None,
        "title": meeting.title,
        "meeting_date": meeting.meeting_date.isoformat(),
        "location": meeting.location,
        "agenda": meeting.agenda,
        "created_by": meeting.created_by,
        "created_at": meeting.created_at.isoformat() if meeting.created_at else None,
    }


@router.post("", status_code=201)
async def create_meeting(
    body: MeetingCreate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.MANAGE_MEETINGS)),
):
    rank_id = await resolve_target_rank(db, ctx, body.rank_id)
    meeting = Meeting(
        rank_id=rank_id,
        title=body.title.strip(),
        meeting_date=body.meeting_date,
        location=body.location.strip(),
        agenda=body.agenda,
        created_by=ctx.email,
    )
    db.add(meeting)
    await db.flush()

    await write_activity_log(
        db,
        ctx,
        "meeting_created",
        target_type="meeting",
        target_id=str(meeting.id),
        details={"title": meeting.title, "meeting_date": body.meeting_date.isoformat()},
    )
    await commit_or_fail(db, "schedule meeting")
    return meeting_to_dict(meeting)


@router.get("")
async def list_meetings(
    upcoming: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    stmt = ctx.scoped_query("meetings")
    if upcoming:
        stmt = stmt.where(Meeting.meeting_date >= datetime.datetime.now(datetime.timezone.utc))
    stmt = stmt.order_by(Meeting.meeting_date)

    meetings = (await db.execute(stmt)).scalars().all()
    items = [meeting_to_dict(m) for m in meetings]
    return {"items": items, "total": len(items)}
