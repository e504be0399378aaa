import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from braincoach.api.auth import get_current_user
from braincoach.db.models import SupportTicket, User
from braincoach.db.session import get_db

router = APIRouter(prefix="/support", tags=["support"])
logger = logging.getLogger("uvicorn.error")


class TicketCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)


class TicketItem(BaseModel):
    id: int
    subject: str
    status: str
    created_at: datetime


class TicketListResponse(BaseModel):
    items: list[TicketItem]


@router.post("/tickets", response_model=TicketItem, status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: TicketCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TicketItem:
    row = SupportTicket(
        user_id=user.id,
        name=payload.name.strip(),
        email=payload.email.lower(),
        subject=payload.subject.strip(),
        message=payload.message.strip(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("support_ticket_created user_id=%s ticket_id=%s", user.id, row.id)
    return TicketItem(id=row.id, subject=row.subject, status=row.status, created_at=row.created_at)


@router.get("/tickets", response_model=TicketListResponse)
def list_tickets(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> TicketListResponse:
    rows = (
        db.query(SupportTicket)
        .filter(SupportTicket.user_id == user.id)
        .order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
        .all()
    )
    return TicketListResponse(
        items=[TicketItem(id=row.id, subject=row.subject, status=row.status, created_at=row.created_at) for row in rows]
    )
