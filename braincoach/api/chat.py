from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from braincoach.api.auth import get_current_user, limit_ai_requests
from braincoach.core.context_builder import grounding_snapshots
from braincoach.core.error_tracker import make_error_reporter
from braincoach.core.pipeline import ChatResult, submit_chat_message
from braincoach.db.models import ChatMessage, ChatThread, User
from braincoach.db.session import get_db
from braincoach.services.generators import Generators, get_generators

router = APIRouter(prefix="/chat", tags=["chat"])

THREAD_TITLE_MAX = 90


class ChatMessageRequest(BaseModel):
    # Validated by the pipeline, which reports shape errors in its result.
    question: Any = None
    check_in: Optional[dict[str, Any]] = None
    scores: Optional[dict[str, Any]] = None
    thread_id: Optional[int] = None


class ChatMessageResponse(BaseModel):
    status: str
    answer: Optional[str] = None
    error: Optional[str] = None
    thread_id: Optional[int] = None


class ThreadCreateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=180)


class ThreadItem(BaseModel):
    thread_id: int
    title: str
    message_count: int
    updated_at: str


class ThreadListResponse(BaseModel):
    items: list[ThreadItem]


class MessageItem(BaseModel):
    id: int
    role: str
    content: str
    created_at: str


class ThreadMessagesResponse(BaseModel):
    thread_id: int
    title: str
    messages: list[MessageItem]


def _thread_title(question: str) -> str:
    first_line = " ".join((question or "").strip().split())
    if not first_line:
        return "New Chat"
    if len(first_line) > THREAD_TITLE_MAX:
        return f"{first_line[:THREAD_TITLE_MAX].rstrip()}..."
    return first_line


def _owned_thread(db: Session, user_id: int, thread_id: int) -> ChatThread:
    thread = db.query(ChatThread).filter(ChatThread.id == thread_id, ChatThread.user_id == user_id).first()
    if not thread:
        raise HTTPException(status_code=404, detail="Chat thread not found")
    return thread


def get_or_create_chat_thread(db: Session, *, user_id: int, question: str, thread_id: Optional[int]) -> ChatThread:
    if thread_id is not None:
        return _owned_thread(db, user_id, thread_id)
    now = datetime.now(timezone.utc)
    thread = ChatThread(
        user_id=user_id,
        title=_thread_title(question),
        created_at=now,
        updated_at=now,
        last_message_at=now,
    )
    db.add(thread)
    db.flush()
    return thread


def persist_chat_turn(db: Session, *, user_id: int, thread: ChatThread, user_text: str, assistant_text: str) -> None:
    now = datetime.now(timezone.utc)
    db.add(ChatMessage(thread_id=thread.id, user_id=user_id, role="user", content=user_text[:8000], created_at=now))
    db.add(
        ChatMessage(
            thread_id=thread.id, user_id=user_id, role="assistant", content=assistant_text[:20000], created_at=now
        )
    )
    thread.last_message_at = now
    thread.updated_at = now
    db.commit()


@router.post("/message", response_model=ChatMessageResponse, response_model_exclude_none=True)
def send_chat_message(
    payload: ChatMessageRequest,
    user: User = Depends(limit_ai_requests),
    db: Session = Depends(get_db),
    generators: Generators = Depends(get_generators),
) -> ChatMessageResponse:
    if payload.thread_id is not None:
        _owned_thread(db, user.id, payload.thread_id)

    check_in, scores = payload.check_in, payload.scores
    # Stored snapshots are only used as a pair; a half-supplied pair fails validation.
    if check_in is None and scores is None:
        check_in, scores = grounding_snapshots(db, user.id)

    result: ChatResult = submit_chat_message(
        payload.question,
        check_in,
        scores,
        generators,
        error_reporter=make_error_reporter(db, user.id),
    )
    if result.status != "success":
        return ChatMessageResponse(status=result.status, error=result.error)

    question = str(payload.question).strip()
    thread = get_or_create_chat_thread(db, user_id=user.id, question=question, thread_id=payload.thread_id)
    persist_chat_turn(db, user_id=user.id, thread=thread, user_text=question, assistant_text=result.answer or "")
    return ChatMessageResponse(status=result.status, answer=result.answer, thread_id=thread.id)


@router.get("/threads", response_model=ThreadListResponse)
def list_threads(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> ThreadListResponse:
    rows = (
        db.query(
            ChatThread.id.label("thread_id"),
            ChatThread.title,
            ChatThread.updated_at,
            func.count(ChatMessage.id).label("message_count"),
        )
        .outerjoin(ChatMessage, ChatMessage.thread_id == ChatThread.id)
        .filter(ChatThread.user_id == user.id)
        .group_by(ChatThread.id)
        .order_by(ChatThread.last_message_at.desc(), ChatThread.id.desc())
        .all()
    )
    return ThreadListResponse(
        items=[
            ThreadItem(
                thread_id=int(row.thread_id),
                title=row.title,
                message_count=int(row.message_count or 0),
                updated_at=row.updated_at.isoformat(),
            )
            for row in rows
        ]
    )


@router.post("/threads", response_model=ThreadItem, status_code=status.HTTP_201_CREATED)
def create_thread(
    payload: ThreadCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ThreadItem:
    now = datetime.now(timezone.utc)
    thread = ChatThread(
        user_id=user.id,
        title=(payload.title or "").strip()[:180] or "New Chat",
        created_at=now,
        updated_at=now,
        last_message_at=now,
    )
    db.add(thread)
    db.commit()
    db.refresh(thread)
    return ThreadItem(thread_id=thread.id, title=thread.title, message_count=0, updated_at=thread.updated_at.isoformat())


@router.get("/threads/{thread_id}/messages", response_model=ThreadMessagesResponse)
def get_thread_messages(
    thread_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ThreadMessagesResponse:
    thread = _owned_thread(db, user.id, thread_id)
    rows = (
        db.query(ChatMessage)
        .filter(ChatMessage.thread_id == thread.id, ChatMessage.user_id == user.id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        .all()
    )
    return ThreadMessagesResponse(
        thread_id=thread.id,
        title=thread.title,
        messages=[
            MessageItem(id=row.id, role=row.role, content=row.content, created_at=row.created_at.isoformat())
            for row in rows
        ],
    )
