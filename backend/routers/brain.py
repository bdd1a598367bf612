# routers/brain.py — Brain: AI chat assistant, task suggestions, productivity analysis
import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import brain_client
from access_policy import Action
from auth import get_current_user, CurrentUser
from database import get_db_session
from exceptions import NotFound
from models import BrainConversation, ChatRole, utcnow
from query_engine import AccessScopedQueryEngine, get_query_engine
from schemas import iso

router = APIRouter(prefix="/api/v1/brain", tags=["Brain"])
logger = logging.getLogger("taskflow.brain")

TITLE_LENGTH = 50


# --- Schemas ---

class ChatTurn(BaseModel):
    role: str
    content: str
    timestamp: Optional[str] = None


class ConversationOut(BaseModel):
    id: int
    user_id: str
    title: str
    messages: List[ChatTurn]
    workspace_id: Optional[int] = None
    task_id: Optional[int] = None
    is_archived: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ConversationCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    workspace_id: Optional[int] = None
    task_id: Optional[int] = None


class ConversationUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    is_archived: Optional[bool] = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=10000)
    conversation_id: Optional[int] = None
    workspace_id: Optional[int] = None
    task_id: Optional[int] = None


class ChatResponse(BaseModel):
    conversation: ConversationOut
    response: str
    usage: Optional[Dict[str, int]] = None


class SuggestionRequest(BaseModel):
    task_title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    workspace_context: Optional[str] = None


class ProductivityRequest(BaseModel):
    period: str = Field(default="current", max_length=50)


# --- Helpers ---

def _conversation_to_out(c: BrainConversation) -> ConversationOut:
    return ConversationOut(
        id=c.id,
        user_id=c.user_id,
        title=c.title,
        messages=[ChatTurn(**m) for m in (c.messages or [])],
        workspace_id=c.workspace_id,
        task_id=c.task_id,
        is_archived=bool(c.is_archived),
        created_at=iso(c.created_at),
        updated_at=iso(c.updated_at),
    )


def _turn(role: ChatRole, content: str) -> Dict[str, Any]:
    return {"role": role.value, "content": content, "timestamp": utcnow().isoformat()}


def title_from_message(message: str) -> str:
    """First 50 characters, with an ellipsis when cut"""
    title = message[:TITLE_LENGTH]
    return title + "..." if len(message) > TITLE_LENGTH else title


async def _get_owned_conversation(conversation_id: int, user_id: str, db: AsyncSession) -> BrainConversation:
    """Other users' conversations are reported as missing"""
    conversation = await db.get(BrainConversation, conversation_id)
    if not conversation or conversation.user_id != user_id:
        raise NotFound("Conversation not found")
    return conversation


async def _check_context(
    engine: AccessScopedQueryEngine, user: CurrentUser,
    workspace_id: Optional[int], task_id: Optional[int],
) -> None:
    if workspace_id is not None:
        await engine.get_visible_workspace(user.id, user.role, workspace_id)
    if task_id is not None:
        await engine.get_visible_task(user.id, user.role, task_id)


# ============================================================
# CONVERSATIONS
# ============================================================

@router.get("/conversations", response_model=List[ConversationOut])
async def list_conversations(
    include_archived: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """The caller's conversations, most recently active first"""
    stmt = (
        select(BrainConversation)
        .where(BrainConversation.user_id == user.id)
        .order_by(BrainConversation.updated_at.desc(), BrainConversation.id.desc())
    )
    if not include_archived:
        stmt = stmt.where(BrainConversation.is_archived.is_(False))
    result = await db.execute(stmt)
    return [_conversation_to_out(c) for c in result.scalars().all()]


@router.post("/conversations", response_model=ConversationOut, status_code=201)
async def create_conversation(
    data: ConversationCreate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    await engine.authorize_mutation(user.id, user.role, Action.USE_BRAIN)
    await _check_context(engine, user, data.workspace_id, data.task_id)

    conversation = BrainConversation(
        user_id=user.id,
        title=data.title,
        messages=[],
        workspace_id=data.workspace_id,
        task_id=data.task_id,
    )
    db.add(conversation)
    await db.commit()
    return _conversation_to_out(conversation)


@router.get("/conversations/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _conversation_to_out(await _get_owned_conversation(conversation_id, user.id, db))


@router.patch("/conversations/{conversation_id}", response_model=ConversationOut)
async def update_conversation(
    conversation_id: int,
    data: ConversationUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Rename or archive a conversation"""
    conversation = await _get_owned_conversation(conversation_id, user.id, db)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(conversation, field, value)
    await db.commit()
    await db.refresh(conversation)
    return _conversation_to_out(conversation)


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    conversation = await _get_owned_conversation(conversation_id, user.id, db)
    await db.delete(conversation)
    await db.commit()
    return {"status": "deleted", "conversation_id": conversation_id}


# ============================================================
# CHAT
# ============================================================

@router.post("/chat", response_model=ChatResponse)
async def chat(
    data: ChatRequest,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Send a message and get the assistant's reply.

    Both turns are stored together once the model has answered; if the model
    call fails nothing is written, not even a new conversation.
    """
    await engine.authorize_mutation(user.id, user.role, Action.USE_BRAIN)

    if data.conversation_id is not None:
        conversation = await _get_owned_conversation(data.conversation_id, user.id, db)
    else:
        await _check_context(engine, user, data.workspace_id, data.task_id)
        conversation = BrainConversation(
            user_id=user.id,
            title=title_from_message(data.message),
            workspace_id=data.workspace_id,
            task_id=data.task_id,
        )

    history = list(conversation.messages or []) + [_turn(ChatRole.USER, data.message)]
    reply = await brain_client.chat_with_brain(history)

    # Reassign rather than append so the JSON column is flagged dirty
    conversation.messages = history + [_turn(ChatRole.ASSISTANT, reply.message)]
    conversation.updated_at = utcnow()
    if conversation.id is None:
        db.add(conversation)
    await db.commit()

    logger.info(f"Brain reply in conversation {conversation.id} ({reply.model_used})")
    return ChatResponse(
        conversation=_conversation_to_out(conversation),
        response=reply.message,
        usage=reply.usage,
    )


@router.post("/task-suggestions")
async def task_suggestions(
    data: SuggestionRequest,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    """Suggested subtasks for a task title; empty when the model is unavailable"""
    await engine.authorize_mutation(user.id, user.role, Action.USE_BRAIN)
    suggestions = await brain_client.generate_task_suggestions(
        data.task_title, data.description, data.workspace_context,
    )
    return {"suggestions": suggestions}


@router.post("/productivity-analysis")
async def productivity_analysis(
    data: Optional[ProductivityRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    """Model-written commentary on the team's analytics (admin)"""
    await engine.authorize_mutation(user.id, user.role, Action.VIEW_ANALYTICS)
    period = data.period if data else "current"
    summary = await engine.compute_analytics_summary()
    analysis = await brain_client.analyze_productivity(summary.productivity_snapshot(period))
    return {"analysis": analysis}
