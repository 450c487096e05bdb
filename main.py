from fastapi import FastAPI, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID
import logging
import re
import urllib.parse

logger = logging.getLogger(__name__)

# Local imports
from config import Settings, get_settings
from database import get_db, get_session_factory, engine
from dtos.chat_request import ChatRequest
from errors import NotAuthenticatedError, relay_failure_response
from logging_config import setup_logging
from models import Base, User
from schemas import (
    ConversationCreate, ConversationUpdate, ConversationResponse,
    MessageResponse, FeedbackCreate, FeedbackResponse,
    UserCreate, UserUpdate, UserResponse, Token,
)
from services import AssistantClient, AuthService, ChatAccessService, ConversationService
from services.relay import MessageRelay
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy import text


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    # Create tables if they don't exist
    Base.metadata.create_all(bind=engine)

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; chat completions will fail")

    app.state.assistant_client = AssistantClient(settings)
    try:
        yield
    finally:
        await app.state.assistant_client.aclose()


app = FastAPI(
    title="SkyGuide Chat API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
origins = get_settings().origins or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600
)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "skyguide-chat"}


@app.get("/health/detailed")
async def detailed_health_check(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """Database reachability and provider configuration."""
    health_status = {
        "status": "healthy",
        "service": "skyguide-chat",
        "checks": {}
    }

    # Check database connection
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {"status": "healthy", "type": engine.dialect.name}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    # Provider configuration
    health_status["checks"]["openai"] = {
        "status": "configured" if settings.openai_api_key else "not_configured",
        "assistant": "configured" if settings.openai_assistant_id else "not_configured",
    }
    if not settings.openai_api_key and health_status["status"] == "healthy":
        health_status["status"] = "degraded"

    return health_status


# OAuth2 configuration
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
chat_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Active user behind the bearer token."""
    user = AuthService.user_from_token(db, token, "access")
    if user is None:
        raise _unauthorized("Could not validate credentials")
    return user


async def get_chat_user(token: Optional[str] = Depends(chat_oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Like ``get_current_user``, but fails with the chat error body the web client reads."""
    user = AuthService.user_from_token(db, token, "access") if token else None
    if user is None:
        raise NotAuthenticatedError("Could not validate credentials")
    return user


@app.exception_handler(NotAuthenticatedError)
async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError) -> JSONResponse:
    status_code, body = relay_failure_response(exc)
    return JSONResponse(status_code=status_code, content=body, headers={"WWW-Authenticate": "Bearer"})


def get_assistant_client(request: Request) -> AssistantClient:
    """Provider client created in the lifespan."""
    return request.app.state.assistant_client


def get_message_relay(
    client: AssistantClient = Depends(get_assistant_client),
    settings: Settings = Depends(get_settings)
) -> MessageRelay:
    return MessageRelay(client, settings)


# Chat endpoint
@app.options("/chat-completion")
async def chat_completion_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@app.post("/chat-completion")
async def chat_completion(
    req: ChatRequest,
    current_user: User = Depends(get_chat_user),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    relay: MessageRelay = Depends(get_message_relay),
    settings: Settings = Depends(get_settings)
):
    """
    Relay one user message to the contract assistant.

    Returns ``{response, conversationId, reference, ...}``, or a
    ``text/event-stream`` when ``stream`` is set. Every failure comes back
    as ``{error, details, timestamp, response}`` where ``response`` is safe
    to show the user.
    """
    try:
        ChatAccessService.ensure_can_chat(current_user, settings.free_query_limit)

        if req.stream:
            return StreamingResponse(
                relay.stream(session_factory, req, current_user),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
            )

        result = await relay.respond(db, req, current_user)
    except Exception as e:
        logger.error(f"Error in chat-completion: {e}", exc_info=True)
        status_code, body = relay_failure_response(e)
        return JSONResponse(status_code=status_code, content=body)

    citation = result.citation
    return {
        "response": result.response,
        "conversationId": str(result.conversation_id) if result.conversation_id else None,
        "reference": result.reference,
        "citation": citation.to_dict() if citation else None,
        "messageId": str(result.message_id) if result.message_id else None,
        "blocked": result.blocked,
    }


# Conversation management endpoints
@app.post("/conversations", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation: ConversationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ConversationResponse:
    """Create an empty conversation."""
    db_conversation = ConversationService.create_conversation(db, current_user.id, conversation)
    return ConversationResponse.model_validate(db_conversation)


@app.get("/conversations", response_model=List[ConversationResponse])
async def list_conversations(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[ConversationResponse]:
    """List the user's conversations, most recent activity first."""
    conversations = ConversationService.get_user_conversations(
        db=db,
        user_id=current_user.id,
        skip=skip,
        limit=limit
    )
    return [ConversationResponse.model_validate(c) for c in conversations]


@app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ConversationResponse:
    conversation = ConversationService.get_conversation(db, conversation_id, current_user.id)

    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return ConversationResponse.model_validate(conversation)


@app.patch("/conversations/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: UUID,
    conversation_update: ConversationUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ConversationResponse:
    """Rename a conversation."""
    updated = ConversationService.update_conversation(
        db=db,
        conversation_id=conversation_id,
        user_id=current_user.id,
        conversation_update=conversation_update
    )

    if not updated:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return ConversationResponse.model_validate(updated)


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> dict:
    """Delete a conversation and its messages."""
    deleted = ConversationService.delete_conversation(
        db=db,
        conversation_id=conversation_id,
        user_id=current_user.id
    )

    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return {"message": "Conversation deleted successfully"}


@app.delete("/conversations")
async def delete_all_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> dict:
    """Clear the user's whole chat history."""
    count = ConversationService.delete_user_conversations(db, current_user.id)
    return {"message": "Conversations deleted successfully", "deleted": count}


@app.get("/conversations/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_conversation_messages(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[MessageResponse]:
    """Message history in display order."""
    conversation = ConversationService.get_conversation(db, conversation_id, current_user.id)

    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    messages = ConversationService.list_messages(db, conversation.id)
    return [MessageResponse.model_validate(m) for m in messages]


def transcript_filename(title: str, day: datetime) -> str:
    """``chat-<title>-<yyyy-mm-dd>.txt`` with the title slugged."""
    slug = re.sub(r"[^\w\-]+", "-", title.strip().lower()).strip("-") or "conversation"
    return f"chat-{slug}-{day.strftime('%Y-%m-%d')}.txt"


@app.get("/conversations/{conversation_id}/download")
async def download_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Download a conversation as a plain-text transcript."""
    conversation = ConversationService.get_conversation(db, conversation_id, current_user.id)

    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    now = datetime.now(timezone.utc)
    messages = ConversationService.list_messages(db, conversation.id)
    transcript = ConversationService.build_transcript(conversation, messages, now=now)
    ConversationService.mark_downloaded(db, conversation)

    # Encode filename for HTTP headers (handle Unicode characters)
    filename = transcript_filename(conversation.title, now)
    safe_filename = filename.encode('ascii', 'ignore').decode('ascii')
    if safe_filename != filename:
        encoded_filename = urllib.parse.quote(filename)
        content_disposition = f"attachment; filename=\"{safe_filename}\"; filename*=UTF-8''{encoded_filename}"
    else:
        content_disposition = f'attachment; filename="{filename}"'

    return PlainTextResponse(
        transcript,
        headers={"Content-Disposition": content_disposition}
    )


@app.post("/messages/{message_id}/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    message_id: UUID,
    feedback: FeedbackCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> FeedbackResponse:
    """Rate an assistant answer."""
    record = ConversationService.record_feedback(db, message_id, current_user.id, feedback)

    if not record:
        raise HTTPException(status_code=404, detail="Message not found")

    return FeedbackResponse.model_validate(record)


# Authentication endpoints
@app.post("/auth/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_data: UserCreate,
    db: Session = Depends(get_db)
) -> UserResponse:
    """Register a new user."""
    # Check if user exists
    if AuthService.get_user_by_email(db, user_data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    if AuthService.get_user_by_username(db, user_data.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already taken"
        )

    user = AuthService.create_user(db, user_data)
    return UserResponse.model_validate(user)


@app.post("/auth/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> Token:
    """Login with username/email and password."""
    user = AuthService.authenticate_user(db, form_data.username, form_data.password)

    if not user:
        raise _unauthorized("Incorrect username or password")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )

    return AuthService.issue_tokens(user)


@app.post("/auth/refresh", response_model=Token)
async def refresh_token(
    refresh_token: str,
    db: Session = Depends(get_db)
) -> Token:
    """Trade a refresh token for a new token pair."""
    user = AuthService.user_from_token(db, refresh_token, "refresh")
    if user is None:
        raise _unauthorized("Invalid refresh token")
    return AuthService.issue_tokens(user)


@app.get("/auth/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
) -> UserResponse:
    """Account, crew profile and subscription state."""
    return UserResponse.model_validate(current_user)


@app.patch("/auth/me", response_model=UserResponse)
async def update_current_user(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> UserResponse:
    """Update the account and crew profile."""
    if user_update.email and user_update.email.lower() != current_user.email:
        if AuthService.get_user_by_email(db, user_update.email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

    if user_update.username and user_update.username.strip().lower() != current_user.username:
        if AuthService.get_user_by_username(db, user_update.username):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username already taken"
            )

    updated_user = AuthService.update_user(db, current_user, user_update)
    return UserResponse.model_validate(updated_user)
