from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from supabase import AsyncClient, Client
from supabase_auth import UserResponse

from app.core.config import settings
from app.core.database import create_auth_client
from app.core.repository import ReceiptRepository
from app.core.storage import ReceiptStorage
from app.core.vision import VisionClient
from app.pipeline.capture import CaptureRegistry, ReceiptPipeline

security = HTTPBearer(
    scheme_name="Access Token",
)


def get_supabase(request: Request) -> Client:
    return request.app.state.supabase


def get_async_supabase(websocket: WebSocket) -> AsyncClient:
    return websocket.app.state.async_supabase


def get_auth_client() -> Client:
    return create_auth_client(settings)


SupabaseClient = Annotated[Client, Depends(get_supabase)]
AuthClient = Annotated[Client, Depends(get_auth_client)]


class CurrentUser(BaseModel):
    id: UUID
    email: str | None = None
    username: str | None = None
    email_confirmed_at: datetime | None = None
    access_token: str


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    supabase: SupabaseClient,
) -> CurrentUser:
    token = credentials.credentials

    try:
        user_response: UserResponse = supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
            )

        user = user_response.user
        return CurrentUser(
            id=UUID(user.id),
            email=user.email,
            username=(user.user_metadata or {}).get("username"),
            email_confirmed_at=user.email_confirmed_at,
            access_token=token,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


AuthenticatedUser = Annotated[CurrentUser, Depends(get_current_user)]


def get_receipt_storage(supabase: SupabaseClient) -> ReceiptStorage:
    return ReceiptStorage(supabase, settings.RECEIPTS_BUCKET)


def get_receipt_repository(supabase: SupabaseClient) -> ReceiptRepository:
    return ReceiptRepository(supabase, settings.RECEIPTS_TABLE)


def get_vision_client(request: Request) -> VisionClient:
    return request.app.state.vision


def get_capture_registry(request: Request) -> CaptureRegistry:
    return request.app.state.captures


Repository = Annotated[ReceiptRepository, Depends(get_receipt_repository)]
Captures = Annotated[CaptureRegistry, Depends(get_capture_registry)]


def get_receipt_pipeline(
    storage: Annotated[ReceiptStorage, Depends(get_receipt_storage)],
    vision: Annotated[VisionClient, Depends(get_vision_client)],
    repository: Repository,
) -> ReceiptPipeline:
    return ReceiptPipeline(storage, vision, repository)


Pipeline = Annotated[ReceiptPipeline, Depends(get_receipt_pipeline)]
