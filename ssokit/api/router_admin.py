"""Admin API: key rotation, client registration, and user provisioning."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ssokit.api.deps import require_admin_token
from ssokit.api.schemas import (
    ClientPayload,
    ClientResponse,
    ClientUpdatePayload,
    PurgeResponse,
    SigningKeyResponse,
    UserPayload,
    UserResponse,
)
from ssokit.core.services import AuthServices, get_services
from ssokit.crypto.password import generate_client_secret
from ssokit.db.engine import get_session, storage_guard
from ssokit.db.models_oauth import OAuthClientEntity
from ssokit.db.repo_oauth import ClientUpsertData, create_client, update_client
from ssokit.db.repo_user import UserCreateData, create_user, get_user_by_username

router = APIRouter(prefix="/admin", tags=["admin"])

DbSession = Annotated[AsyncSession, Depends(get_session)]
Services = Annotated[AuthServices, Depends(get_services)]
AdminToken = Annotated[str, Depends(require_admin_token)]


def _client_to_response(
    entity: OAuthClientEntity, secret: str | None = None
) -> ClientResponse:
    return ClientResponse(
        client_id=entity.id,
        client_name=entity.client_name,
        allowed_scopes=entity.allowed_scopes or [],
        allowed_grant_types=entity.allowed_grant_types or [],
        allowed_audiences=entity.allowed_audiences or [],
        is_active=entity.is_active,
        client_secret=secret,
    )


@router.post("/keys/rotate")
async def rotate_signing_key(
    services: Services, _token: AdminToken
) -> SigningKeyResponse:
    """POST /admin/keys/rotate -- publish and activate a new signing key."""
    view = await services.key_manager.rotate()
    return SigningKeyResponse(
        kid=view.kid,
        algorithm=view.algorithm,
        status=view.status.value,
        created_at=view.created_at,
        retired_at=view.retired_at,
    )


@router.post("/keys/purge")
async def purge_signing_keys(services: Services, _token: AdminToken) -> PurgeResponse:
    """POST /admin/keys/purge -- drop retired keys past their grace period."""
    return PurgeResponse(purged=await services.key_manager.purge_expired_retired())


@router.post("/clients", status_code=status.HTTP_201_CREATED)
async def register_client(
    payload: ClientPayload,
    db: DbSession,
    services: Services,
    _token: AdminToken,
) -> ClientResponse:
    """POST /admin/clients -- register a client; the secret is shown once."""
    secret = generate_client_secret()
    async with storage_guard(services.settings.storage_timeout):
        if await db.get(OAuthClientEntity, payload.client_id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT)
        entity = await create_client(
            db,
            ClientUpsertData(
                client_id=payload.client_id,
                client_name=payload.client_name,
                client_secret=secret,
                allowed_scopes=payload.allowed_scopes,
                allowed_grant_types=[g.value for g in payload.allowed_grant_types],
                allowed_audiences=payload.allowed_audiences,
            ),
        )
    return _client_to_response(entity, secret)


@router.put("/clients/{client_id}")
async def modify_client(
    client_id: str,
    payload: ClientUpdatePayload,
    db: DbSession,
    services: Services,
    _token: AdminToken,
) -> ClientResponse:
    """PUT /admin/clients/{client_id} -- explicit admin update of a client."""
    secret = generate_client_secret() if payload.rotate_secret else None
    grant_types = (
        [g.value for g in payload.allowed_grant_types]
        if payload.allowed_grant_types is not None
        else None
    )
    async with storage_guard(services.settings.storage_timeout):
        entity = await update_client(
            db,
            ClientUpsertData(
                client_id=client_id,
                client_name=payload.client_name,
                client_secret=secret,
                allowed_scopes=payload.allowed_scopes,
                allowed_grant_types=grant_types,
                allowed_audiences=payload.allowed_audiences,
                is_active=payload.is_active,
            ),
        )
    if entity is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return _client_to_response(entity, secret)


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def provision_user(
    payload: UserPayload,
    db: DbSession,
    services: Services,
    _token: AdminToken,
) -> UserResponse:
    """POST /admin/users -- create a password-grant user."""
    async with storage_guard(services.settings.storage_timeout):
        if await get_user_by_username(db, payload.username) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT)
        user = await create_user(
            db,
            UserCreateData(
                username=payload.username,
                password=payload.password,
                user_id=payload.id,
                scopes=payload.scopes,
            ),
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        scopes=user.scopes or [],
        is_active=user.is_active,
    )
