"""Connected account registration and OAuth authorization"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_ingest.api.v1.schemas import AuthorizeRequest, ConnectionCreate, ConnectionResponse
from qbo_ingest.api.dependencies import get_request_id, get_vault
from qbo_ingest.infrastructure.database.session import get_db
from qbo_ingest.infrastructure.database.repositories import ConnectionRepository
from qbo_ingest.infrastructure.security.token_vault import TokenVault
from qbo_ingest.domain.exceptions import AuthRefreshError, ConnectionNotFoundError, TransientNetworkError

router = APIRouter()


@router.post("/connections", response_model=ConnectionResponse, status_code=201)
async def create_connection(request_body: ConnectionCreate, db: AsyncSession = Depends(get_db)):
    """Register a QuickBooks company; tokens are added by /authorize"""
    repo = ConnectionRepository(db)
    if await repo.get_by_realm(request_body.realm_id) is not None:
        raise HTTPException(status_code=409, detail="Realm already connected")

    connection = await repo.create(
        realm_id=request_body.realm_id,
        organization_id=request_body.organization_id,
        company_name=request_body.company_name,
    )
    await db.commit()

    return ConnectionResponse(
        connection_id=str(connection.id),
        realm_id=connection.realm_id,
        organization_id=connection.organization_id,
        company_name=connection.company_name,
        is_active=connection.is_active,
        last_synced_at=connection.last_synced_at,
    )


@router.post("/connections/{connection_id}/authorize", status_code=204)
async def authorize_connection(
    connection_id: str,
    request_body: AuthorizeRequest,
    request: Request,
    vault: TokenVault = Depends(get_vault),
):
    """Exchange an OAuth authorization code and store the encrypted tokens"""
    request_id = get_request_id(request)
    try:
        await vault.authorize(connection_id, request_body.code)

    except ConnectionNotFoundError:
        raise HTTPException(status_code=404, detail="Connection not found")

    except AuthRefreshError as e:
        logging.warning(f"Authorization rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail="Authorization failed")

    except TransientNetworkError as e:
        logging.error(f"Token endpoint unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="QuickBooks authorization service unavailable")
