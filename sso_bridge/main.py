"""
SSO Bridge - Main FastAPI Application

This FastAPI application lets the platform connect an external OIDC identity
provider to an organization, map SSO groups onto organization roles, and
disconnect the provider again, with Keycloak as the identity broker.

Endpoints:
- GET /health - Health check
- POST /organizations/{organization_id}/oidc-provider - Connect a provider
- GET /organizations/{organization_id}/oidc-provider - Show the provider record
- DELETE /organizations/{organization_id}/oidc-provider - Disconnect the provider
- GET /oidc-providers/inconsistent - Records left by interrupted workflows
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.responses import JSONResponse, Response

from .config import get_settings
from .errors import (
    BrokerAuthError,
    BrokerRejected,
    BrokerUnavailable,
    DuplicateIntegration,
    InvalidRoleError,
    PartialTeardownFailure,
    WorkflowCancelled,
)
from .handlers import verify_bearer_token
from .models import CreateOIDCProviderRequest, ErrorResponse
from .services import DeprovisioningResult, OidcProviderService, ProvisioningResult

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Global service instance (initialized on first use)
oidc_service: Optional[OidcProviderService] = None

ERROR_STATUS_CODES = [
    (InvalidRoleError, status.HTTP_400_BAD_REQUEST),
    (DuplicateIntegration, status.HTTP_409_CONFLICT),
    (BrokerRejected, 422),
    (BrokerAuthError, status.HTTP_502_BAD_GATEWAY),
    (PartialTeardownFailure, status.HTTP_502_BAD_GATEWAY),
    (BrokerUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (WorkflowCancelled, status.HTTP_504_GATEWAY_TIMEOUT),
]


def get_oidc_service() -> OidcProviderService:
    """Return the global OIDC provider service, building it from settings on first use."""
    global oidc_service
    if oidc_service is None:
        oidc_service = OidcProviderService.from_settings(get_settings())
    return oidc_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Apply the configured log level and build services on startup."""
    logger.info("Starting SSO Bridge...")
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    get_oidc_service()
    logger.info(f"SSO Bridge ready (Keycloak {settings.keycloak_url}, realm {settings.keycloak_realm})")
    yield


# FastAPI app initialization
app = FastAPI(
    title="SSO Bridge",
    description="Provisions and tears down organization OIDC identity providers in Keycloak",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


def _status_for(cause: Exception) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(cause, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _failure_response(
    organization_id: str, result: ProvisioningResult | DeprovisioningResult
) -> JSONResponse:
    """Render a failed workflow result as an ErrorResponse."""
    error = result.error
    status_code = _status_for(error.cause)
    error_response = ErrorResponse(
        status=status_code,
        detail=str(error.cause),
        step=error.step,
        organization_id=organization_id,
        inconsistent=error.inconsistent,
        failed_users=getattr(result, "failed_users", []),
        mappers_created=getattr(result, "mappers_created", None),
    )
    return JSONResponse(content=error_response.model_dump(), status_code=status_code)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Health status and service availability
    """
    service_ready = oidc_service is not None

    health_response = {
        "status": "healthy" if service_ready else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {"oidc_provider": service_ready},
        "version": "1.0.0"
    }

    if not service_ready:
        logger.warning("Health check failed - OIDC provider service not initialized")

    return JSONResponse(content=health_response, status_code=200 if service_ready else 503)


@app.post(
    "/organizations/{organization_id}/oidc-provider",
    dependencies=[Depends(verify_bearer_token)],
)
def create_oidc_provider(
    organization_id: str,
    provider_request: CreateOIDCProviderRequest,
    service: OidcProviderService = Depends(get_oidc_service),
):
    """
    Connect an OIDC identity provider to the organization.

    Creates the provider in Keycloak, stores the provider record, then adds
    one group mapper per role mapping.
    """
    result = service.create_oidc_provider(
        organization_id=organization_id,
        organization_slug=provider_request.organization_slug,
        provider_input=provider_request,
    )
    if not result.ok:
        return _failure_response(organization_id, result)

    record = service.get_oidc_provider(organization_id)
    return JSONResponse(
        content={
            "provider": record.model_dump(mode="json") if record else None,
            "mappers_created": result.mappers_created,
            "mappers_existing": result.mappers_existing,
        },
        status_code=status.HTTP_201_CREATED,
    )


@app.get(
    "/organizations/{organization_id}/oidc-provider",
    dependencies=[Depends(verify_bearer_token)],
)
def get_oidc_provider(
    organization_id: str,
    service: OidcProviderService = Depends(get_oidc_service),
):
    """Return the organization's provider record."""
    record = service.get_oidc_provider(organization_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Organization {organization_id} has no OIDC provider",
        )
    return JSONResponse(content=record.model_dump(mode="json"))


@app.delete(
    "/organizations/{organization_id}/oidc-provider",
    dependencies=[Depends(verify_bearer_token)],
)
def delete_oidc_provider(
    organization_id: str,
    organization_slug: str = Query(..., min_length=1),
    org_creator_user_id: str = Query(..., min_length=1),
    service: OidcProviderService = Depends(get_oidc_service),
):
    """
    Disconnect the organization's OIDC identity provider.

    Removes every SSO user (except the org creator) from the organization's
    admin and member groups, logs them out, then deletes the provider and
    its record.
    """
    result = service.delete_oidc_provider(
        organization_id=organization_id,
        organization_slug=organization_slug,
        org_creator_user_id=org_creator_user_id,
    )
    if not result.ok:
        return _failure_response(organization_id, result)

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/oidc-providers/inconsistent", dependencies=[Depends(verify_bearer_token)])
def list_inconsistent_providers(service: OidcProviderService = Depends(get_oidc_service)):
    """List provider records whose last workflow stopped part way."""
    records = service.list_inconsistent_providers()
    return JSONResponse(content=[record.model_dump(mode="json") for record in records])


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Convert FastAPI HTTPExceptions to the SSO Bridge error format."""
    error_response = ErrorResponse(status=exc.status_code, detail=str(exc.detail))

    return JSONResponse(
        content=error_response.model_dump(),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Convert unhandled exceptions to the SSO Bridge error format."""
    logger.error(f"Unhandled exception: {exc}")

    error_response = ErrorResponse(status=500, detail="Internal server error")

    return JSONResponse(
        content=error_response.model_dump(),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
