"""OIDC discovery and JWKS endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from ssokit.core.services import AuthServices, get_services
from ssokit.crypto.types import JWKSResponse
from ssokit.oidc.discovery import DiscoveryDocument, build_discovery

router = APIRouter()

Services = Annotated[AuthServices, Depends(get_services)]


@router.get("/.well-known/openid-configuration")
async def openid_configuration(services: Services) -> DiscoveryDocument:
    """OpenID Connect Discovery 1.0."""
    return build_discovery(services.settings)


@router.get("/.well-known/jwks.json")
async def jwks(response: Response, services: Services) -> JWKSResponse:
    """JSON Web Key Set endpoint."""
    document = await services.publisher.publish()
    response.headers["Cache-Control"] = (
        f"public, max-age={services.settings.jwks_max_age}"
    )
    return document
