"""FHIR R4 resource routes: create, read and search."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.auth import verify_bearer_token
from app.dependencies import get_resource_service
from app.errors import FhirServerError, ValidationError
from app.schemas.fhir import SearchBundle
from app.services.resource_service import ResourceService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/fhir/R4",
    tags=["fhir"],
    dependencies=[Depends(verify_bearer_token)],
)


def _to_http(error: FhirServerError) -> HTTPException:
    """Map a service error onto the HTTP status it carries."""
    return HTTPException(status_code=error.status_code, detail=error.message)


def first_values(request: Request) -> dict[str, str]:
    """Flatten the query string, keeping the first value of a repeated key."""
    params: dict[str, str] = {}
    for key, value in request.query_params.multi_items():
        params.setdefault(key, value)
    return params


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Request body is not valid JSON: {e}") from None


@router.post("/{resource_type}", status_code=status.HTTP_201_CREATED)
async def create_resource(
    resource_type: str,
    request: Request,
    service: ResourceService = Depends(get_resource_service),
) -> dict[str, Any]:
    """Store a new resource.

    The body's ``resourceType`` must match the path. A missing ``id`` is
    generated. The response does not imply the resource is searchable yet.

    Raises:
        HTTPException: 400 on invalid body, 500 if the store write fails.
    """
    try:
        body = await _read_json(request)
        return await service.create(resource_type, body)
    except FhirServerError as e:
        raise _to_http(e)


@router.get("/{resource_type}/{resource_id}")
async def read_resource(
    resource_type: str,
    resource_id: str,
    service: ResourceService = Depends(get_resource_service),
) -> dict[str, Any]:
    """Return the stored document.

    Raises:
        HTTPException: 404 if no resource of this type has this id.
    """
    try:
        return await service.get(resource_type, resource_id)
    except FhirServerError as e:
        raise _to_http(e)


@router.get("/{resource_type}", response_model=SearchBundle)
async def search_resources(
    resource_type: str,
    request: Request,
    service: ResourceService = Depends(get_resource_service),
) -> SearchBundle:
    """Search indexed resources of one type.

    Every query parameter is an exact field match; all must hold.

    Raises:
        HTTPException: 500 if the search backend fails.
    """
    try:
        return await service.search(resource_type, first_values(request))
    except FhirServerError as e:
        raise _to_http(e)
