"""Visitor tag endpoints consulted by the tracker's condition evaluation."""

from fastapi import APIRouter, Depends, Query

from flowpulse.dependencies import get_visitor_service
from flowpulse.schemas.visitors import AddTagRequest, HasTagResponse, TagListResponse
from flowpulse.services.visitor_service import VisitorService

router = APIRouter(prefix="/visitors", tags=["visitors"])


@router.get(
    "/{site_id}/{visitor_id}/has-tag",
    response_model=HasTagResponse,
    response_model_by_alias=True,
)
def has_tag(
    site_id: str,
    visitor_id: str,
    tag: str = Query(..., min_length=1),
    service: VisitorService = Depends(get_visitor_service),
) -> HasTagResponse:
    return HasTagResponse(has_tag=service.has_tag(site_id, visitor_id, tag))


@router.get("/{site_id}/{visitor_id}/tags", response_model=TagListResponse)
def list_tags(
    site_id: str,
    visitor_id: str,
    service: VisitorService = Depends(get_visitor_service),
) -> TagListResponse:
    return TagListResponse(tags=service.get_tags(site_id, visitor_id))


@router.post("/{site_id}/{visitor_id}/tags", response_model=TagListResponse)
def add_tag(
    site_id: str,
    visitor_id: str,
    body: AddTagRequest,
    service: VisitorService = Depends(get_visitor_service),
) -> TagListResponse:
    """Add a tag; adding an existing tag is a no-op."""
    return TagListResponse(tags=service.add_tag(site_id, visitor_id, body.tag_name))


@router.delete("/{site_id}/{visitor_id}/tags/{tag_name}", response_model=TagListResponse)
def remove_tag(
    site_id: str,
    visitor_id: str,
    tag_name: str,
    service: VisitorService = Depends(get_visitor_service),
) -> TagListResponse:
    return TagListResponse(tags=service.remove_tag(site_id, visitor_id, tag_name))
