"""Visitor tag schemas."""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class AddTagRequest(BaseModel):
    tag_name: str = Field(..., min_length=1, max_length=100)

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class HasTagResponse(BaseModel):
    has_tag: bool = Field(..., serialization_alias="hasTag")


class TagListResponse(BaseModel):
    success: bool = True
    tags: list[str]
