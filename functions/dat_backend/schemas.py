"""
Pydantic schemas for the slug and alumni API.

Wire names are camelCase to match the site's frontend; Python attributes stay
snake_case.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ForwardSlugResponse(BaseModel):
    input: str
    target: Optional[str] = None


class ForwardSlugWriteRequest(CamelModel):
    from_slug: str = Field(default="", alias="fromSlug")
    to_slug: str = Field(default="", alias="toSlug")


class ForwardSlugWriteResponse(CamelModel):
    ok: bool = True
    updated: bool
    from_slug: str = Field(alias="fromSlug")
    to_slug: str = Field(alias="toSlug")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    note: Optional[str] = None


class AutoCanonRequest(BaseModel):
    old: Optional[str] = None
    next: Optional[str] = None


class AutoCanonResponse(BaseModel):
    ok: bool = True
    old: str
    next: str
    updated: bool


class AliasDiagResponse(CamelModel):
    ok: bool = True
    slug: str
    alias_count: int = Field(alias="aliasCount")
    aliases: list[str]


class SlugHealthResponse(CamelModel):
    input: str
    forward_target: Optional[str] = Field(default=None, alias="forwardTarget")
    canonical_slug: str = Field(alias="canonicalSlug")
    exists_in_alumni: bool = Field(alias="existsInAlumni")
    visible_in_alumni: bool = Field(alias="visibleInAlumni")
    sample: Optional[dict] = None
    suggestions: list[str] = Field(default_factory=list)


class InvalidateResponse(BaseModel):
    ok: bool = True
    via: str


class FlushAliasesResponse(BaseModel):
    ok: bool = True
    deep: bool
    removed: list[str] = Field(default_factory=list)


class CsvProbe(BaseModel):
    ok: bool
    len: int = 0
    head: str = ""
    error: Optional[str] = None


class SlugForwardDebugResponse(CamelModel):
    input: str
    env_url: str = Field(alias="envUrl")
    csv_probe: CsvProbe = Field(alias="csvProbe")
    map_size: int = Field(alias="mapSize")
    direct: Optional[str] = None
    target: Optional[str] = None


class CommunityFeedItemResponse(CamelModel):
    ts: str
    alumni_id: str = Field(alias="alumniId")
    name: str
    slug: str
    label: str
    text: str
    kind: str
    field: str


class CommunityFeedResponse(BaseModel):
    ok: bool = True
    items: list[CommunityFeedItemResponse]
    days: int
    limit: int


class UndoRequest(CamelModel):
    ts: str = Field(..., min_length=1)
    alumni_id: str = Field(..., min_length=1, alias="alumniId")
    field: str = Field(..., min_length=1)


class UndoResponse(BaseModel):
    ok: bool = True
    undone: bool = True


class HealthResponse(BaseModel):
    ok: bool = True
