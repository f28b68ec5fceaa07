"""Tenant-scoped project endpoints.

Mounted twice: under ``/api`` (tenant from header, subdomain or domain)
and under ``/api/t/{tenant_slug}`` (tenant from the path).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from orgbase.api.dependencies import get_scoped_accessor
from orgbase.multitenancy.errors import NotFoundError
from orgbase.multitenancy.scoped import ScopedDataAccessor, row_to_dict

router = APIRouter(prefix="/projects", tags=["projects"])


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    archetype: str = ""
    status: str = "planning"
    spec: dict[str, Any] = Field(default_factory=dict)


class ProjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    archetype: str | None = None
    status: str | None = None
    spec: dict[str, Any] | None = None


@router.get("")
async def list_projects(
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    data: ScopedDataAccessor = Depends(get_scoped_accessor),
) -> dict:
    filters = {"status": status} if status else {}
    projects = await data.projects.list(limit=limit, offset=offset, **filters)
    return {
        "items": [row_to_dict(p) for p in projects],
        "total": await data.projects.count(**filters),
    }


@router.post("", status_code=201)
async def create_project(
    payload: ProjectCreate,
    data: ScopedDataAccessor = Depends(get_scoped_accessor),
) -> dict:
    project = await data.projects.create(**payload.model_dump())
    return row_to_dict(project)


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    data: ScopedDataAccessor = Depends(get_scoped_accessor),
) -> dict:
    project = await data.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project '{project_id}' not found")
    return row_to_dict(project)


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    payload: ProjectUpdate,
    data: ScopedDataAccessor = Depends(get_scoped_accessor),
) -> dict:
    project = await data.projects.update(project_id, **payload.model_dump(exclude_unset=True))
    return row_to_dict(project)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: str,
    data: ScopedDataAccessor = Depends(get_scoped_accessor),
) -> None:
    await data.projects.delete(project_id)
