"""Audit trail API endpoints (admin only)."""

from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import Any, Dict

from pulse.api.dependencies import require_roles
from pulse.models.messages import AuditLogResponse
from pulse.models.triage import UserRole
from pulse.services.audit_service import get_audit_service

router = APIRouter(prefix="/api/v1/audit", tags=["Audit"])

_admin = require_roles(UserRole.ADMIN)


@router.get("/recent", response_model=AuditLogResponse)
async def get_recent(
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict[str, Any] = Depends(_admin),
):
    return AuditLogResponse(entries=await get_audit_service().get_recent(limit))


@router.get("/user/{user_id}", response_model=AuditLogResponse)
async def get_by_user(
    user_id: str,
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict[str, Any] = Depends(_admin),
):
    return AuditLogResponse(entries=await get_audit_service().get_by_user(user_id, limit))


@router.get("/resource/{resource_type}/{resource_id}", response_model=AuditLogResponse)
async def get_by_resource(
    resource_type: str,
    resource_id: str,
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict[str, Any] = Depends(_admin),
):
    entries = await get_audit_service().get_by_resource(resource_type, resource_id, limit)
    return AuditLogResponse(entries=entries)


@router.get("/action/{action}", response_model=AuditLogResponse)
async def get_by_action(
    action: str,
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict[str, Any] = Depends(_admin),
):
    return AuditLogResponse(entries=await get_audit_service().get_by_action(action, limit))


@router.get("/range", response_model=AuditLogResponse)
async def get_by_time_range(
    start: datetime,
    end: datetime,
    limit: int = Query(1000, ge=1, le=5000),
    current_user: Dict[str, Any] = Depends(_admin),
):
    entries = await get_audit_service().get_by_time_range(start, end, limit)
    return AuditLogResponse(entries=entries)
