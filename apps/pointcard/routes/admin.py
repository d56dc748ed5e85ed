from typing import List, Optional

from fastapi import APIRouter, Header, Request
from pydantic import BaseModel, Field

from apps.pointcard.routes.dependencies import get_service
from apps.pointcard.utils.envelope import ok

router = APIRouter(prefix="/admin", tags=["admin"])


class AdjustIn(BaseModel):
    target_customer_id: str = Field(..., min_length=1)
    amount: int = Field(..., description="Signed, non-zero")
    reason: Optional[str] = None


class CleanupIn(BaseModel):
    # None: use the orphans found by a fresh scan
    transaction_ids: Optional[List[str]] = None


class MergeIn(BaseModel):
    # None: use the duplicate identities found by a fresh scan
    identities: Optional[List[str]] = None


@router.post("/adjust")
def adjust(body: AdjustIn, request: Request, x_admin_identity: Optional[str] = Header(default=None)):
    outcome = get_service(request).adjust(
        x_admin_identity or "",
        body.target_customer_id,
        body.amount,
        body.reason,
    )
    return ok(outcome.to_dict())


@router.get("/customers")
def customers(request: Request, x_admin_identity: Optional[str] = Header(default=None)):
    rows = get_service(request).list_customers(x_admin_identity)
    return ok([c.to_dict() for c in rows], meta={"count": len(rows)})


@router.post("/integrity/check")
def integrity_check(request: Request, x_admin_identity: Optional[str] = Header(default=None)):
    service = get_service(request)
    service.require_admin(x_admin_identity)
    return ok(service.run_integrity_check().to_dict())


@router.post("/integrity/cleanup")
def integrity_cleanup(
    request: Request,
    body: Optional[CleanupIn] = None,
    x_admin_identity: Optional[str] = Header(default=None),
):
    service = get_service(request)
    service.require_admin(x_admin_identity)

    ids = body.transaction_ids if body is not None else None
    if ids is None:
        ids = service.run_integrity_check().orphaned_transaction_ids
    return ok(service.cleanup_orphans(ids).to_dict(), meta={"requested": len(ids)})


@router.post("/integrity/merge")
def integrity_merge(
    request: Request,
    body: Optional[MergeIn] = None,
    x_admin_identity: Optional[str] = Header(default=None),
):
    service = get_service(request)
    service.require_admin(x_admin_identity)

    identities = body.identities if body is not None else None
    if identities is None:
        identities = list(service.run_integrity_check().duplicate_identities)
    return ok(service.merge_duplicates(identities).to_dict(), meta={"requested": len(identities)})


@router.post("/reconcile/{customer_id}")
def reconcile(customer_id: str, request: Request, x_admin_identity: Optional[str] = Header(default=None)):
    state = get_service(request).reconcile(x_admin_identity, customer_id)
    return ok(state.to_dict())
