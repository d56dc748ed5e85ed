from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from apps.pointcard.routes.dependencies import get_service
from apps.pointcard.utils.envelope import ok

router = APIRouter(prefix="/points", tags=["points"])


class RegisterIn(BaseModel):
    identity: str = Field(..., min_length=1, description="External identity (LINE user id)")
    display_name: str = ""


class EarnIn(BaseModel):
    identity: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    latitude: float
    longitude: float
    token: str = Field(..., min_length=1, description="Location secret from the QR/NFC tag")
    device: Optional[str] = None


class RedeemIn(BaseModel):
    identity: str = Field(..., min_length=1)
    reward_id: str = Field(..., min_length=1)


@router.post("/register")
def register(body: RegisterIn, request: Request):
    customer_id = get_service(request).register(body.identity, body.display_name)
    return ok({"customer_id": customer_id})


@router.post("/earn")
def earn(body: EarnIn, request: Request):
    outcome = get_service(request).earn(
        body.identity,
        body.location_id,
        body.latitude,
        body.longitude,
        body.token,
        device=body.device,
    )
    return ok(outcome.to_dict())


@router.post("/redeem")
def redeem(body: RedeemIn, request: Request):
    outcome = get_service(request).redeem(body.identity, body.reward_id)
    return ok(outcome.to_dict())


@router.get("/status/{identity}")
def status(identity: str, request: Request):
    return ok(get_service(request).status(identity).to_dict())


@router.get("/history/{identity}")
def history(identity: str, request: Request):
    rows = get_service(request).history(identity)
    return ok([t.to_dict() for t in rows], meta={"count": len(rows)})


@router.get("/rewards")
def rewards(request: Request):
    rows = get_service(request).list_rewards()
    return ok([r.to_dict() for r in rows], meta={"count": len(rows)})


@router.get("/locations/{location_id}")
def location_info(location_id: str, request: Request):
    return ok(get_service(request).location_info(location_id))
