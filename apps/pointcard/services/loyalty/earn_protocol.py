"""
Earn Protocol
=============

Check-in flow:
    received -> identity-checked -> location-checked -> token-checked
             -> geofence-checked -> granted | rejected

Each failed step raises a typed rejection (NotFound, Unauthorized, OutOfRange)
and nothing is written. Only a request that passes every step reaches the ledger.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from apps.pointcard.services.errors import CoreError, NotFound, OutOfRange, Unauthorized
from apps.pointcard.services.loyalty.catalog import Catalog
from apps.pointcard.services.loyalty.customer_directory import CustomerDirectory
from apps.pointcard.services.loyalty.geofence import DEFAULT_RADIUS_METERS, check_geofence, validate_coordinate
from apps.pointcard.services.loyalty.locks import Deadline, check_deadline
from apps.pointcard.services.loyalty.models import TransactionDetails, TransactionKind
from apps.pointcard.services.loyalty.points_ledger import PointsLedger

log = logging.getLogger("pointcard.earn")


class EarnStage(str, Enum):
    RECEIVED = "received"
    IDENTITY_CHECKED = "identity-checked"
    LOCATION_CHECKED = "location-checked"
    TOKEN_CHECKED = "token-checked"
    GEOFENCE_CHECKED = "geofence-checked"
    GRANTED = "granted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class EarnRequest:
    identity: str
    location_id: str
    latitude: float
    longitude: float
    token: str
    device: Optional[str] = None


@dataclass(frozen=True)
class EarnOutcome:
    success: bool
    awarded_amount: int
    transaction_id: str
    customer_id: str
    location_name: str
    distance: int
    radius: float
    stage: EarnStage = EarnStage.GRANTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "awarded_amount": self.awarded_amount,
            "transaction_id": self.transaction_id,
            "location": self.location_name,
            "distance": self.distance,
            "radius": self.radius,
        }


class EarnProtocol:
    def __init__(
        self,
        directory: CustomerDirectory,
        catalog: Catalog,
        ledger: PointsLedger,
        *,
        award_points: int = 1,
        default_radius: float = DEFAULT_RADIUS_METERS,
    ) -> None:
        self.directory = directory
        self.catalog = catalog
        self.ledger = ledger
        self.award_points = int(award_points)
        self.default_radius = float(default_radius)

    def earn(self, request: EarnRequest, *, deadline: Optional[Deadline] = None) -> EarnOutcome:
        stage = EarnStage.RECEIVED
        try:
            lat, lon = validate_coordinate(request.latitude, request.longitude)

            check_deadline(deadline, stage.value)
            customer = self.directory.require(request.identity)
            stage = EarnStage.IDENTITY_CHECKED

            check_deadline(deadline, stage.value)
            location = self.catalog.require_active_location(request.location_id)
            stage = EarnStage.LOCATION_CHECKED

            if not location.secret_token or not hmac.compare_digest(
                location.secret_token.encode("utf-8"), (request.token or "").encode("utf-8")
            ):
                raise Unauthorized("invalid token", detail={"location_id": request.location_id})
            stage = EarnStage.TOKEN_CHECKED

            if not location.latitude or not location.longitude:
                raise NotFound(
                    "location unavailable",
                    detail={"location_id": request.location_id, "reason": "coordinates not configured"},
                )
            fence = check_geofence(
                lat, lon, location.latitude, location.longitude, location.radius,
                default_radius=self.default_radius,
            )
            log.debug(
                "geofence location=%s distance=%.1fm radius=%.1fm",
                location.location_id, fence.distance, fence.radius,
            )
            if not fence.within:
                raise OutOfRange(fence.rounded_distance, fence.radius)
            stage = EarnStage.GEOFENCE_CHECKED

            check_deadline(deadline, stage.value)
        except CoreError as e:
            e.detail.setdefault("stage", stage.value)
            log.info("earn rejected at %s: %s (%s)", stage.value, e.code, e.message)
            raise

        transaction_id = self.ledger.record_transaction(
            customer.id,
            self.award_points,
            TransactionKind.PURCHASE,
            TransactionDetails(
                location_ref=location.name,
                location=f"{lat},{lon}",
                reason="location visit",
                device=request.device,
            ),
        )
        return EarnOutcome(
            success=True,
            awarded_amount=self.award_points,
            transaction_id=transaction_id,
            customer_id=customer.id,
            location_name=location.name,
            distance=fence.rounded_distance,
            radius=fence.radius,
        )
