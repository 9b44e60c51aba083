"""Publishes capacity changes to subscribers of a site."""

from __future__ import annotations

from typing import Any, Optional

from backend.domain.models import AvailabilityUpdate, OccupancySnapshot, VehicleType
from backend.services.pubsub import SubscriptionHub
from backend.utils.clock import Clock
from backend.utils.logger import get_logger


logger = get_logger(__name__)

UPDATE_EVENT = "availability_update"


class AvailabilityBroadcaster:
    """Turns occupancy snapshots into site-topic messages.

    Subscribers receive every vehicle type of the sites they joined. Nothing
    is queued for subscribers that connect later; they re-fetch state.
    """

    def __init__(self, transport: SubscriptionHub, clock: Optional[Clock] = None) -> None:
        self._transport = transport
        self._clock = clock or Clock()

    def to_message(self, update: AvailabilityUpdate) -> dict[str, Any]:
        return {
            "event": UPDATE_EVENT,
            "site_id": update.site_id,
            "vehicle_type": update.vehicle_type.value,
            "available_spots": update.available_spots,
            "occupied_active": update.occupied_active,
            "occupied_pending": update.occupied_pending,
            "as_of": update.as_of.isoformat(),
            "as_of_display": self._clock.format_display(update.as_of),
        }

    def publish(
        self,
        site_id: int,
        vehicle_type: VehicleType,
        snapshot: OccupancySnapshot,
    ) -> int:
        if snapshot.site_id != site_id or snapshot.vehicle_type != vehicle_type:
            raise ValueError("snapshot does not belong to the published site/vehicle type")
        message = self.to_message(AvailabilityUpdate.from_snapshot(snapshot))
        delivered = self._transport.send(site_id, message)
        logger.debug(
            "Broadcast site=%s type=%s available=%s to %s subscribers",
            site_id,
            vehicle_type.value,
            snapshot.available,
            delivered,
        )
        return delivered
