"""
Publishing driver and delivery notifications over the PubNub REST API.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .conf import tracking_setting
from .exceptions import ConfigurationError, ExternalServiceError

LOGGER = logging.getLogger(__name__)

IMMINENT_DELIVERY_MESSAGE = "Your delivery is about 5 minutes away"


def driver_location_channel(driver_id: str) -> str:
    return f"driverLocation+{driver_id}"


def delivery_imminent_channels(route_id: str, sequence: Any) -> List[str]:
    return [
        f"deliveryImminent+{route_id}",
        f"deliveryImminent+{route_id}+{sequence}",
    ]


class Publisher:
    def __init__(self, publish_key: str, subscribe_key: str, origin: str = "https://ps.pndsn.com", timeout: float = 5):
        if not publish_key or not subscribe_key:
            raise ConfigurationError("PubNub keys are not configured.")
        self.publish_key = publish_key
        self.subscribe_key = subscribe_key
        self.origin = origin.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "Publisher":
        return cls(
            tracking_setting("pubnub_publish_key"),
            tracking_setting("pubnub_subscribe_key"),
            origin=tracking_setting("pubnub_origin"),
            timeout=tracking_setting("timeout_seconds"),
        )

    def publish(self, channel: str, message: Dict[str, Any]) -> Any:
        payload = quote(json.dumps(message, separators=(",", ":")), safe="")
        url = (
            f"{self.origin}/publish/{self.publish_key}/{self.subscribe_key}"
            f"/0/{quote(channel, safe='')}/0/{payload}"
        )
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except (requests.exceptions.RequestException, ValueError) as error:
            LOGGER.warning("Publishing to channel %s failed: %s", channel, error)
            raise ExternalServiceError(f"Publish to {channel} failed: {error}") from error

        # A successful publish answers [1, "Sent", "<timetoken>"].
        if not isinstance(result, list) or not result or result[0] != 1:
            raise ExternalServiceError(f"Publish to {channel} was rejected: {result}")
        return result[2] if len(result) > 2 else None

    def publish_driver_location(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        route_id: Optional[str] = None,
        sequence: Optional[int] = None,
    ) -> Any:
        message: Dict[str, Any] = {"driverId": driver_id, "lat": lat, "lon": lng}
        if route_id is not None and sequence is not None:
            message["routeId"] = route_id
            message["sequence"] = sequence
        return self.publish(driver_location_channel(driver_id), message)

    def publish_delivery_imminent(self, driver_id: str, route_id: str, sequence: Any) -> None:
        message = {
            "driverId": driver_id,
            "routeId": route_id,
            "sequence": sequence,
            "message": IMMINENT_DELIVERY_MESSAGE,
        }
        for channel in delivery_imminent_channels(route_id, sequence):
            LOGGER.info("Imminent delivery alert on channel %s", channel)
            self.publish(channel, message)
