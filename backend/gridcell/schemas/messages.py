"""Schemas for messages delivered by the message bus."""

import json
from datetime import UTC, datetime

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from gridcell.errors import MalformedMessage

NANOS_PER_SECOND = 1_000_000_000


def datetime_from_nanos(nanos: int) -> datetime:
    """Convert nanoseconds since the epoch to an aware UTC datetime."""
    seconds, remainder = divmod(nanos, NANOS_PER_SECOND)
    return datetime.fromtimestamp(seconds, UTC).replace(microsecond=remainder // 1000)


def _check_nanos(nanos: int) -> int:
    try:
        datetime_from_nanos(nanos)
    except (ValueError, OverflowError, OSError) as e:
        raise ValueError(f"time {nanos} is not a representable timestamp") from e
    return nanos


def _decode(payload: bytes | bytearray | str) -> dict:
    try:
        if isinstance(payload, (bytes, bytearray)):
            data = json.loads(payload.decode("utf-8"))
        else:
            data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"Payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage("Payload is not a JSON object")
    return data


class GatewayReport(BaseModel):
    """One gateway's reception of an uplink."""

    network_id: str | None = None
    gateway_id: str = Field(..., min_length=1)
    antenna_index: int = Field(default=0, ge=0)
    rssi: float
    snr: float


class UplinkMessage(BaseModel):
    """A geolocated uplink and every gateway that heard it."""

    network_id: str = ""
    gateway_id: str = ""
    antenna_index: int = 0
    latitude: float
    longitude: float
    time: int = Field(..., description="Nanoseconds since the epoch")
    experiment: str = ""
    gateways: list[GatewayReport] = Field(default_factory=list)

    check_time = field_validator("time")(_check_nanos)

    @model_validator(mode="after")
    def inherit_network(self) -> "UplinkMessage":
        """Reports without a network belong to the uplink's network."""
        for report in self.gateways:
            if not report.network_id:
                report.network_id = self.network_id
        return self

    @property
    def observed_at(self) -> datetime:
        return datetime_from_nanos(self.time)

    @property
    def is_null_island(self) -> bool:
        return self.latitude == 0 and self.longitude == 0

    @classmethod
    def from_payload(cls, payload: bytes | bytearray | str) -> "UplinkMessage":
        """Decode a bus payload, raising MalformedMessage when it is unusable."""
        try:
            return cls.model_validate(_decode(payload))
        except ValidationError as e:
            raise MalformedMessage(f"Invalid uplink message: {e}") from e


class GatewayMovedMessage(BaseModel):
    """A gateway's installed location changed."""

    network_id: str = Field(..., min_length=1)
    gateway_id: str = Field(..., min_length=1)
    time: int = 0
    latitude_old: float | None = None
    longitude_old: float | None = None
    latitude_new: float | None = None
    longitude_new: float | None = None

    check_time = field_validator("time")(_check_nanos)

    @classmethod
    def from_payload(cls, payload: bytes | bytearray | str) -> "GatewayMovedMessage":
        """Decode a bus payload, raising MalformedMessage when it is unusable."""
        try:
            return cls.model_validate(_decode(payload))
        except ValidationError as e:
            raise MalformedMessage(f"Invalid gateway moved message: {e}") from e
