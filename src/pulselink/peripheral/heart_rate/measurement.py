"""Heart Rate Measurement (0x2A37) decoding and BPM zone classification.

Only the heart-rate value is decoded. Sensor contact, energy expended and
RR-interval fields are ignored along with any trailing bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

HR_VALUE_FORMAT_UINT16 = 0x01


@dataclass(frozen=True, slots=True)
class HeartRateMeasurement:
    bpm: int
    valid: bool

    @classmethod
    def invalid(cls) -> HeartRateMeasurement:
        return cls(bpm=0, valid=False)


class ThresholdZone(StrEnum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    RISING = "rising"
    ELEVATED = "elevated"
    NORMAL = "normal"
    LOW = "low"


# Evaluated top to bottom; the first threshold the BPM exceeds wins.
ZONE_THRESHOLDS: tuple[tuple[int, ThresholdZone], ...] = (
    (160, ThresholdZone.VERY_HIGH),
    (140, ThresholdZone.HIGH),
    (120, ThresholdZone.RISING),
    (100, ThresholdZone.ELEVATED),
)
LOW_ZONE_CEILING = 50


def decode_heart_rate(data: bytes | bytearray | None) -> HeartRateMeasurement:
    """Decode the BPM value of a Heart Rate Measurement notification.

    Bit 0 of the flags byte selects a little-endian uint16 value in bytes 1-2
    instead of a uint8 in byte 1. The value is returned unclamped.
    """

    if not data or len(data) < 2:
        return HeartRateMeasurement.invalid()

    flags = data[0]
    if flags & HR_VALUE_FORMAT_UINT16:
        if len(data) < 3:
            return HeartRateMeasurement.invalid()
        bpm = int.from_bytes(data[1:3], "little")
    else:
        bpm = data[1]
    return HeartRateMeasurement(bpm=bpm, valid=True)


def classify_zone(bpm: int) -> ThresholdZone:
    for threshold, zone in ZONE_THRESHOLDS:
        if bpm > threshold:
            return zone
    if 0 < bpm < LOW_ZONE_CEILING:
        return ThresholdZone.LOW
    return ThresholdZone.NORMAL


class ZoneTracker:
    """Report a zone only when it differs from the last one reported."""

    __slots__ = ("_last_zone",)

    def __init__(self) -> None:
        self._last_zone: ThresholdZone | None = None

    @property
    def last_zone(self) -> ThresholdZone | None:
        return self._last_zone

    def update(self, zone: ThresholdZone) -> ThresholdZone | None:
        if zone is self._last_zone:
            return None
        self._last_zone = zone
        return zone

    def reset(self) -> None:
        self._last_zone = None
