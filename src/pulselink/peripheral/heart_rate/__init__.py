"""BLE Heart Rate profile client: discovery, subscription, decoding and zones."""

from pulselink.peripheral.heart_rate.adapter import BleAdapter as BleAdapter
from pulselink.peripheral.heart_rate.errors import \
    AdapterUnavailable as AdapterUnavailable
from pulselink.peripheral.heart_rate.errors import ErrorKind as ErrorKind
from pulselink.peripheral.heart_rate.errors import \
    InvalidStateTransition as InvalidStateTransition
from pulselink.peripheral.heart_rate.errors import \
    PermissionDenied as PermissionDenied
from pulselink.peripheral.heart_rate.errors import \
    PulseLinkError as PulseLinkError
from pulselink.peripheral.heart_rate.gatt import \
    HEART_RATE_MEASUREMENT_UUID as HEART_RATE_MEASUREMENT_UUID
from pulselink.peripheral.heart_rate.gatt import \
    HEART_RATE_SERVICE_UUID as HEART_RATE_SERVICE_UUID
from pulselink.peripheral.heart_rate.gatt import name_contains as name_contains
from pulselink.peripheral.heart_rate.manager import \
    ConnectionManager as ConnectionManager
from pulselink.peripheral.heart_rate.measurement import \
    HeartRateMeasurement as HeartRateMeasurement
from pulselink.peripheral.heart_rate.measurement import \
    ThresholdZone as ThresholdZone
from pulselink.peripheral.heart_rate.measurement import \
    classify_zone as classify_zone
from pulselink.peripheral.heart_rate.measurement import \
    decode_heart_rate as decode_heart_rate
from pulselink.peripheral.heart_rate.session import DeviceRef as DeviceRef
from pulselink.peripheral.heart_rate.session import SessionState as SessionState
