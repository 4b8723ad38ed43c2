"""BSSID handling and the framing and decoding of positioning service messages."""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass
from typing import Iterable, Iterator

from .types import PositioningData, RequestConfig, WifiInput

_LOOSE_BSSID_RE = re.compile(r"([0-9a-fA-F]{1,2}:){5}[0-9a-fA-F]{1,2}")
_STRICT_BSSID_RE = re.compile(r"([0-9a-fA-F]{2}[:-]){5}([0-9a-fA-F]{2})")
_RSSI_RE = re.compile(r"\s*([+-]?\d+)")

_MIN_RSSI = -100
_MAX_RSSI = -10
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_MASK64 = (1 << 64) - 1

_MISSING_LATITUDE = -18000000000
_MISSING_ALTITUDES = (-100, -50000)
_MISSING_VERTICAL_ACCURACY = -100
_COORDINATE_SCALE = 0.00000001

RESPONSE_HEADER_SIZE = 10

# Response message field numbers.
_RESP_WIRELESS_APS = 2
_AP_MAC_ID = 1
_AP_LOCATION = 2
_LOC_LATITUDE = 1
_LOC_LONGITUDE = 2
_LOC_ACCURACY = 3
_LOC_ALTITUDE = 5
_LOC_VERTICAL_ACCURACY = 6

_WT_VARINT = 0
_WT_FIXED64 = 1
_WT_LEN = 2
_WT_FIXED32 = 5


class WifiInputError(ValueError):
    """Raised when a command-line WiFi input cannot be understood."""


@dataclass
class ApLocation:
    """Raw location of an access point as the service encodes it."""

    latitude: int = 0
    longitude: int = 0
    accuracy: int = 0
    altitude: int | None = None
    vertical_accuracy: int | None = None


def normalize_bssid(bssid: str) -> str | None:
    """Return the BSSID in lower case with two-digit octets, or None if malformed."""
    if not _LOOSE_BSSID_RE.fullmatch(bssid):
        return None
    return ":".join(octet.lower().zfill(2) for octet in bssid.split(":"))


def is_valid_bssid(bssid: str) -> bool:
    """Check for a MAC address written as six two-digit hex octets."""
    return _STRICT_BSSID_RE.fullmatch(bssid) is not None


def _parse_rssi(text: str, value: str) -> int:
    match = _RSSI_RE.match(value)
    if match is None:
        raise WifiInputError(f"invalid RSSI value in {text}: {value}")
    rssi = int(match.group(1))
    if not _INT32_MIN <= rssi <= _INT32_MAX:
        raise WifiInputError(f"invalid RSSI value in {text}: {value}")
    if rssi > _MAX_RSSI or rssi < _MIN_RSSI:
        raise WifiInputError(
            f"RSSI value {rssi} is out of typical range (-10 to -100 dBm)"
        )
    return rssi


def parse_wifi_inputs(inputs: Iterable[str]) -> list[WifiInput]:
    """Parse inputs of the form "BSSID" or "BSSID:RSSI"."""
    parsed = []
    for text in inputs:
        parts = text.split(":")
        if len(parts) < 6:
            raise WifiInputError(
                f"invalid BSSID format: {text} "
                "(expected format: aa:bb:cc:dd:ee:ff or aa:bb:cc:dd:ee:ff:-65)"
            )
        if len(parts) == 7:
            bssid = ":".join(parts[:6])
            rssi: int | None = _parse_rssi(text, parts[6])
        elif len(parts) == 6:
            bssid = text
            rssi = None
        else:
            raise WifiInputError(f"invalid input format: {text}")

        normalized = normalize_bssid(bssid) if is_valid_bssid(bssid) else None
        if normalized is None:
            raise WifiInputError(f"invalid BSSID format: {bssid}")
        parsed.append(WifiInput(bssid=normalized, rssi=rssi))
    return parsed


def _trunc_div(value: int, divisor: int) -> int:
    quotient = abs(value) // divisor
    return -quotient if value < 0 else quotient


def convert_positioning_data(location: ApLocation | None) -> PositioningData | None:
    """Convert a raw location into metres and degrees; None when the AP is unknown."""
    if location is None or location.latitude == _MISSING_LATITUDE:
        return None

    altitude = None
    if location.altitude is not None and location.altitude not in _MISSING_ALTITUDES:
        altitude = _trunc_div(location.altitude, 100)

    vertical = None
    if (
        location.vertical_accuracy is not None
        and location.vertical_accuracy != _MISSING_VERTICAL_ACCURACY
        and altitude is not None
    ):
        vertical = _trunc_div(location.vertical_accuracy, 100)

    return PositioningData(
        latitude=float(location.latitude) * _COORDINATE_SCALE,
        longitude=float(location.longitude) * _COORDINATE_SCALE,
        accuracy=location.accuracy,
        altitude_meters=altitude,
        vertical_accuracy_meters=vertical,
    )


def encode_request_body(request: RequestConfig, payload: bytes) -> bytes:
    """Frame an encoded location request with the service's binary header."""
    body = bytearray(struct.pack(">H", 1))
    for text in (request.locale, request.identifier, request.version):
        raw = text.encode("utf-8")
        if len(raw) > 0xFFFF:
            raise ValueError(f"header field too long: {len(raw)} bytes")
        body += struct.pack(">H", len(raw))
        body += raw
    body += struct.pack(">II", 1, len(payload))
    body += payload
    return bytes(body)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _MASK64, pos
        shift += 7
        if shift >= 70:
            raise ValueError("varint too long")


def _fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire_type = key >> 3, key & 7
        if number == 0:
            raise ValueError("invalid field number 0")
        value: int | bytes
        if wire_type == _WT_VARINT:
            value, pos = _read_varint(data, pos)
        elif wire_type in (_WT_FIXED64, _WT_FIXED32):
            size = 8 if wire_type == _WT_FIXED64 else 4
            if pos + size > len(data):
                raise ValueError("truncated fixed-width field")
            value = data[pos : pos + size]
            pos += size
        elif wire_type == _WT_LEN:
            length, pos = _read_varint(data, pos)
            end = pos + length
            if end > len(data):
                raise ValueError("truncated length-delimited field")
            value = data[pos:end]
            pos = end
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        yield number, wire_type, value


def _expect(wire_type: int, wanted: int, number: int) -> None:
    if wire_type != wanted:
        raise ValueError(f"field {number} has unexpected wire type {wire_type}")


def _int64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= 1 << 31 else value


def _decode_location(data: bytes) -> ApLocation:
    location = ApLocation()
    for number, wire_type, value in _fields(data):
        if number in (_LOC_LATITUDE, _LOC_LONGITUDE, _LOC_ACCURACY,
                      _LOC_ALTITUDE, _LOC_VERTICAL_ACCURACY):
            _expect(wire_type, _WT_VARINT, number)
            assert isinstance(value, int)
            if number == _LOC_LATITUDE:
                location.latitude = _int64(value)
            elif number == _LOC_LONGITUDE:
                location.longitude = _int64(value)
            elif number == _LOC_ACCURACY:
                location.accuracy = _int32(value)
            elif number == _LOC_ALTITUDE:
                location.altitude = _int32(value)
            else:
                location.vertical_accuracy = _int32(value)
    return location


def _decode_ap(data: bytes) -> tuple[str, ApLocation | None]:
    mac = ""
    location = None
    for number, wire_type, value in _fields(data):
        if number == _AP_MAC_ID:
            _expect(wire_type, _WT_LEN, number)
            assert isinstance(value, bytes)
            mac = value.decode("utf-8")
        elif number == _AP_LOCATION:
            _expect(wire_type, _WT_LEN, number)
            assert isinstance(value, bytes)
            location = _decode_location(value)
    return mac, location


def decode_response_body(body: bytes) -> list[tuple[str, ApLocation | None]]:
    """Decode a service response into (BSSID, location) pairs in response order."""
    if len(body) < RESPONSE_HEADER_SIZE:
        raise ValueError(f"response too short: {len(body)} bytes")
    try:
        aps = []
        for number, wire_type, value in _fields(body[RESPONSE_HEADER_SIZE:]):
            if number == _RESP_WIRELESS_APS:
                _expect(wire_type, _WT_LEN, number)
                assert isinstance(value, bytes)
                aps.append(_decode_ap(value))
        return aps
    except ValueError as exc:
        raise ValueError(f"failed to unmarshal response: {exc}") from exc