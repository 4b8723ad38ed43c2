"""Data records and configuration shared across the package."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_DURATION_PART})+")
_DURATION_PART_RE = re.compile(_DURATION_PART)

_TRUE_WORDS = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE_WORDS = {"0", "f", "F", "false", "FALSE", "False"}


@dataclass
class PositioningData:
    """Location reported for one access point."""

    latitude: float
    longitude: float
    accuracy: int
    altitude_meters: int | None = None
    vertical_accuracy_meters: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "altitude_meters": self.altitude_meters,
            "vertical_accuracy_meters": self.vertical_accuracy_meters,
        }


@dataclass
class WifiApPositioningData:
    """An access point together with its location, if one was found."""

    bssid: str
    positioning_data: PositioningData | None = None
    rssi: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"bssid": self.bssid}
        if self.rssi is not None:
            out["rssi"] = self.rssi
        out["positioning_data"] = (
            self.positioning_data.to_dict() if self.positioning_data else None
        )
        return out


@dataclass
class WifiInput:
    """A BSSID given by the user, with an optional signal strength in dBm."""

    bssid: str
    rssi: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"bssid": self.bssid}
        if self.rssi is not None:
            out["rssi"] = self.rssi
        return out


@dataclass
class ServerConfig:
    url: str = "https://gs-loc.apple.com/clls/wloc"
    connect_timeout: int = 10000
    read_timeout: int = 10000
    enforce_modern_tls: bool = False


@dataclass
class ThrottleConfig:
    cooldown: float = 10.0  # seconds
    trigger_result_count: int = 17
    throttled_additional_results: int = 8
    max_additional_results: int = 100


@dataclass
class RequestConfig:
    max_request_networks: int = 40
    min_rssi: int = -90
    user_agent: str = "locationd/2960.0.57 CFNetwork/3826.500.111.1.1 Darwin/24.4.0"
    locale: str = "en-US_US"
    identifier: str = "com.apple.locationd"
    version: str = "15.4.24E248"
    software_build: str = "macOS15.4/24E248"
    product_id: str = "arm64"


def _parse_duration(text: str) -> float:
    """Parse a duration such as "10s", "1m30s" or "250ms" into seconds."""
    s = text.strip()
    sign = 1.0
    if s[:1] in "+-" and s:
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]
    if s == "0":
        return 0.0
    if not s or not _DURATION_RE.fullmatch(s):
        raise ValueError(f"invalid duration: {text!r}")
    total = sum(
        float(number) * _DURATION_UNITS[unit]
        for number, unit in _DURATION_PART_RE.findall(s)
    )
    return sign * total


def _as_duration(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"invalid duration for {key}: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return _parse_duration(value)
    raise ValueError(f"invalid duration for {key}: {value!r}")


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"invalid integer for {key}: {value!r}")


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"invalid boolean for {key}: {value!r}")


def _as_str(value: Any, key: str) -> str:
    if value is None:
        raise ValueError(f"missing value for {key}")
    return str(value)


_SERVER_FIELDS = {
    "url": _as_str,
    "connect_timeout": _as_int,
    "read_timeout": _as_int,
    "enforce_modern_tls": _as_bool,
}
_THROTTLE_FIELDS = {
    "cooldown": _as_duration,
    "trigger_result_count": _as_int,
    "throttled_additional_results": _as_int,
    "max_additional_results": _as_int,
}
_REQUEST_FIELDS = {
    "max_request_networks": _as_int,
    "min_rssi": _as_int,
    "user_agent": _as_str,
    "locale": _as_str,
    "identifier": _as_str,
    "version": _as_str,
    "software_build": _as_str,
    "product_id": _as_str,
}


def _section_kwargs(
    section: str, data: Mapping[str, Any] | None, converters: Mapping[str, Any]
) -> dict[str, Any]:
    if not data:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"section {section!r} must be a mapping")
    return {
        name: convert(data[name], f"{section}.{name}")
        for name, convert in converters.items()
        if name in data
    }


@dataclass
class Config:
    """Complete application configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    request: RequestConfig = field(default_factory=RequestConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Config":
        """Build a configuration from nested sections; missing keys keep defaults."""
        data = data or {}
        return cls(
            server=ServerConfig(
                **_section_kwargs("server", data.get("server"), _SERVER_FIELDS)
            ),
            throttle=ThrottleConfig(
                **_section_kwargs("throttle", data.get("throttle"), _THROTTLE_FIELDS)
            ),
            request=RequestConfig(
                **_section_kwargs("request", data.get("request"), _REQUEST_FIELDS)
            ),
        )


def default_config() -> Config:
    """Return the built-in default configuration."""
    return Config()