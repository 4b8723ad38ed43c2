"""Client for the WiFi positioning service."""

from __future__ import annotations

import logging
import random
import ssl
import time
import urllib.error
import urllib.request
from typing import Callable, Iterable, Sequence

from .triangulation import TriangulationError, TriangulationResult, triangulate_position
from .types import Config, PositioningData, RequestConfig, WifiApPositioningData, WifiInput
from .wire import (
    ApLocation,
    convert_positioning_data,
    decode_response_body,
    encode_request_body,
    normalize_bssid,
)

log = logging.getLogger(__name__)

_MASK64 = (1 << 64) - 1

# Request message field numbers and enum values.
_REQ_WIRELESS_APS = 2
_AP_MAC_ID = 1
_REQ_SURROUNDING_WIFIS = 4
_REQ_META = 23
_REQ_WIFI_BANDS = 31
_REQ_ALTITUDE_SCALE = 32
_META_SOFTWARE_BUILD = 1
_META_PRODUCT_ID = 2
_BAND_2_4GHZ = 1
_BAND_5GHZ = 2
_ALTITUDE_SCALE_10_TO_THE_2 = 1

_HEADERS = {
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Content-Type": "application/x-www-form-urlencoded",
}


class WpsError(Exception):
    """Raised when positioning data cannot be fetched."""


def _varint(value: int) -> bytes:
    value &= _MASK64
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _varint_field(number: int, value: int) -> bytes:
    return _varint(number << 3) + _varint(value)


def _bytes_field(number: int, data: bytes) -> bytes:
    return _varint((number << 3) | 2) + _varint(len(data)) + data


def _as_int32(value: int) -> int:
    return ((value + 2**31) % 2**32) - 2**31


def _encode_location_request(
    bssids: Sequence[str], max_additional: int, request: RequestConfig
) -> bytes:
    parts = [
        _bytes_field(_REQ_WIRELESS_APS, _bytes_field(_AP_MAC_ID, bssid.encode("utf-8")))
        for bssid in bssids
    ]
    parts.append(_varint_field(_REQ_SURROUNDING_WIFIS, _as_int32(max_additional)))
    meta = _bytes_field(_META_SOFTWARE_BUILD, request.software_build.encode("utf-8"))
    meta += _bytes_field(_META_PRODUCT_ID, request.product_id.encode("utf-8"))
    parts.append(_bytes_field(_REQ_META, meta))
    parts.append(_bytes_field(_REQ_WIFI_BANDS, _varint(_BAND_2_4GHZ) + _varint(_BAND_5GHZ)))
    parts.append(_varint_field(_REQ_ALTITUDE_SCALE, _ALTITUDE_SCALE_10_TO_THE_2))
    return b"".join(parts)


class HttpExchange:
    """Sends one location request over HTTPS and decodes the answer."""

    def __init__(self, config: Config, urlopen: Callable | None = None) -> None:
        self._config = config
        self._urlopen = urlopen or urllib.request.urlopen
        self._context = ssl.create_default_context()
        self._context.minimum_version = (
            ssl.TLSVersion.TLSv1_3
            if config.server.enforce_modern_tls
            else ssl.TLSVersion.TLSv1_2
        )
        total_ms = config.server.connect_timeout + config.server.read_timeout
        self._timeout = total_ms / 1000 if total_ms > 0 else None

    def __call__(
        self, bssids: Sequence[str], max_additional: int
    ) -> list[tuple[str, ApLocation | None]]:
        request_config = self._config.request
        payload = _encode_location_request(bssids, max_additional, request_config)
        body = encode_request_body(request_config, payload)
        request = urllib.request.Request(
            self._config.server.url,
            data=body,
            method="POST",
            headers={**_HEADERS, "User-Agent": request_config.user_agent},
        )
        try:
            with self._urlopen(request, timeout=self._timeout, context=self._context) as resp:
                status = resp.status
                data = resp.read()
        except urllib.error.HTTPError as exc:
            raise WpsError(f"non-200 response code: {exc.code}") from exc
        except OSError as exc:
            raise WpsError(f"failed to send request: {exc}") from exc

        if status != 200:
            raise WpsError(f"non-200 response code: {status}")
        try:
            aps = decode_response_body(data)
        except ValueError as exc:
            raise WpsError(str(exc)) from exc
        log.debug("received response: ap_count=%d byte_size=%d", len(aps), len(data))
        return aps


class WpsClient:
    """Looks up access point locations, with throttling and triangulation."""

    def __init__(
        self,
        config: Config,
        exchange: Callable[[Sequence[str], int], Iterable[tuple[str, ApLocation | None]]]
        | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self._exchange = exchange if exchange is not None else HttpExchange(config)
        self._clock = clock
        self._rng = rng
        self._throttle_triggered_at: float | None = None

    def _max_additional_results(self) -> int:
        throttle = self.config.throttle
        triggered = self._throttle_triggered_at
        if triggered is not None and self._clock() - triggered < throttle.cooldown:
            return throttle.throttled_additional_results
        return throttle.max_additional_results

    def fetch_nearby_ap_positioning_data(
        self, bssids: Sequence[str]
    ) -> list[WifiApPositioningData]:
        """Look up the given BSSIDs and whatever nearby APs the service adds."""
        request_bssids = list(bssids)
        limit = self.config.request.max_request_networks
        if len(request_bssids) > limit:
            request_bssids = request_bssids[:limit]

        max_additional = self._max_additional_results()
        log.debug(
            "fetching positioning data: request_bssids=%s max_additional=%d",
            request_bssids, max_additional,
        )
        try:
            aps = list(self._exchange(request_bssids, max_additional))
        except WpsError as exc:
            raise WpsError(f"failed to fetch positioning data: {exc}") from exc

        if len(aps) >= self.config.throttle.trigger_result_count:
            log.debug("response AP count %d triggered throttle", len(aps))
            self._throttle_triggered_at = self._clock()

        found: dict[str, PositioningData | None] = {}
        for mac, location in aps:
            normalized = normalize_bssid(mac)
            if normalized is None:
                log.warning("invalid BSSID: %s", mac)
                continue
            if normalized not in found:
                found[normalized] = convert_positioning_data(location)
        for bssid in request_bssids:
            found.setdefault(bssid, None)

        return [
            WifiApPositioningData(bssid=bssid, positioning_data=data)
            for bssid, data in found.items()
        ]

    def fetch_positioning_data_with_rssi(
        self, wifi_inputs: Iterable[WifiInput]
    ) -> tuple[list[WifiApPositioningData], TriangulationResult | None]:
        """Drop weak signals, look up the rest and triangulate when possible."""
        min_rssi = self.config.request.min_rssi
        kept = []
        for item in wifi_inputs:
            if item.rssi is not None and item.rssi < min_rssi:
                log.debug(
                    "filtering out weak signal: bssid=%s rssi=%d min_rssi=%d",
                    item.bssid, item.rssi, min_rssi,
                )
                continue
            kept.append(item)

        if not kept:
            raise WpsError("no WiFi access points remaining after RSSI filtering")

        ap_data = self.fetch_nearby_ap_positioning_data([item.bssid for item in kept])

        rssi_by_bssid = {item.bssid: item.rssi for item in kept}
        for ap in ap_data:
            if ap.bssid in rssi_by_bssid:
                ap.rssi = rssi_by_bssid[ap.bssid]

        try:
            result = triangulate_position(ap_data, self._rng)
        except TriangulationError as exc:
            log.debug("triangulation failed, returning individual AP data: %s", exc)
            return ap_data, None

        log.info(
            "triangulation successful: lat=%f lon=%f accuracy=%f confidence=%f used_aps=%d",
            result.position.lat, result.position.lon, result.estimated_accuracy,
            result.confidence_score, result.used_access_points,
        )
        return ap_data, result