"""Rendering of lookup, triangulation and scan results as text or JSON."""

from __future__ import annotations

import json
from typing import Any, Sequence

from .triangulation import TriangulationResult
from .types import WifiApPositioningData, WifiInput

SIMPLE_LOCATION_NOTE = "Simple centroid calculation (RSSI not available)"


class OutputError(Exception):
    """Raised when results cannot be rendered."""


def _plain(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _to_json(value: Any) -> str:
    try:
        return json.dumps(_plain(value), indent=2, ensure_ascii=False, allow_nan=False) + "\n"
    except ValueError as exc:
        raise OutputError(f"cannot encode JSON: {exc}") from exc


def _trunc_div(value: int, divisor: int) -> int:
    quotient = abs(value) // divisor
    return -quotient if value < 0 else quotient


def render_results(results: Sequence[WifiApPositioningData], fmt: str) -> str:
    """Render plain lookup results as JSON ("json" or "yaml") or a table."""
    if fmt in ("json", "yaml"):
        return _to_json([r.to_dict() for r in results] if results else None)
    return render_table(results)


def render_table(results: Sequence[WifiApPositioningData]) -> str:
    """Render lookup results as a fixed-width table."""
    lines = [
        f"{'BSSID':<17} {'Latitude':<12} {'Longitude':<12} {'Accuracy':<8} "
        f"{'Altitude':<10} {'Vert. Accuracy':<15}",
        "-" * 80,
    ]
    for result in results:
        data = result.positioning_data
        if data is None:
            lines.append(
                f"{result.bssid:<17} {'N/A':<12} {'N/A':<12} {'N/A':<8} "
                f"{'N/A':<10} {'N/A':<15}"
            )
            continue
        altitude = "N/A" if data.altitude_meters is None else f"{data.altitude_meters}m"
        vertical = (
            "N/A"
            if data.vertical_accuracy_meters is None
            else f"{data.vertical_accuracy_meters}m"
        )
        lines.append(
            f"{result.bssid:<17} {data.latitude:<12.6f} {data.longitude:<12.6f} "
            f"{data.accuracy:<8d}m {altitude:<10} {vertical:<15}"
        )
    return "\n".join(lines) + "\n"


def render_triangulation(
    results: Sequence[WifiApPositioningData],
    triangulation: TriangulationResult | None,
    fmt: str,
    show_aps: bool,
) -> str:
    """Render a triangulated position and, optionally, the individual APs."""
    if fmt in ("json", "yaml"):
        output: dict[str, Any] = {}
        if show_aps and results:
            output["access_points"] = [r.to_dict() for r in results]
        if triangulation is not None:
            output["triangulation"] = triangulation.to_dict()
        return _to_json(output)

    lines: list[str] = []
    if triangulation is not None:
        lines += [
            "Triangulated Location:",
            f"  Latitude:     {triangulation.position.lat:.6f}",
            f"  Longitude:    {triangulation.position.lon:.6f}",
            f"  Accuracy:     {triangulation.estimated_accuracy:.1f} meters",
            f"  Confidence:   {triangulation.confidence_score * 100:.1f}%",
            f"  Used APs:     {triangulation.used_access_points}",
            f"  Google Maps:  {triangulation.google_maps_link()}",
        ]
        if show_aps:
            lines.append("")

    if show_aps:
        widths = (18, 12, 12, 10, 10, 15, 18)

        def row(cells: Sequence[str]) -> str:
            return " ".join(f"{cell:<{width}}" for cell, width in zip(cells, widths))

        lines.append("Individual Access Points:")
        lines.append(
            row(("BSSID", "Latitude", "Longitude", "Accuracy", "RSSI", "Altitude",
                 "Vert. Accuracy"))
        )
        lines.append(row(["-" * width for width in widths]))
        for result in results:
            rssi = "N/A" if result.rssi is None else f"{result.rssi} dBm"
            data = result.positioning_data
            if data is None:
                lines.append(
                    row((result.bssid, "Not found", "Not found", "N/A", rssi, "N/A", "N/A"))
                )
                continue
            altitude = "N/A" if data.altitude_meters is None else f"{data.altitude_meters} m"
            vertical = (
                "N/A"
                if data.vertical_accuracy_meters is None
                else f"{data.vertical_accuracy_meters} m"
            )
            lines.append(
                row((result.bssid, f"{data.latitude:.6f}", f"{data.longitude:.6f}",
                     str(data.accuracy), rssi, altitude, vertical))
            )

    return "".join(line + "\n" for line in lines)


def render_simple_location(
    results: Sequence[WifiApPositioningData], fmt: str, show_aps: bool
) -> str:
    """Render the plain centroid of all located access points."""
    valid = [r for r in results if r.positioning_data is not None]
    if not valid:
        raise OutputError("no access points with location data found")

    count = len(valid)
    avg_lat = sum(r.positioning_data.latitude for r in valid) / count
    avg_lon = sum(r.positioning_data.longitude for r in valid) / count
    avg_accuracy = _trunc_div(sum(r.positioning_data.accuracy for r in valid), count)
    link = f"https://maps.google.com/maps?q={avg_lat:.6f},{avg_lon:.6f}"

    if fmt in ("json", "yaml"):
        output: dict[str, Any] = {
            "estimated_location": {
                "latitude": avg_lat,
                "longitude": avg_lon,
                "accuracy_meters": avg_accuracy,
                "google_maps_link": link,
                "access_points_used": count,
                "note": SIMPLE_LOCATION_NOTE,
            }
        }
        if show_aps:
            output["access_points"] = [r.to_dict() for r in valid]
        return _to_json(output)

    text = (
        f"Estimated Location (centroid of {count} access points):\n"
        f"  Latitude:     {avg_lat:.6f}\n"
        f"  Longitude:    {avg_lon:.6f}\n"
        f"  Accuracy:     ~{avg_accuracy} meters (average)\n"
        f"  Google Maps:  {link}\n"
        f"  Note:         {SIMPLE_LOCATION_NOTE}\n"
    )
    if show_aps:
        text += "\nIndividual Access Points:\n" + render_table(valid)
    return text


def render_scan_results(wifi_inputs: Sequence[WifiInput], fmt: str) -> str:
    """Render scanned networks as JSON, locate arguments ("args") or a table."""
    if fmt == "json":
        return _to_json([item.to_dict() for item in wifi_inputs] if wifi_inputs else None)

    if fmt == "args":
        words = "".join(
            f"{item.bssid}:{item.rssi} " if item.rssi is not None else f"{item.bssid} "
            for item in wifi_inputs
        )
        return words + "\n"

    lines = [f"{'BSSID':<18} {'RSSI':<10}", f"{'-' * 18} {'-' * 10}"]
    for item in wifi_inputs:
        rssi = "N/A" if item.rssi is None else f"{item.rssi} dBm"
        lines.append(f"{item.bssid:<18} {rssi:<10}")
    lines.append("")
    lines.append(f"Found {len(wifi_inputs)} WiFi networks")
    return "\n".join(lines) + "\n"