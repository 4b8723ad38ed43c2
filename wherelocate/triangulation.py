"""Position estimation from several located access points."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from typing import Any, Iterable, Sequence

from .types import WifiApPositioningData

EARTH_RADIUS_M = 6371000.0
DEFAULT_ITERATIONS = 100


class TriangulationError(ValueError):
    """Raised when no position can be estimated."""


@dataclass
class Point:
    lat: float
    lon: float
    variance: float = 0.0


@dataclass
class Measurement:
    position: Point
    distance: float = 0.0
    distance_var: float = 0.0
    probability: float = 0.0
    rssi: int | None = None
    is_real: bool = True


@dataclass
class TriangulationResult:
    position: Point
    estimated_accuracy: float
    used_access_points: int
    confidence_score: float

    def google_maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.position.lat:.6f},{self.position.lon:.6f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "Position": {
                "Lat": self.position.lat,
                "Lon": self.position.lon,
                "Variance": self.position.variance,
            },
            "EstimatedAccuracy": self.estimated_accuracy,
            "UsedAccessPoints": self.used_access_points,
            "ConfidenceScore": self.confidence_score,
            "google_maps_link": self.google_maps_link(),
        }


def estimate_distance_from_rssi(rssi: int) -> tuple[float, float]:
    """Return (distance in metres, variance) from a log-distance path loss model."""
    tx_power = 20.0
    path_loss_exponent = 2.0
    reference_distance = 1.0
    shadowing_std_dev = 8.0
    reference_loss = 40.0

    if rssi >= tx_power:
        return 1.0, 1.0

    path_loss = tx_power - float(rssi) - reference_loss
    distance = reference_distance * 10 ** (path_loss / (10.0 * path_loss_exponent))
    variance = max(1.0, distance * shadowing_std_dev / 10.0)

    if distance < 1.0:
        distance, variance = 1.0, 1.0
    if distance > 1000.0:
        distance, variance = 1000.0, 100.0
    return distance, variance


def convert_to_measurements(wifi_aps: Iterable[WifiApPositioningData]) -> list[Measurement]:
    """Turn located access points into measurements; unlocated ones are skipped."""
    measurements = []
    for ap in wifi_aps:
        data = ap.positioning_data
        if data is None:
            continue
        measurement = Measurement(
            position=Point(data.latitude, data.longitude, float(data.accuracy) ** 2),
            rssi=ap.rssi,
            is_real=True,
        )
        if ap.rssi is not None:
            measurement.distance, measurement.distance_var = estimate_distance_from_rssi(ap.rssi)
        else:
            measurement.distance = float(data.accuracy) * 2
            measurement.distance_var = measurement.distance * 0.5
        measurements.append(measurement)

    if not measurements:
        raise TriangulationError("no usable measurements for triangulation")
    return measurements


def _centroid(measurements: Sequence[Measurement]) -> Point:
    sum_lat = sum_lon = sum_weight = 0.0
    for m in measurements:
        weight = 1.0 / (1.0 + m.position.variance)
        sum_lat += m.position.lat * weight
        sum_lon += m.position.lon * weight
        sum_weight += weight
    if sum_weight > 0:
        return Point(sum_lat / sum_weight, sum_lon / sum_weight)
    count = len(measurements)
    return Point(sum_lat / count, sum_lon / count)


def _confidence_score(used_aps: int, total_probability: float, total: int) -> float:
    if used_aps == 0:
        return 0.0
    ap_bonus = min(0.4, (used_aps - 1) * 0.1)
    probability_bonus = min(0.3, total_probability / total * 0.3)
    return min(1.0, 0.3 + ap_bonus + probability_bonus)


def em_multilateration(
    measurements: Sequence[Measurement],
    initial_guess: Point | None = None,
    iterations: int = DEFAULT_ITERATIONS,
    rng: random.Random | None = None,
) -> TriangulationResult:
    """Estimate a position with an expectation-maximisation multilateration."""
    if not measurements:
        raise TriangulationError("no measurements provided")

    if len(measurements) == 1:
        m = measurements[0]
        variance = m.position.variance + m.distance_var
        return TriangulationResult(
            position=Point(m.position.lat, m.position.lon, variance),
            estimated_accuracy=math.sqrt(variance),
            used_access_points=1,
            confidence_score=0.3,
        )

    if rng is None:
        rng = random.Random()

    if initial_guess is not None:
        estimate = replace(initial_guess)
    else:
        estimate = _centroid(measurements)
        estimate.variance = 100.0

    working = [replace(m, position=replace(m.position)) for m in measurements]

    for _ in range(iterations):
        m = working[rng.randrange(len(working))]

        lat_delta = estimate.lat - m.position.lat
        lon_delta = estimate.lon - m.position.lon
        estimated_distance = haversine_distance(
            estimate.lat, estimate.lon, m.position.lat, m.position.lon
        )
        expected_variance = math.sqrt(
            m.position.variance + m.distance_var + estimate.variance
        )

        distance_error = abs(m.distance - estimated_distance)
        if distance_error > expected_variance and estimated_distance > 0.0:
            m.probability = m.distance / estimated_distance - 1.0
        else:
            m.probability = 0.0

        delta_lat = lat_delta * m.probability
        delta_lon = lon_delta * m.probability
        if not m.is_real:
            m.position.lat -= delta_lat
            m.position.lon -= delta_lon
        estimate.lat += delta_lat
        estimate.lon += delta_lon

    sum_weight = 0.0
    weighted_variance = 0.0
    for m in working:
        weight = m.probability + 1.0
        weighted_variance += weight * (m.position.variance + m.distance_var)
        sum_weight += weight
    estimate.variance = weighted_variance / sum_weight if sum_weight > 0.0 else 100.0

    used_aps = sum(1 for m in working if m.probability > 0.1)
    total_probability = sum(abs(m.probability) for m in working)

    return TriangulationResult(
        position=estimate,
        estimated_accuracy=math.sqrt(estimate.variance),
        used_access_points=used_aps,
        confidence_score=_confidence_score(used_aps, total_probability, len(measurements)),
    )


def triangulate_position(
    wifi_aps: Iterable[WifiApPositioningData], rng: random.Random | None = None
) -> TriangulationResult:
    """Estimate a position from located access points."""
    measurements = convert_to_measurements(wifi_aps)
    return em_multilateration(measurements, None, DEFAULT_ITERATIONS, rng)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two points given in degrees."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c