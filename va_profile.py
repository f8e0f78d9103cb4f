from __future__ import annotations

import csv
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np


# -----------------
# Data structures
# -----------------

LatLon = Tuple[float, float]
SideRef = Union[int, str]

ALGORITHM_TAG = "synthetic_generation_v2"
DEFAULT_POINTS_PER_KM = 20
DEFAULT_SEED = 0

# Gradient (%) times length (km) -> metres
GRADIENT_KM_TO_M = 10.0

SEGMENT_THRESHOLD_PCT = 1.5
MIN_LOCAL_GRADIENT_PCT = -5.0
MAX_GRADIENT_HEADROOM = 1.2

NOISE_BOUND = 0.1


class InvalidClimbSummary(ValueError):
    """Raised when a climb summary cannot produce a meaningful profile."""


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"

    @classmethod
    def parse(cls, value: Union[str, "Difficulty"]) -> "Difficulty":
        if isinstance(value, Difficulty):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidClimbSummary(
                f"Unknown difficulty '{value}' (expected one of: {', '.join(d.value for d in cls)})"
            ) from None


# exponent, ripple amplitude, ripple frequency, noise weight
_SHAPES: Dict[Difficulty, Tuple[float, float, float, float]] = {
    Difficulty.EXTREME: (0.7, 0.10, 10.0, 0.5),
    Difficulty.HARD: (0.8, 0.05, 8.0, 0.4),
    Difficulty.MEDIUM: (0.9, 0.02, 6.0, 0.3),
    Difficulty.EASY: (1.0, 0.01, 4.0, 0.2),
}


@dataclass(frozen=True)
class ClimbSide:
    side: str
    start_coordinates: LatLon
    end_coordinates: LatLon
    length: Optional[float] = None
    avg_gradient: Optional[float] = None
    max_gradient: Optional[float] = None


@dataclass(frozen=True)
class ClimbSummary:
    name: str
    region: str
    country: str
    elevation: float
    length: float
    avg_gradient: float
    max_gradient: float
    difficulty: Difficulty
    sides: Tuple[ClimbSide, ...]
    coordinates: Optional[LatLon] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "difficulty", Difficulty.parse(self.difficulty))
        object.__setattr__(self, "sides", tuple(self.sides))
        validate_climb_summary(self)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ClimbSummary":
        """Build a summary from a stored climb document (camelCase keys, sides under ``climbs``)."""
        if not isinstance(doc, dict):
            raise InvalidClimbSummary(f"Climb document must be an object, got {type(doc).__name__}")
        missing = [k for k in ("name", "elevation", "length", "avgGradient", "maxGradient", "difficulty", "climbs") if k not in doc]
        if missing:
            label = doc.get("name", "<unnamed>")
            raise InvalidClimbSummary(f"{label}: missing keys {missing}")
        raw_sides = doc.get("climbs") or []
        if not isinstance(raw_sides, list):
            raise InvalidClimbSummary(f"{doc['name']}: 'climbs' must be a list")
        sides: List[ClimbSide] = []
        for idx, raw in enumerate(raw_sides):
            try:
                sides.append(
                    ClimbSide(
                        side=str(raw.get("side") or idx),
                        start_coordinates=_parse_latlon(raw["startCoordinates"]),
                        end_coordinates=_parse_latlon(raw["endCoordinates"]),
                        length=_optional_float(raw.get("length")),
                        avg_gradient=_optional_float(raw.get("avgGradient")),
                        max_gradient=_optional_float(raw.get("maxGradient")),
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise InvalidClimbSummary(f"{doc['name']}: malformed side #{idx}: {exc}") from exc
        coords = doc.get("coordinates")
        try:
            return cls(
                name=str(doc["name"]),
                region=str(doc.get("region") or ""),
                country=str(doc.get("country") or ""),
                elevation=float(doc["elevation"]),
                length=float(doc["length"]),
                avg_gradient=float(doc["avgGradient"]),
                max_gradient=float(doc["maxGradient"]),
                difficulty=doc["difficulty"],
                sides=tuple(sides),
                coordinates=_parse_latlon(coords) if coords is not None else None,
            )
        except InvalidClimbSummary:
            raise
        except (TypeError, ValueError) as exc:
            raise InvalidClimbSummary(f"{doc['name']}: {exc}") from exc

    def select_side(self, side: SideRef) -> ClimbSide:
        if isinstance(side, bool):
            raise InvalidClimbSummary(f"{self.name}: side must be an index or a name")
        if isinstance(side, int):
            if 0 <= side < len(self.sides):
                return self.sides[side]
            raise InvalidClimbSummary(f"{self.name}: side index {side} out of range (0..{len(self.sides) - 1})")
        wanted = str(side).strip().lower()
        for s in self.sides:
            if s.side.strip().lower() == wanted:
                return s
        known = ", ".join(s.side for s in self.sides)
        raise InvalidClimbSummary(f"{self.name}: unknown side '{side}' (known: {known})")

    def summit_coordinates(self) -> LatLon:
        if self.coordinates is not None:
            return self.coordinates
        lats = [s.end_coordinates[0] for s in self.sides]
        lons = [s.end_coordinates[1] for s in self.sides]
        return (float(np.mean(lats)), float(np.mean(lons)))


@dataclass
class ElevationPoint:
    distance: float
    elevation: float
    gradient: float
    coordinates: LatLon


@dataclass
class Segment:
    type: str
    start_index: int
    end_index: int
    start_distance: float
    end_distance: float
    length: float
    start_elevation: float
    end_elevation: float
    elevation_change: float
    avg_gradient: float


@dataclass
class ProfileStats:
    min_elevation: float
    max_elevation: float
    elevation_gain: float
    elevation_loss: float
    segment_counts: Dict[str, int] = field(default_factory=dict)


@dataclass
class ProfileMetadata:
    algorithm: str
    generated_at: datetime
    resolution_m: float
    points_per_km: int
    total_points: int
    seed: int
    side: str


@dataclass
class ElevationProfile:
    points: List[ElevationPoint]
    segments: List[Segment]
    stats: ProfileStats
    metadata: ProfileMetadata

    def to_document(self) -> Dict[str, Any]:
        return {
            "points": [
                {
                    "distance": p.distance,
                    "elevation": p.elevation,
                    "gradient": p.gradient,
                    "coordinates": [p.coordinates[0], p.coordinates[1]],
                }
                for p in self.points
            ],
            "segments": [
                {
                    "type": s.type,
                    "startIndex": s.start_index,
                    "endIndex": s.end_index,
                    "startDistance": s.start_distance,
                    "endDistance": s.end_distance,
                    "length": s.length,
                    "startElevation": s.start_elevation,
                    "endElevation": s.end_elevation,
                    "elevationChange": s.elevation_change,
                    "avgGradient": s.avg_gradient,
                }
                for s in self.segments
            ],
            "stats": {
                "minElevation": self.stats.min_elevation,
                "maxElevation": self.stats.max_elevation,
                "elevationGain": self.stats.elevation_gain,
                "elevationLoss": self.stats.elevation_loss,
                "segments": dict(self.stats.segment_counts),
            },
            "metadata": {
                "resolution": f"{self.metadata.resolution_m:g}m",
                "totalPoints": self.metadata.total_points,
                "generatedAt": self.metadata.generated_at,
                "algorithm": self.metadata.algorithm,
                "pointsPerKm": self.metadata.points_per_km,
                "seed": self.metadata.seed,
                "side": self.metadata.side,
            },
        }


# -----------------
# Validation
# -----------------

def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _parse_latlon(value: Any) -> LatLon:
    if isinstance(value, dict):
        lat = value.get("lat", value.get("latitude"))
        lon = value.get("lon", value.get("lng", value.get("longitude")))
        if lat is None or lon is None:
            raise ValueError(f"coordinate object lacks lat/lon: {value}")
        return (float(lat), float(lon))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return (float(value[0]), float(value[1]))
    raise ValueError(f"expected [lat, lon], got {value!r}")


def _check_latlon(name: str, what: str, coords: LatLon) -> None:
    lat, lon = coords
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidClimbSummary(f"{name}: {what} must be finite, got {coords}")
    if abs(lat) > 90.0 or abs(lon) > 180.0:
        raise InvalidClimbSummary(f"{name}: {what} out of range, got {coords}")


def validate_climb_summary(summary: ClimbSummary) -> None:
    name = summary.name or "<unnamed>"
    for label in ("elevation", "length", "avg_gradient", "max_gradient"):
        value = getattr(summary, label)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidClimbSummary(f"{name}: {label} must be numeric, got {value!r}")
        if math.isnan(value) or math.isinf(value):
            raise InvalidClimbSummary(f"{name}: {label} must be finite, got {value}")
        if value < 0:
            raise InvalidClimbSummary(f"{name}: {label} must not be negative, got {value}")
    if summary.length <= 0:
        raise InvalidClimbSummary(f"{name}: length must be positive, got {summary.length}")
    if not summary.sides:
        raise InvalidClimbSummary(f"{name}: at least one climb side is required")
    for s in summary.sides:
        _check_latlon(name, f"side '{s.side}' start", s.start_coordinates)
        _check_latlon(name, f"side '{s.side}' end", s.end_coordinates)
    if summary.coordinates is not None:
        _check_latlon(name, "summit coordinates", summary.coordinates)
    # terrain bounding boxes need a finite longitude scale at the summit
    summit_lat = summary.summit_coordinates()[0]
    if abs(summit_lat) >= 90.0:
        raise InvalidClimbSummary(f"{name}: summit latitude {summit_lat} is at a pole")


# -----------------
# Profile synthesis
# -----------------

def _point_count(length_km: float, points_per_km: int) -> int:
    return int(math.ceil(round(length_km * points_per_km, 9)))


def _knot_noise(progress: np.ndarray, length_km: float, rng: np.random.Generator) -> np.ndarray:
    n_knots = max(2, int(math.ceil(length_km)) + 1)
    knots_x = np.linspace(0.0, 1.0, n_knots)
    knots_y = rng.uniform(-NOISE_BOUND, NOISE_BOUND, size=n_knots)
    return np.interp(progress, knots_x, knots_y)


def _shape_factor(progress: np.ndarray, difficulty: Difficulty, noise: np.ndarray) -> np.ndarray:
    exponent, amp, freq, weight = _SHAPES[difficulty]
    raw = np.power(progress, exponent) + amp * np.sin(progress * freq) + weight * noise
    # pin factor(0) = 0 and factor(1) = 1
    return raw - (1.0 - progress) * raw[0] - progress * (raw[-1] - 1.0)


def generate_elevation_profile(
    summary: ClimbSummary,
    side: SideRef,
    *,
    seed: int = DEFAULT_SEED,
    points_per_km: int = DEFAULT_POINTS_PER_KM,
    generated_at: Optional[datetime] = None,
) -> ElevationProfile:
    if points_per_km <= 0:
        raise InvalidClimbSummary(f"points_per_km must be positive, got {points_per_km}")
    chosen = summary.select_side(side)
    length = float(summary.length)
    summit = float(summary.elevation)
    n = _point_count(length, points_per_km)

    estimated_start = summit - summary.avg_gradient * length * GRADIENT_KM_TO_M
    elevation_range = summit - estimated_start
    max_local = summary.max_gradient * MAX_GRADIENT_HEADROOM

    rng = np.random.default_rng(seed)
    if n >= 2:
        distances = np.linspace(0.0, length, n)
        progress = distances / length
        progress[-1] = 1.0
        noise = _knot_noise(progress, length, rng)
        factor = _shape_factor(progress, summary.difficulty, noise)
        elevations = estimated_start + factor * elevation_range
        elevations[0] = estimated_start
        elevations[-1] = summit
        spacing_m = length / (n - 1) * 1000.0
        gradients = np.empty(n, dtype=np.float64)
        gradients[1:] = np.diff(elevations) / spacing_m * 100.0
        gradients[0] = gradients[1]
    else:
        distances = np.array([length])
        progress = np.array([1.0])
        elevations = np.array([summit])
        spacing_m = length * 1000.0
        gradients = np.array([summary.avg_gradient], dtype=np.float64)
    gradients = np.clip(gradients, MIN_LOCAL_GRADIENT_PCT, max_local)

    (lat0, lon0), (lat1, lon1) = chosen.start_coordinates, chosen.end_coordinates
    lats = lat0 + progress * (lat1 - lat0)
    lons = lon0 + progress * (lon1 - lon0)

    points = [
        ElevationPoint(
            distance=float(distances[i]),
            elevation=float(elevations[i]),
            gradient=float(gradients[i]),
            coordinates=(float(lats[i]), float(lons[i])),
        )
        for i in range(n)
    ]
    segments = classify_segments(points)
    stats = compute_profile_stats(points, segments)
    metadata = ProfileMetadata(
        algorithm=ALGORITHM_TAG,
        generated_at=generated_at or datetime.now(timezone.utc),
        resolution_m=round(spacing_m, 3),
        points_per_km=points_per_km,
        total_points=n,
        seed=seed,
        side=chosen.side,
    )
    logging.debug(
        "Generated profile for %s (side=%s): %d points, %d segments",
        summary.name,
        chosen.side,
        n,
        len(segments),
    )
    return ElevationProfile(points=points, segments=segments, stats=stats, metadata=metadata)


# -----------------
# Segment classification
# -----------------

def classify_gradient(gradient: float) -> str:
    if gradient > SEGMENT_THRESHOLD_PCT:
        return "climb"
    if gradient < -SEGMENT_THRESHOLD_PCT:
        return "descent"
    return "flat"


def _close_segment(points: Sequence[ElevationPoint], kind: str, start: int, end: int) -> Segment:
    # point i's gradient covers the interval (i-1, i]
    anchor = max(start - 1, 0)
    first = points[anchor]
    last = points[end]
    length = last.distance - first.distance
    change = last.elevation - first.elevation
    avg = change / (length * GRADIENT_KM_TO_M) if length > 0 else 0.0
    return Segment(
        type=kind,
        start_index=start,
        end_index=end,
        start_distance=first.distance,
        end_distance=last.distance,
        length=length,
        start_elevation=first.elevation,
        end_elevation=last.elevation,
        elevation_change=change,
        avg_gradient=avg,
    )


def classify_segments(points: Sequence[ElevationPoint]) -> List[Segment]:
    segments: List[Segment] = []
    if not points:
        return segments
    current = classify_gradient(points[0].gradient)
    start = 0
    for i in range(1, len(points)):
        kind = classify_gradient(points[i].gradient)
        if kind != current:
            segments.append(_close_segment(points, current, start, i - 1))
            current = kind
            start = i
    segments.append(_close_segment(points, current, start, len(points) - 1))
    return segments


def compute_profile_stats(points: Sequence[ElevationPoint], segments: Sequence[Segment]) -> ProfileStats:
    counts = {"total": len(segments), "climb": 0, "descent": 0, "flat": 0}
    for s in segments:
        counts[s.type] += 1
    if not points:
        return ProfileStats(0.0, 0.0, 0.0, 0.0, counts)
    elevations = [p.elevation for p in points]
    gain = sum(s.elevation_change for s in segments if s.type == "climb")
    loss = sum(abs(s.elevation_change) for s in segments if s.type == "descent")
    return ProfileStats(
        min_elevation=min(elevations),
        max_elevation=max(elevations),
        elevation_gain=float(gain),
        elevation_loss=float(loss),
        segment_counts=counts,
    )


# -----------------
# Export helpers
# -----------------

def _segment_type_per_point(profile: ElevationProfile) -> List[str]:
    out = [""] * len(profile.points)
    for s in profile.segments:
        for i in range(s.start_index, s.end_index + 1):
            out[i] = s.type
    return out


def write_profile_csv(profile: ElevationProfile, path: str) -> None:
    kinds = _segment_type_per_point(profile)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["distance_km", "elevation_m", "gradient_pct", "lat", "lon", "segment_type"])
        for p, kind in zip(profile.points, kinds):
            writer.writerow([
                round(p.distance, 4),
                round(p.elevation, 3),
                round(p.gradient, 3),
                round(p.coordinates[0], 6),
                round(p.coordinates[1], 6),
                kind,
            ])
    logging.info("Wrote: %s", path)


# -----------------
# Logging / diagnostics
# -----------------

class _StageProfiler:
    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self._last = time.perf_counter()

    def lap(self, label: str) -> None:
        if not self.enabled:
            return
        now = time.perf_counter()
        logging.info("Profile %-18s %.3fs", label, now - self._last)
        self._last = now


def _setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
    if log_file:
        fh = logging.FileHandler(log_file, mode="w")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(fmt, datefmt))
        logging.getLogger().addHandler(fh)
    # matplotlib findfont spam at DEBUG
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
    logging.getLogger("matplotlib.font_manager").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.INFO)
