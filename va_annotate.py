from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from va_profile import DEFAULT_SEED, ClimbSummary, Difficulty, LatLon


KM_PER_DEGREE = 111.0
LAPSE_RATE_C_PER_100M = 0.6
SUMMER_BASE_C = 25.0
WINTER_BASE_C = 5.0
DEFAULT_PRECIPITATION_FACTOR = 1.0
TERRAIN_RESOLUTION_M = 30

HIGH_ALTITUDE_M = 2000.0
MEDIUM_ALTITUDE_M = 1000.0


class Biome(str, Enum):
    ALPINE = "alpine"
    PYRENEAN = "pyrenean"
    MEDITERRANEAN = "mediterranean"


_BIOME_BY_REGION: Dict[str, Biome] = {
    "savoie": Biome.ALPINE,
    "haute-savoie": Biome.ALPINE,
    "isère": Biome.ALPINE,
    "hautes-alpes": Biome.ALPINE,
    "hautes-pyrénées": Biome.PYRENEAN,
    "pyrénées-atlantiques": Biome.PYRENEAN,
    "ariège": Biome.PYRENEAN,
    "var": Biome.MEDITERRANEAN,
    "alpes-maritimes": Biome.MEDITERRANEAN,
    "corse": Biome.MEDITERRANEAN,
}

_PRECIPITATION_BY_REGION: Dict[str, float] = {
    "bretagne": 1.4,
    "normandie": 1.4,
    "hauts-de-france": 1.4,
    "provence-alpes-côte d'azur": 0.7,
    "occitanie": 0.7,
}

_GEOLOGY_BY_BIOME: Dict[Optional[Biome], List[str]] = {
    Biome.ALPINE: ["limestone_cliffs", "steep_ridges"],
    Biome.PYRENEAN: ["granite_peaks", "sharp_ridges"],
    Biome.MEDITERRANEAN: ["rocky_outcrops", "Mediterranean_scrub"],
    None: ["rolling_hills", "mixed_terrain"],
}

_QUALITY_BY_DIFFICULTY: Dict[Difficulty, str] = {
    Difficulty.EXTREME: "ultra",
    Difficulty.HARD: "high",
    Difficulty.MEDIUM: "medium",
}


def _region_key(region: Optional[str]) -> str:
    return (region or "").strip().lower()


def lookup_biome(region: Optional[str]) -> Optional[Biome]:
    """Biome for a known region, ``None`` when the region is not in the table."""
    return _BIOME_BY_REGION.get(_region_key(region))


def lookup_precipitation_factor(region: Optional[str]) -> Optional[float]:
    """Regional precipitation multiplier; ``None`` means fall back to DEFAULT_PRECIPITATION_FACTOR."""
    return _PRECIPITATION_BY_REGION.get(_region_key(region))


def _altitude_band(elevation: float) -> str:
    if elevation > HIGH_ALTITUDE_M:
        return "high"
    if elevation > MEDIUM_ALTITUDE_M:
        return "medium"
    return "low"


def _stamp(generated_at: Optional[datetime]) -> datetime:
    return generated_at or datetime.now(timezone.utc)


# -----------------
# Terrain
# -----------------

@dataclass
class BoundingBox:
    north: float
    south: float
    east: float
    west: float
    center: LatLon
    width: float
    height: float

    def to_document(self) -> Dict[str, Any]:
        return {
            "north": self.north,
            "south": self.south,
            "east": self.east,
            "west": self.west,
            "center": [self.center[0], self.center[1]],
            "width": self.width,
            "height": self.height,
        }


@dataclass
class TerrainFeature:
    type: str
    density: Optional[str] = None
    varieties: List[str] = field(default_factory=list)
    features: List[str] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"type": self.type}
        if self.density is not None:
            doc["density"] = self.density
        if self.varieties:
            doc["varieties"] = list(self.varieties)
        if self.features:
            doc["features"] = list(self.features)
        return doc


@dataclass
class PointOfInterest:
    type: str
    position: LatLon
    description: str
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "position": [self.position[0], self.position[1]],
            "description": self.description,
            "properties": dict(self.properties),
        }


@dataclass
class TerrainData:
    bounding_box: BoundingBox
    features: List[TerrainFeature]
    points_of_interest: List[PointOfInterest]
    textures: Dict[str, str]
    resolution_m: int
    biome: Optional[Biome]
    region_recognized: bool
    generated_at: datetime
    algorithm: str = "synthetic_terrain_v2"

    def to_document(self) -> Dict[str, Any]:
        return {
            "boundingBox": self.bounding_box.to_document(),
            "features": [f.to_document() for f in self.features],
            "pointsOfInterest": [p.to_document() for p in self.points_of_interest],
            "textures": dict(self.textures),
            "resolution": self.resolution_m,
            "biome": self.biome.value if self.biome is not None else None,
            "regionRecognized": self.region_recognized,
            "metadata": {"generatedAt": self.generated_at, "algorithm": self.algorithm},
        }


def calculate_bounding_box(coordinates: LatLon, distance_km: float) -> BoundingBox:
    lat, lon = coordinates
    cos_lat = math.cos(math.radians(lat))
    if cos_lat <= 1e-9:
        raise ValueError(f"Bounding box undefined at latitude {lat}")
    lat_offset = distance_km / KM_PER_DEGREE
    lon_offset = distance_km / (KM_PER_DEGREE * cos_lat)
    return BoundingBox(
        north=lat + lat_offset,
        south=lat - lat_offset,
        east=lon + lon_offset,
        west=lon - lon_offset,
        center=(lat, lon),
        width=distance_km * 2,
        height=distance_km * 2,
    )


def generate_terrain_features(summary: ClimbSummary) -> List[TerrainFeature]:
    biome = lookup_biome(summary.region)
    features: List[TerrainFeature] = []

    if summary.elevation < 1000:
        varieties = ["mediterranean", "shrubs"] if biome is Biome.MEDITERRANEAN else ["deciduous", "mixed"]
        features.append(TerrainFeature("vegetation", density="high", varieties=varieties))
    elif summary.elevation < 2000:
        varieties = ["coniferous", "alpine"] if biome is Biome.ALPINE else ["mixed", "subalpine"]
        features.append(TerrainFeature("vegetation", density="medium", varieties=varieties))
    else:
        features.append(TerrainFeature("vegetation", density="low", varieties=["alpine", "rocks"]))

    features.append(TerrainFeature("geological", features=list(_GEOLOGY_BY_BIOME[biome])))

    if summary.difficulty in (Difficulty.EXTREME, Difficulty.HARD):
        features.append(TerrainFeature("water", density="medium", features=["mountain_streams", "waterfalls"]))
    else:
        features.append(TerrainFeature("water", density="low", features=["small_streams"]))
    return features


def _jitter(center: LatLon, spread: float, rng: np.random.Generator) -> LatLon:
    d_lat, d_lon = rng.uniform(-spread / 2.0, spread / 2.0, size=2)
    return (center[0] + float(d_lat), center[1] + float(d_lon))


def generate_points_of_interest(summary: ClimbSummary, *, seed: int = DEFAULT_SEED) -> List[PointOfInterest]:
    rng = np.random.default_rng(seed)
    summit = summary.summit_coordinates()
    short_name = summary.name.split()[-1] if summary.name.split() else summary.name
    pois: List[PointOfInterest] = []

    if summary.max_gradient > 8:
        pois.append(
            PointOfInterest(
                "viewpoint",
                _jitter(summit, 0.001, rng),
                f"Panoramic viewpoint at {round(summary.elevation * 0.7)}m",
                {
                    "panoramaUrl": None,
                    "visibilityRangeKm": int(round(10 + rng.uniform(0.0, 20.0))),
                    "pointsOfInterest": [],
                },
            )
        )
    if summary.length > 15 or summary.elevation > 2000:
        pois.append(
            PointOfInterest(
                "shelter",
                _jitter(summit, 0.002, rng),
                f"Mountain hut at {round(summary.elevation * 0.6)}m",
                {
                    "name": f"Refuge du {short_name}",
                    "capacity": int(round(10 + rng.uniform(0.0, 40.0))),
                    "facilities": ["water"],
                    "openingPeriod": "May-October",
                },
            )
        )
    if summary.elevation > 2200:
        formation = "rock_formation" if rng.random() > 0.5 else "glacial_feature"
        prefix = "Aiguille" if rng.random() > 0.5 else "Éperon"
        pois.append(
            PointOfInterest(
                "geological",
                _jitter(summit, 0.003, rng),
                "Remarkable rock formation",
                {"type": formation, "name": f"{prefix} du {short_name}"},
            )
        )
    return pois


def _slug(value: str) -> str:
    return re.sub(r"\s+", "-", value.strip().lower())


def generate_terrain_data(
    summary: ClimbSummary,
    *,
    seed: int = DEFAULT_SEED,
    generated_at: Optional[datetime] = None,
) -> TerrainData:
    biome = lookup_biome(summary.region)
    if biome is None:
        logging.debug("Region '%s' not in biome table; using default geology", summary.region)
    region_slug = _slug(summary.region) or "unknown"
    difficulty_slug = summary.difficulty.value
    return TerrainData(
        bounding_box=calculate_bounding_box(summary.summit_coordinates(), summary.length * 1.5),
        features=generate_terrain_features(summary),
        points_of_interest=generate_points_of_interest(summary, seed=seed),
        textures={
            "terrain": f"terrains/{region_slug}_{difficulty_slug}.jpg",
            "normal": f"normals/{region_slug}_{difficulty_slug}.jpg",
            "height": f"heights/{region_slug}_{difficulty_slug}.jpg",
        },
        resolution_m=TERRAIN_RESOLUTION_M,
        biome=biome,
        region_recognized=biome is not None,
        generated_at=_stamp(generated_at),
    )


# -----------------
# Weather
# -----------------

@dataclass
class TemperatureRange:
    min: float
    max: float
    avg: float

    def to_document(self) -> Dict[str, float]:
        return {"min": self.min, "max": self.max, "avg": self.avg}


@dataclass
class SeasonOutlook:
    accessibility: str
    temperature: TemperatureRange
    snow: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {"accessibility": self.accessibility, "temperature": self.temperature.to_document()}
        if self.snow is not None:
            doc["snow"] = self.snow
        return doc


@dataclass
class WeatherData:
    elevation: float
    summer: TemperatureRange
    winter: TemperatureRange
    annual_precipitation_mm: float
    precipitation_factor: float
    region_recognized: bool
    snow_days: int
    wind_avg_speed_kmh: int
    prevailing_wind: str
    storm_frequency: str
    fog_days: int
    seasonal: Dict[str, SeasonOutlook]
    typical: Dict[str, Any]
    generated_at: datetime
    algorithm: str = "synthetic_weather_v2"
    note: str = "Data is synthetic and for visualization purposes only"

    def to_document(self) -> Dict[str, Any]:
        return {
            "climate": {
                "elevation": self.elevation,
                "temperatureRange": {"summer": self.summer.to_document(), "winter": self.winter.to_document()},
                "precipitation": {
                    "annual": self.annual_precipitation_mm,
                    "factor": self.precipitation_factor,
                    "regionRecognized": self.region_recognized,
                    "snowDays": self.snow_days,
                },
                "wind": {"avgSpeed": self.wind_avg_speed_kmh, "prevailingDirection": self.prevailing_wind},
                "extremeConditions": {"stormFrequency": self.storm_frequency, "fogDays": self.fog_days},
            },
            "seasonal": {name: s.to_document() for name, s in self.seasonal.items()},
            "typical": self.typical,
            "metadata": {"generatedAt": self.generated_at, "algorithm": self.algorithm, "note": self.note},
        }


def generate_weather_data(summary: ClimbSummary, *, generated_at: Optional[datetime] = None) -> WeatherData:
    band = _altitude_band(summary.elevation)
    high = band == "high"
    medium = band == "medium"

    lapse = summary.elevation / 100.0 * LAPSE_RATE_C_PER_100M
    summer = SUMMER_BASE_C - lapse
    winter = WINTER_BASE_C - lapse

    factor = lookup_precipitation_factor(summary.region)
    recognized = factor is not None
    if factor is None:
        factor = DEFAULT_PRECIPITATION_FACTOR
    altitude_mult = {"high": 1.3, "medium": 1.1, "low": 1.0}[band]

    seasonal = {
        "spring": SeasonOutlook(
            accessibility="difficult" if high else "moderate",
            snow="likely" if high else "possible",
            temperature=TemperatureRange(winter, summer, (winter + summer) / 2),
        ),
        "summer": SeasonOutlook(
            accessibility="good",
            temperature=TemperatureRange(summer - 5, summer + 10, summer),
        ),
        "autumn": SeasonOutlook(
            accessibility="moderate" if high else "good",
            snow="possible" if high else "rare",
            temperature=TemperatureRange(winter + 5, summer - 5, (winter + summer) / 2),
        ),
        "winter": SeasonOutlook(
            accessibility="closed" if high else ("difficult" if medium else "moderate"),
            snow="certain" if high else ("likely" if medium else "possible"),
            temperature=TemperatureRange(winter - 10, winter + 5, winter),
        ),
    }
    typical = {
        "bestTime": "July-August" if high else "June-September",
        "worstTime": "November-April" if high else "December-February",
        "morningConditions": {
            "summer": "clear, cool" if high else "clear, mild",
            "winter": "freezing, often snowy" if high else "cold, possible frost",
        },
        "afternoonConditions": {
            "summer": "chance of thunderstorms" if high else "warm, occasional showers",
            "winter": "very cold, snow" if high else "cold, overcast",
        },
    }
    return WeatherData(
        elevation=summary.elevation,
        summer=TemperatureRange(summer - 10, summer + 5, summer),
        winter=TemperatureRange(winter - 10, winter + 5, winter),
        annual_precipitation_mm=1000.0 * factor * altitude_mult,
        precipitation_factor=factor,
        region_recognized=recognized,
        snow_days={"high": 90, "medium": 40, "low": 10}[band],
        wind_avg_speed_kmh={"high": 30, "medium": 20, "low": 15}[band],
        prevailing_wind="west",
        storm_frequency=band,
        fog_days={"high": 100, "medium": 60, "low": 30}[band],
        seasonal=seasonal,
        typical=typical,
        generated_at=_stamp(generated_at),
    )


# -----------------
# Environment
# -----------------

@dataclass
class VegetationZone:
    type: str
    elevation_range: Tuple[float, float]
    dominant_species: List[str]
    density: float

    def to_document(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "elevationRange": [self.elevation_range[0], self.elevation_range[1]],
            "dominantSpecies": list(self.dominant_species),
            "density": self.density,
        }


@dataclass
class ClimateProfile:
    type: str
    average_temperature: float
    precipitation_monthly: List[int]
    snow_months: List[int]
    wind_speed: float
    sunny_days: float
    region_recognized: bool

    def to_document(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "averageTemperature": self.average_temperature,
            "precipitationMonthly": list(self.precipitation_monthly),
            "snowMonths": list(self.snow_months),
            "windSpeed": self.wind_speed,
            "sunnyDays": self.sunny_days,
            "regionRecognized": self.region_recognized,
        }


@dataclass
class EnvironmentData:
    vegetation_zones: List[VegetationZone]
    climate: ClimateProfile
    terrain_type: str
    terrain_features: List[TerrainFeature] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return {
            "vegetation": {"zones": [z.to_document() for z in self.vegetation_zones]},
            "climate": self.climate.to_document(),
            "terrain": {
                "type": self.terrain_type,
                "features": [f.to_document() for f in self.terrain_features],
            },
        }


_ZONES: Tuple[VegetationZone, ...] = (
    VegetationZone("forest", (0.0, 1000.0), ["oak", "beech", "pine"], 0.8),
    VegetationZone("coniferous_forest", (1000.0, 1800.0), ["spruce", "fir", "larch"], 0.7),
    VegetationZone("alpine_meadow", (1800.0, 2400.0), ["alpine_grass", "edelweiss", "gentian"], 0.5),
    VegetationZone("rock", (2400.0, 3500.0), ["lichen", "moss"], 0.2),
)

_ALPINE_CLIMATE_REGIONS = {"savoie", "haute-savoie", "isère"}


def vegetation_zones_for(elevation: float) -> List[VegetationZone]:
    if elevation < 1000:
        picked = _ZONES[:1]
    elif elevation < 1800:
        picked = _ZONES[:2]
    elif elevation <= 2400:
        picked = _ZONES[:3]
    else:
        picked = _ZONES
    return [VegetationZone(z.type, z.elevation_range, list(z.dominant_species), z.density) for z in picked]


def climate_profile_for(summary: ClimbSummary) -> ClimateProfile:
    elevation = summary.elevation
    key = _region_key(summary.region)
    if "alpes" in key or key in _ALPINE_CLIMATE_REGIONS:
        return ClimateProfile(
            type="alpine",
            average_temperature=15 - elevation / 300,
            precipitation_monthly=[100, 90, 100, 120, 130, 120, 100, 120, 100, 120, 150, 120],
            snow_months=[11, 12, 1, 2, 3, 4] if elevation > 1500 else [12, 1, 2, 3],
            wind_speed=10 + elevation / 200,
            sunny_days=180 - elevation / 100,
            region_recognized=True,
        )
    if "pyrénées" in key or summary.country.strip().lower() in ("spain", "espagne", "españa"):
        return ClimateProfile(
            type="continental",
            average_temperature=17 - elevation / 300,
            precipitation_monthly=[80, 70, 90, 100, 110, 80, 60, 70, 90, 110, 120, 90],
            snow_months=[11, 12, 1, 2, 3] if elevation > 1800 else [12, 1, 2],
            wind_speed=8 + elevation / 250,
            sunny_days=210 - elevation / 100,
            region_recognized=True,
        )
    return ClimateProfile(
        type="temperate",
        average_temperature=16 - elevation / 300,
        precipitation_monthly=[90, 80, 90, 100, 110, 90, 80, 90, 100, 110, 130, 100],
        snow_months=[12, 1, 2, 3] if elevation > 1600 else [1, 2],
        wind_speed=9 + elevation / 220,
        sunny_days=195 - elevation / 100,
        region_recognized=False,
    )


def generate_environment_data(summary: ClimbSummary) -> EnvironmentData:
    if summary.elevation > 2200:
        terrain_type = "rocky"
    elif summary.elevation > 1800:
        terrain_type = "alpine"
    else:
        terrain_type = "forested"
    return EnvironmentData(
        vegetation_zones=vegetation_zones_for(summary.elevation),
        climate=climate_profile_for(summary),
        terrain_type=terrain_type,
        terrain_features=generate_terrain_features(summary),
    )


# -----------------
# Render settings
# -----------------

@dataclass
class RenderSettings:
    quality: str
    texture_resolution: int
    shadow_quality: str
    vegetation_density: float
    water_effects: bool
    atmospheric_effects: bool
    lighting_preset: str
    fog_density: float
    render_distance: int

    def to_document(self) -> Dict[str, Any]:
        return {
            "quality": self.quality,
            "textureResolution": self.texture_resolution,
            "shadowQuality": self.shadow_quality,
            "vegetationDensity": self.vegetation_density,
            "waterEffects": self.water_effects,
            "atmosphericEffects": self.atmospheric_effects,
            "lightingPreset": self.lighting_preset,
            "fogDensity": self.fog_density,
            "renderDistance": self.render_distance,
        }


def determine_quality_level(difficulty: Any) -> str:
    try:
        tier = Difficulty.parse(difficulty)
    except ValueError:
        return "standard"
    return _QUALITY_BY_DIFFICULTY.get(tier, "standard")


# (threshold, low, width) per elevation band, highest first
_VEGETATION_BANDS: Tuple[Tuple[float, float, float], ...] = (
    (2000.0, 0.1, 0.2),
    (1500.0, 0.3, 0.3),
    (1000.0, 0.5, 0.3),
)


def calculate_vegetation_density(elevation: float, rng: np.random.Generator) -> float:
    for threshold, low, width in _VEGETATION_BANDS:
        if elevation > threshold:
            return low + float(rng.random()) * width
    return 0.7 + float(rng.random()) * 0.3


def generate_render_settings(summary: ClimbSummary, *, seed: int = DEFAULT_SEED) -> RenderSettings:
    quality = determine_quality_level(summary.difficulty)
    rng = np.random.default_rng(seed)
    return RenderSettings(
        quality=quality,
        texture_resolution={"ultra": 4096, "high": 2048}.get(quality, 1024),
        shadow_quality="high" if quality in ("ultra", "high") else "medium",
        vegetation_density=calculate_vegetation_density(summary.elevation, rng),
        water_effects=True,
        atmospheric_effects=True,
        lighting_preset="midday",
        fog_density=0.05 if summary.elevation > 1800 else 0.02,
        render_distance={"ultra": 10000, "high": 7500}.get(quality, 5000),
    )
