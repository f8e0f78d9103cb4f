from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import pickle
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from va_annotate import (
    generate_environment_data,
    generate_render_settings,
    generate_terrain_data,
    generate_weather_data,
)
from va_profile import (
    ALGORITHM_TAG,
    DEFAULT_POINTS_PER_KM,
    DEFAULT_SEED,
    ClimbSummary,
    ElevationProfile,
    InvalidClimbSummary,
    SideRef,
    _StageProfiler,
    generate_elevation_profile,
)


DATA_VERSION = "2.0"
DATA_SOURCES = ["synthetic_elevation", "calculated_terrain", "synthetic_weather"]


# -----------------
# Configuration
# -----------------

def _coerce_side(value: Any) -> Optional[SideRef]:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    if not text:
        return None
    return int(text) if text.isdigit() else text


@dataclass
class EnrichConfig:
    seed: int = DEFAULT_SEED
    points_per_km: int = DEFAULT_POINTS_PER_KM
    side: Optional[SideRef] = None
    sides: Dict[str, SideRef] = field(default_factory=dict)
    force: bool = False
    data_version: str = DATA_VERSION

    def side_for(self, climb_name: str) -> SideRef:
        for name, side in self.sides.items():
            if name.strip().lower() == climb_name.strip().lower():
                return side
        if self.side is None:
            raise InvalidClimbSummary(f"{climb_name}: no climb side selected (use --side or a 'sides' entry)")
        return self.side


def load_enrich_config(path: str) -> EnrichConfig:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: config must be a JSON object")
    cfg = EnrichConfig()
    if "seed" in data:
        cfg.seed = int(data["seed"])
    if "points_per_km" in data:
        cfg.points_per_km = int(data["points_per_km"])
    if "side" in data:
        cfg.side = _coerce_side(data["side"])
    for name, side in (data.get("sides") or {}).items():
        coerced = _coerce_side(side)
        if coerced is None:
            logging.warning("Ignoring empty side override for %s", name)
            continue
        cfg.sides[str(name)] = coerced
    if "force" in data:
        cfg.force = bool(data["force"])
    if "data_version" in data:
        cfg.data_version = str(data["data_version"])
    return cfg


# -----------------
# Profile cache
# -----------------

CacheKey = Tuple[str, ClimbSummary, str, int, int]


class ProfileCache:
    """Generated profiles keyed by algorithm tag, climb statistics, side, seed and density.

    Lives in memory; when ``cache_dir`` is given each entry is also pickled there
    so later passes can reuse it.
    """

    def __init__(self, cache_dir: Optional[str] = None) -> None:
        self.cache_dir = cache_dir
        self.hits = 0
        self.misses = 0
        self._entries: Dict[CacheKey, ElevationProfile] = {}
        if cache_dir:
            os.makedirs(cache_dir, exist_ok=True)

    def __len__(self) -> int:
        return len(self._entries)

    def _path_for(self, key: CacheKey) -> Optional[str]:
        if not self.cache_dir:
            return None
        digest = hashlib.sha1(repr(key).encode("utf-8")).hexdigest()
        return os.path.join(self.cache_dir, f"{digest}.pkl")

    def _load(self, key: CacheKey) -> Optional[ElevationProfile]:
        path = self._path_for(key)
        if path is None or not os.path.exists(path):
            return None
        try:
            with open(path, "rb") as fh:
                data = pickle.load(fh)
        except (OSError, pickle.UnpicklingError, EOFError) as exc:
            logging.warning("Ignoring unreadable cache entry %s: %s", path, exc)
            return None
        if not isinstance(data, dict) or data.get("key") != key:
            return None
        profile = data.get("profile")
        return profile if isinstance(profile, ElevationProfile) else None

    def _save(self, key: CacheKey, profile: ElevationProfile) -> None:
        path = self._path_for(key)
        if path is None:
            return
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "wb") as fh:
                pickle.dump({"key": key, "profile": profile}, fh, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_path, path)
        except OSError as exc:
            logging.warning("Failed to write cache entry %s: %s", path, exc)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def get_or_create(
        self,
        summary: ClimbSummary,
        side: SideRef,
        seed: int,
        points_per_km: int,
        factory: Callable[[], ElevationProfile],
    ) -> ElevationProfile:
        key: CacheKey = (ALGORITHM_TAG, summary, summary.select_side(side).side, seed, points_per_km)
        profile = self._entries.get(key)
        if profile is None:
            profile = self._load(key)
            if profile is not None:
                self._entries[key] = profile
        if profile is not None:
            self.hits += 1
            return profile
        self.misses += 1
        profile = factory()
        self._entries[key] = profile
        self._save(key, profile)
        return profile


# -----------------
# Documents
# -----------------

def load_climb_documents(path: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("cols"), list):
        data = data["cols"]
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of climb documents or {{\"cols\": [...]}}")
    return data


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_climb_documents(path: str, docs: List[Dict[str, Any]]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(docs, f, indent=2, ensure_ascii=False, default=_json_default)
    logging.info("Wrote: %s", path)


# -----------------
# Enrichment pass
# -----------------

@dataclass
class EnrichResult:
    documents: List[Dict[str, Any]]
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def enrich_climb(
    doc: Dict[str, Any],
    config: EnrichConfig,
    cache: Optional[ProfileCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    summary = ClimbSummary.from_document(doc)
    side = config.side_for(summary.name)

    def _build() -> ElevationProfile:
        return generate_elevation_profile(
            summary,
            side,
            seed=config.seed,
            points_per_km=config.points_per_km,
            generated_at=now,
        )

    if cache is not None:
        profile = cache.get_or_create(summary, side, config.seed, config.points_per_km, _build)
        # cached entries carry the timestamp of the pass that built them
        if profile.metadata.generated_at != now:
            profile = replace(profile, metadata=replace(profile.metadata, generated_at=now))
    else:
        profile = _build()

    terrain = generate_terrain_data(summary, seed=config.seed, generated_at=now)
    environment = generate_environment_data(summary)
    weather = generate_weather_data(summary, generated_at=now)
    render = generate_render_settings(summary, seed=config.seed)

    enriched = copy.deepcopy(doc)
    enriched["elevation_profile"] = profile.to_document()
    enriched["visualization3D"] = {
        "terrain": terrain.to_document(),
        "environment": environment.to_document(),
        "weather": weather.to_document(),
        "renderSettings": render.to_document(),
    }
    enriched["metadata"] = {
        "lastUpdated": now,
        "dataVersion": config.data_version,
        "dataSource": list(DATA_SOURCES),
        "verificationStatus": "unverified",
    }
    enriched["updatedAt"] = now
    return enriched


def enrich_climbs(
    docs: List[Dict[str, Any]],
    config: EnrichConfig,
    cache: Optional[ProfileCache] = None,
    profiler: Optional[_StageProfiler] = None,
) -> EnrichResult:
    result = EnrichResult(documents=[])
    total = len(docs)
    for idx, doc in enumerate(docs, start=1):
        label = doc.get("name", f"#{idx}") if isinstance(doc, dict) else f"#{idx}"
        if isinstance(doc, dict) and doc.get("elevation_profile") and not config.force:
            logging.info("Climb %d/%d: %s already enriched; skipping", idx, total, label)
            result.documents.append(doc)
            result.skipped += 1
            continue
        logging.info("Climb %d/%d: %s", idx, total, label)
        try:
            enriched = enrich_climb(doc, config, cache=cache)
        except InvalidClimbSummary as exc:
            logging.error("Climb %d/%d: %s", idx, total, exc)
            result.documents.append(doc)
            result.failed += 1
            result.errors.append(str(exc))
            continue
        result.documents.append(enriched)
        result.succeeded += 1
        if profiler is not None:
            profiler.lap(str(label)[:18])

    logging.info(
        "Enrichment done: %d enriched, %d skipped, %d failed",
        result.succeeded,
        result.skipped,
        result.failed,
    )
    if cache is not None:
        logging.info("Profile cache: %d hit(s), %d miss(es)", cache.hits, cache.misses)
    return result
