from __future__ import annotations

# CLI orchestration for velo-altitude. Profile synthesis lives in va_profile,
# annotators in va_annotate, the batch pass in va_enrich.

import json
import logging
from typing import Any, Dict, List, Optional

import typer

from va_enrich import (
    EnrichConfig,
    ProfileCache,
    _coerce_side,
    _json_default,
    enrich_climbs,
    load_climb_documents,
    load_enrich_config,
    write_climb_documents,
)
from va_plotting import plot_elevation_profile
from va_profile import (
    DEFAULT_POINTS_PER_KM,
    DEFAULT_SEED,
    ClimbSummary,
    InvalidClimbSummary,
    _setup_logging,
    _StageProfiler,
    generate_elevation_profile,
    write_profile_csv,
)


def _find_document(docs: List[Dict[str, Any]], col: str) -> Optional[Dict[str, Any]]:
    wanted = col.strip().lower()
    for doc in docs:
        if isinstance(doc, dict) and str(doc.get("name", "")).strip().lower() == wanted:
            return doc
    return None


def _run_profile(
    input_path: str,
    col: str,
    side: str,
    output: str,
    seed: int = DEFAULT_SEED,
    points_per_km: int = DEFAULT_POINTS_PER_KM,
    json_sidecar: bool = False,
    png: Optional[str] = None,
    no_plot: bool = False,
    verbose: bool = False,
    log_file: Optional[str] = None,
) -> int:
    _setup_logging(verbose, log_file=log_file)
    try:
        docs = load_climb_documents(input_path)
    except (OSError, ValueError) as exc:
        logging.error("Failed to read %s: %s", input_path, exc)
        return 2
    doc = _find_document(docs, col)
    if doc is None:
        logging.error("Climb '%s' not found in %s", col, input_path)
        return 2

    side_ref = _coerce_side(side)
    try:
        summary = ClimbSummary.from_document(doc)
        profile = generate_elevation_profile(summary, side_ref, seed=seed, points_per_km=points_per_km)
    except InvalidClimbSummary as exc:
        logging.error(str(exc))
        return 2

    stats = profile.stats
    logging.info(
        "%s (%s): %d points, %.0f-%.0f m, +%.1f m / -%.1f m, segments %s",
        summary.name,
        profile.metadata.side,
        len(profile.points),
        stats.min_elevation,
        stats.max_elevation,
        stats.elevation_gain,
        stats.elevation_loss,
        stats.segment_counts,
    )
    write_profile_csv(profile, output)

    if json_sidecar:
        json_path = output[:-4] + ".json" if output.lower().endswith(".csv") else output + ".json"
        try:
            meta = {
                "command": "profile",
                "input": input_path,
                "output_csv": output,
                "climb": summary.name,
                "params": {"side": side, "seed": seed, "points_per_km": points_per_km},
            }
            with open(json_path, "w", encoding="utf-8") as jf:
                json.dump(
                    {"meta": meta, "elevation_profile": profile.to_document()},
                    jf,
                    indent=2,
                    default=_json_default,
                )
            logging.info("Wrote JSON: %s", json_path)
        except OSError as exc:
            logging.warning("Failed to write JSON sidecar: %s", exc)

    if not no_plot:
        png_path = png
        if png_path is None:
            png_path = output[:-4] + ".png" if output.lower().endswith(".csv") else output + ".png"
        plot_elevation_profile(profile, png_path, title=summary.name)
    return 0


def _run_enrich(
    input_path: str,
    output: Optional[str] = None,
    config_path: Optional[str] = None,
    side: Optional[str] = None,
    seed: Optional[int] = None,
    points_per_km: Optional[int] = None,
    force: bool = False,
    cache_dir: Optional[str] = None,
    profile: bool = False,
    verbose: bool = False,
    log_file: Optional[str] = None,
) -> int:
    _setup_logging(verbose, log_file=log_file)
    profiler = _StageProfiler(profile)

    config = EnrichConfig()
    if config_path:
        try:
            config = load_enrich_config(config_path)
        except (OSError, ValueError) as exc:
            logging.error("Failed to load config %s: %s", config_path, exc)
            return 2
    if side is not None:
        config.side = _coerce_side(side)
    if seed is not None:
        config.seed = seed
    if points_per_km is not None:
        config.points_per_km = points_per_km
    if force:
        config.force = True
    if config.points_per_km <= 0:
        logging.error("points_per_km must be positive, got %d", config.points_per_km)
        return 2

    try:
        docs = load_climb_documents(input_path)
    except (OSError, ValueError) as exc:
        logging.error("Failed to read %s: %s", input_path, exc)
        return 2
    logging.info("Loaded %d climb document(s) from %s", len(docs), input_path)
    if not docs:
        logging.error("No climb documents to enrich.")
        return 3
    profiler.lap("load")

    cache = ProfileCache(cache_dir)
    result = enrich_climbs(docs, config, cache=cache, profiler=profiler)

    out_path = output or input_path
    write_climb_documents(out_path, result.documents)
    profiler.lap("write")
    return 3 if result.failed else 0


def _build_typer_app():  # pragma: no cover
    app = typer.Typer(add_completion=False, help="Synthetic elevation profiles and 3D annotations for cycling climbs.")

    @app.command(name="profile")
    def profile_cmd(
        input_path: str = typer.Argument(..., help="JSON file with climb documents"),
        col: str = typer.Option(..., "--col", "-c", help="Climb name to generate"),
        side: str = typer.Option(..., "--side", "-s", help="Climb side: index (0, 1, ...) or side name"),
        output: str = typer.Option("profile.csv", "--output", "-o", help="Output CSV path"),
        seed: int = typer.Option(DEFAULT_SEED, "--seed", help="Random seed for the terrain perturbation"),
        points_per_km: int = typer.Option(DEFAULT_POINTS_PER_KM, "--points-per-km", help="Sampling density"),
        json_sidecar: bool = typer.Option(False, "--json/--no-json", help="Write JSON profile next to the CSV"),
        png: Optional[str] = typer.Option(None, "--png", help="Optional output PNG path (defaults next to CSV)"),
        no_plot: bool = typer.Option(False, "--no-plot", help="Disable PNG generation"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Optional log file path"),
    ) -> None:
        """Generate the elevation profile of one climb side."""
        code = _run_profile(
            input_path,
            col,
            side,
            output,
            seed=seed,
            points_per_km=points_per_km,
            json_sidecar=json_sidecar,
            png=png,
            no_plot=no_plot,
            verbose=verbose,
            log_file=log_file,
        )
        if code != 0:
            raise typer.Exit(code)

    @app.command()
    def enrich(
        input_path: str = typer.Argument(..., help="JSON file with climb documents"),
        output: Optional[str] = typer.Option(None, "--output", "-o", help="Output JSON (defaults to rewriting the input)"),
        config_path: Optional[str] = typer.Option(None, "--config", help="JSON config {seed, points_per_km, side, sides, force}"),
        side: Optional[str] = typer.Option(None, "--side", "-s", help="Default climb side: index or name"),
        seed: Optional[int] = typer.Option(None, "--seed", help="Random seed (default 0)"),
        points_per_km: Optional[int] = typer.Option(None, "--points-per-km", help="Sampling density (default 20)"),
        force: bool = typer.Option(False, "--force", help="Regenerate climbs that already carry a profile"),
        cache_dir: Optional[str] = typer.Option(None, "--cache-dir", help="Directory for cached profiles"),
        profile: bool = typer.Option(False, "--profile", help="Log per-stage timings"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Optional log file path"),
    ) -> None:
        """Add elevation profiles, terrain, weather and render settings to every climb."""
        code = _run_enrich(
            input_path,
            output=output,
            config_path=config_path,
            side=side,
            seed=seed,
            points_per_km=points_per_km,
            force=force,
            cache_dir=cache_dir,
            profile=profile,
            verbose=verbose,
            log_file=log_file,
        )
        if code != 0:
            raise typer.Exit(code)

    return app


def main_cli() -> int:
    app = _build_typer_app()
    app()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main_cli())
