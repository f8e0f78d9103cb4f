from __future__ import annotations

import math
import unittest
from datetime import datetime, timezone

import numpy as np

import va_annotate
from va_annotate import (
    Biome,
    calculate_bounding_box,
    calculate_vegetation_density,
    determine_quality_level,
    generate_environment_data,
    generate_points_of_interest,
    generate_render_settings,
    generate_terrain_data,
    generate_weather_data,
    lookup_biome,
    lookup_precipitation_factor,
)
from va_profile import ClimbSide, ClimbSummary


FIXED_TIME = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _col(**overrides) -> ClimbSummary:
    base = dict(
        name="Col du Galibier",
        region="Savoie",
        country="France",
        elevation=2642.0,
        length=17.7,
        avg_gradient=7.1,
        max_gradient=12.1,
        difficulty="hard",
        sides=(ClimbSide("nord", (45.2, 6.43), (45.0612, 6.4085)),),
        coordinates=(45.0612, 6.4085),
    )
    base.update(overrides)
    return ClimbSummary(**base)


class TestBoundingBox(unittest.TestCase):
    def test_equator(self) -> None:
        box = calculate_bounding_box((0.0, 10.0), 11.1)
        self.assertAlmostEqual(box.north, 0.1)
        self.assertAlmostEqual(box.south, -0.1)
        self.assertAlmostEqual(box.east, 10.1)
        self.assertAlmostEqual(box.west, 9.9)
        self.assertEqual(box.width, 22.2)
        self.assertEqual(box.center, (0.0, 10.0))

    def test_longitude_widens_with_latitude(self) -> None:
        box = calculate_bounding_box((60.0, 0.0), 11.1)
        self.assertAlmostEqual(box.north - 60.0, 0.1)
        self.assertAlmostEqual(box.east, 0.2)

    def test_pole_rejected(self) -> None:
        with self.assertRaises(ValueError):
            calculate_bounding_box((90.0, 0.0), 5.0)


class TestRegionLookups(unittest.TestCase):
    def test_biome_lookup(self) -> None:
        self.assertIs(lookup_biome("Savoie"), Biome.ALPINE)
        self.assertIs(lookup_biome("  hautes-pyrénées "), Biome.PYRENEAN)
        self.assertIs(lookup_biome("Corse"), Biome.MEDITERRANEAN)
        self.assertIsNone(lookup_biome("Atlantis"))
        self.assertIsNone(lookup_biome(""))

    def test_precipitation_lookup(self) -> None:
        self.assertEqual(lookup_precipitation_factor("Bretagne"), 1.4)
        self.assertEqual(lookup_precipitation_factor("Occitanie"), 0.7)
        self.assertIsNone(lookup_precipitation_factor("Savoie"))


class TestTerrain(unittest.TestCase):
    def test_alpine_terrain(self) -> None:
        terrain = generate_terrain_data(_col(), generated_at=FIXED_TIME)
        self.assertIs(terrain.biome, Biome.ALPINE)
        self.assertTrue(terrain.region_recognized)
        kinds = {f.type: f for f in terrain.features}
        self.assertEqual(kinds["vegetation"].density, "low")
        self.assertEqual(kinds["geological"].features, ["limestone_cliffs", "steep_ridges"])
        self.assertEqual(kinds["water"].features, ["mountain_streams", "waterfalls"])
        self.assertEqual(terrain.textures["terrain"], "terrains/savoie_hard.jpg")
        self.assertEqual(terrain.resolution_m, 30)
        self.assertAlmostEqual(terrain.bounding_box.north, 45.0612 + 17.7 * 1.5 / 111.0)
        doc = terrain.to_document()
        self.assertEqual(doc["metadata"]["algorithm"], "synthetic_terrain_v2")
        self.assertEqual(doc["biome"], "alpine")

    def test_unknown_region_uses_documented_default(self) -> None:
        col = _col(region="Hautes Terres", elevation=1200.0, difficulty="easy")
        terrain = generate_terrain_data(col, generated_at=FIXED_TIME)
        self.assertIsNone(terrain.biome)
        self.assertFalse(terrain.region_recognized)
        kinds = {f.type: f for f in terrain.features}
        self.assertEqual(kinds["geological"].features, ["rolling_hills", "mixed_terrain"])
        self.assertEqual(kinds["vegetation"].varieties, ["mixed", "subalpine"])
        self.assertEqual(kinds["water"].density, "low")
        self.assertEqual(terrain.textures["height"], "heights/hautes-terres_easy.jpg")

    def test_mediterranean_low_vegetation(self) -> None:
        features = va_annotate.generate_terrain_features(_col(region="Var", elevation=600.0))
        self.assertEqual(features[0].density, "high")
        self.assertEqual(features[0].varieties, ["mediterranean", "shrubs"])

    def test_points_of_interest(self) -> None:
        pois = generate_points_of_interest(_col(), seed=3)
        self.assertEqual([p.type for p in pois], ["viewpoint", "shelter", "geological"])
        for poi in pois:
            self.assertLess(abs(poi.position[0] - 45.0612), 0.002)
            self.assertLess(abs(poi.position[1] - 6.4085), 0.002)
        self.assertEqual(pois[1].properties["name"], "Refuge du Galibier")
        self.assertEqual(generate_points_of_interest(_col(), seed=3), pois)
        small = _col(elevation=900.0, length=5.0, max_gradient=6.0)
        self.assertEqual(generate_points_of_interest(small), [])


class TestWeather(unittest.TestCase):
    def test_high_altitude(self) -> None:
        weather = generate_weather_data(_col(), generated_at=FIXED_TIME)
        expected_summer = 25.0 - 2642.0 / 100.0 * 0.6
        self.assertAlmostEqual(weather.summer.avg, expected_summer)
        self.assertAlmostEqual(weather.summer.min, expected_summer - 10)
        self.assertAlmostEqual(weather.winter.avg, 5.0 - 2642.0 / 100.0 * 0.6)
        self.assertEqual(weather.snow_days, 90)
        self.assertEqual(weather.storm_frequency, "high")
        self.assertEqual(weather.seasonal["winter"].accessibility, "closed")
        self.assertEqual(weather.typical["bestTime"], "July-August")
        self.assertAlmostEqual(weather.annual_precipitation_mm, 1300.0)
        self.assertFalse(weather.region_recognized)

    def test_regional_precipitation(self) -> None:
        wet = generate_weather_data(_col(region="Bretagne", elevation=500.0))
        self.assertAlmostEqual(wet.annual_precipitation_mm, 1400.0)
        self.assertTrue(wet.region_recognized)
        dry = generate_weather_data(_col(region="Occitanie", elevation=1500.0))
        self.assertAlmostEqual(dry.annual_precipitation_mm, 1000.0 * 0.7 * 1.1)
        self.assertEqual(dry.seasonal["winter"].snow, "likely")
        self.assertEqual(dry.fog_days, 60)

    def test_band_edges(self) -> None:
        self.assertEqual(generate_weather_data(_col(elevation=2000.0)).snow_days, 40)
        self.assertEqual(generate_weather_data(_col(elevation=1000.0)).snow_days, 10)

    def test_document(self) -> None:
        doc = generate_weather_data(_col(), generated_at=FIXED_TIME).to_document()
        self.assertIn("summer", doc["climate"]["temperatureRange"])
        self.assertEqual(doc["metadata"]["generatedAt"], FIXED_TIME)
        self.assertNotIn("snow", doc["seasonal"]["summer"])


class TestEnvironment(unittest.TestCase):
    def test_zones_stack_with_elevation(self) -> None:
        self.assertEqual(len(generate_environment_data(_col(elevation=800.0)).vegetation_zones), 1)
        self.assertEqual(len(generate_environment_data(_col(elevation=1500.0)).vegetation_zones), 2)
        self.assertEqual(len(generate_environment_data(_col(elevation=2100.0)).vegetation_zones), 3)
        env = generate_environment_data(_col())
        self.assertEqual([z.type for z in env.vegetation_zones][-1], "rock")
        self.assertEqual(env.terrain_type, "rocky")

    def test_document_carries_terrain_features(self) -> None:
        doc = generate_environment_data(_col()).to_document()
        self.assertEqual(doc["terrain"]["type"], "rocky")
        expected = [f.to_document() for f in va_annotate.generate_terrain_features(_col())]
        self.assertEqual(doc["terrain"]["features"], expected)
        self.assertEqual([f["type"] for f in doc["terrain"]["features"]], ["vegetation", "geological", "water"])

    def test_climate_profiles(self) -> None:
        alpine = generate_environment_data(_col()).climate
        self.assertEqual(alpine.type, "alpine")
        self.assertAlmostEqual(alpine.average_temperature, 15 - 2642.0 / 300)
        self.assertEqual(alpine.snow_months, [11, 12, 1, 2, 3, 4])
        spain = generate_environment_data(_col(region="Huesca", country="Spain", elevation=1700.0)).climate
        self.assertEqual(spain.type, "continental")
        other = generate_environment_data(_col(region="Vosges", elevation=1100.0)).climate
        self.assertEqual(other.type, "temperate")
        self.assertFalse(other.region_recognized)
        self.assertEqual(other.snow_months, [1, 2])


class TestRenderSettings(unittest.TestCase):
    def test_quality_levels(self) -> None:
        self.assertEqual(determine_quality_level("extreme"), "ultra")
        self.assertEqual(determine_quality_level("hard"), "high")
        self.assertEqual(determine_quality_level("medium"), "medium")
        self.assertEqual(determine_quality_level("easy"), "standard")
        self.assertEqual(determine_quality_level("bogus"), "standard")

    def test_settings_follow_quality(self) -> None:
        ultra = generate_render_settings(_col(difficulty="extreme"))
        self.assertEqual(ultra.texture_resolution, 4096)
        self.assertEqual(ultra.shadow_quality, "high")
        self.assertEqual(ultra.render_distance, 10000)
        self.assertEqual(ultra.fog_density, 0.05)
        easy = generate_render_settings(_col(difficulty="easy", elevation=900.0))
        self.assertEqual(easy.texture_resolution, 1024)
        self.assertEqual(easy.shadow_quality, "medium")
        self.assertEqual(easy.render_distance, 5000)
        self.assertEqual(easy.fog_density, 0.02)
        self.assertEqual(easy.to_document()["lightingPreset"], "midday")

    def test_vegetation_density_bands(self) -> None:
        rng = np.random.default_rng(11)
        bands = ((2500.0, 0.1, 0.3), (1800.0, 0.3, 0.6), (1200.0, 0.5, 0.8), (400.0, 0.7, 1.0))
        for elevation, lo, hi in bands:
            for _ in range(50):
                value = calculate_vegetation_density(elevation, rng)
                self.assertGreaterEqual(value, lo)
                self.assertLessEqual(value, hi)
                self.assertTrue(math.isfinite(value))

    def test_seeded_density_is_reproducible(self) -> None:
        a = generate_render_settings(_col(), seed=5)
        b = generate_render_settings(_col(), seed=5)
        self.assertEqual(a, b)


if __name__ == "__main__":
    unittest.main()
