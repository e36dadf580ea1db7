"""
Shared test fixtures for scene synthesis tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scene_synth.catalog import primitive_catalog
from scene_synth.contracts import (
    AnnealingSettings,
    PlacedLight,
    PlacedObject,
    SamplingSettings,
    SynthConfig,
)
from scene_synth.geometry import RayScene, TrimeshGeometryProvider
from scene_synth.scene_state import SceneState


class _MissRayScene(RayScene):
    def cast(self, origins, directions, max_distance, exclude):
        return np.full(len(np.asarray(origins).reshape(-1, 3)), np.inf)


class NoOccluderProvider(TrimeshGeometryProvider):
    """Trimesh provider whose rays never hit anything; keeps long runs fast."""

    def ray_scene(self, objects):
        return _MissRayScene()


def grid_objects(count, type_name="crate", spacing=2.0):
    """``count`` objects on a 5-wide floor grid, no two touching."""
    objects = []
    for i in range(count):
        row, col = divmod(i, 5)
        objects.append(PlacedObject(
            type_name=type_name,
            position=(-4.0 + col * spacing, 0.0, -4.0 + row * spacing),
        ))
    return objects


def default_lights():
    return [
        PlacedLight((0.0, 3.0, 0.0), 1.0),
        PlacedLight((2.0, 2.5, -2.0), 0.8),
    ]


@pytest.fixture
def catalog():
    return primitive_catalog()


@pytest.fixture
def provider(catalog):
    return TrimeshGeometryProvider(catalog)


@pytest.fixture
def fast_provider(catalog):
    return NoOccluderProvider(catalog)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def config():
    """Default limits with light sampling so evaluation stays quick."""
    return SynthConfig(
        sampling=SamplingSettings(max_samples=16, ray_count=4),
    )


@pytest.fixture
def fast_config():
    """Small scenes, few samples, short runs."""
    return SynthConfig(
        min_objects=4,
        max_objects=8,
        sampling=SamplingSettings(max_samples=4, ray_count=2),
        annealing=AnnealingSettings(max_iterations=60, progress_interval=0),
    )


@pytest.fixture
def grid_state(config):
    """Six separated crates and two lights; passes every hard constraint."""
    return SceneState(config, grid_objects(6), default_lights())
