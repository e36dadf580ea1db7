"""Tests for value types and run configuration."""

import numpy as np
import pytest

from scene_synth.contracts import (
    Aabb,
    AnnealingSettings,
    ConstraintMode,
    ConvergenceMode,
    CostWeights,
    DifficultyTargets,
    MutationSettings,
    PlacedObject,
    RoomBounds,
    SamplingSettings,
    SynthConfig,
)


class TestAabb:
    def test_touching_boxes_intersect(self):
        a = Aabb((0, 0, 0), (1, 1, 1))
        b = Aabb((1, 0, 0), (2, 1, 1))
        assert a.intersects(b)
        assert b.intersects(a)

    def test_separated_boxes(self):
        a = Aabb((0, 0, 0), (1, 1, 1))
        b = Aabb((1.01, 0, 0), (2, 1, 1))
        assert not a.intersects(b)

    def test_distance_to_point(self):
        box = Aabb((0, 0, 0), (1, 1, 1))
        assert box.distance_to_point((0.5, 0.5, 0.5)) == 0.0
        assert box.distance_to_point((4, 0.5, 0.5)) == pytest.approx(3.0)
        assert box.distance_to_point((2, 2, 0.5)) == pytest.approx(np.sqrt(2))

    def test_from_points(self):
        box = Aabb.from_points([[1, 2, 3], [-1, 5, 0]])
        assert box.min_corner == (-1.0, 2.0, 0.0)
        assert box.max_corner == (1.0, 5.0, 3.0)


class TestRoomBounds:
    def test_default_room_floor_and_ceiling(self):
        room = RoomBounds()
        assert room.floor_y == 0.0
        assert room.max_corner[1] == 4.0
        assert np.allclose(room.half_extents, [5.0, 2.0, 5.0])

    def test_clamp_with_margin(self):
        room = RoomBounds()
        clamped = room.clamp([9.0, 10.0, -9.0], vertical_margin=0.5)
        assert np.allclose(clamped, [5.0, 3.5, -5.0])

    def test_random_points_inside(self):
        room = RoomBounds()
        box = room.as_aabb()
        rng = np.random.default_rng(0)
        for _ in range(50):
            assert box.contains_point(room.random_floor_point(rng))
            p = room.random_light_point(rng, 0.5)
            assert 0.5 <= p[1] <= 3.5


class TestPlacedObject:
    def test_uids_are_unique(self):
        a = PlacedObject("crate", (0, 0, 0))
        b = PlacedObject("crate", (0, 0, 0))
        assert a.uid != b.uid

    def test_frozen(self):
        obj = PlacedObject("crate", (0, 0, 0))
        with pytest.raises(AttributeError):
            obj.position = (1, 0, 0)


class TestSynthConfig:
    def test_defaults(self):
        config = SynthConfig()
        assert config.min_objects == 4
        assert config.max_objects == 25
        assert config.annealing.max_iterations == 4000
        assert config.annealing.cooling_rate == 0.99
        assert config.weights.count == 0.2
        assert config.weights.bounds == 0.5
        assert config.constraint_mode is ConstraintMode.HARD_REJECT

    def test_ideal_count_follows_occlusion_target(self):
        low = SynthConfig(targets=DifficultyTargets(occlusion=1))
        high = SynthConfig(targets=DifficultyTargets(occlusion=10))
        assert low.ideal_object_count == pytest.approx(4 + 21 * 0.1)
        assert high.ideal_object_count == pytest.approx(25.0)
        assert high.initial_object_count == 25

    def test_initial_count_is_clamped(self):
        assert SynthConfig(init_objects=100).initial_object_count == 25
        assert SynthConfig(init_objects=1).initial_object_count == 4

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_objects": 10, "max_objects": 5},
            {"targets": DifficultyTargets(holes=0)},
            {"targets": DifficultyTargets(lighting=11)},
            {"annealing": AnnealingSettings(cooling_rate=1.0)},
            {"annealing": AnnealingSettings(max_iterations=0)},
            {"annealing": AnnealingSettings(max_proposal_retries=0)},
            {"weights": CostWeights(holes=-1.0)},
            {"room": RoomBounds(size=(0.0, 4.0, 10.0))},
            {"sampling": SamplingSettings(max_samples=0)},
            {"sampling": SamplingSettings(ray_count=-1)},
            {"mutation": MutationSettings(min_light_intensity=0.0)},
            {"mutation": MutationSettings(min_light_intensity=2.0, max_light_intensity=1.0)},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            SynthConfig(**kwargs)

    def test_relative_range_settings(self):
        settings = AnnealingSettings.relative_range()
        assert settings.convergence_mode is ConvergenceMode.RELATIVE_RANGE
        assert settings.convergence_window == 50
        assert settings.convergence_threshold == 0.05

    def test_to_dict_is_json_friendly(self):
        data = SynthConfig().to_dict()
        assert data["constraint_mode"] == "hard_reject"
        assert data["annealing"]["convergence_mode"] == "mean_step"
        assert data["room"]["size"] == [10.0, 4.0, 10.0]
