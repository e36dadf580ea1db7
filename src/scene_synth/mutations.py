"""
Reversible random edits of a SceneState.

One Mutation instance performs at most one edit. The kind is drawn from
fixed probability bands:

    [0.00, 0.20)  add a random object
    [0.20, 0.35)  remove a random object
    [0.35, 0.65)  mutate an object (nudge / re-yaw / re-type)
    [0.65, 0.85)  swap two objects in the list
    [0.85, 1.00)  mutate a light (nudge position and intensity)

Before editing, the operator snapshots the object and light lists (the
records themselves are immutable) and the cached scores, so ``revert()``
restores the exact prior state including list order.
"""
import logging
from dataclasses import replace
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from scene_synth.catalog import ObjectCatalog
from scene_synth.contracts import PlacedLight, PlacedObject, SceneScores, SynthConfig, to_vec3
from scene_synth.scene_state import SceneState, random_object

logger = logging.getLogger(__name__)

# objects, lights, cached scores, generation
_Snapshot = Tuple[List[PlacedObject], List[PlacedLight], Optional[SceneScores], int]


class MutationKind(Enum):
    ADD_OBJECT = "add_object"
    REMOVE_OBJECT = "remove_object"
    MUTATE_OBJECT = "mutate_object"
    SWAP_OBJECTS = "swap_objects"
    MUTATE_LIGHT = "mutate_light"


# Upper edge of each band, checked in order.
MUTATION_BANDS: Tuple[Tuple[float, MutationKind], ...] = (
    (0.20, MutationKind.ADD_OBJECT),
    (0.35, MutationKind.REMOVE_OBJECT),
    (0.65, MutationKind.MUTATE_OBJECT),
    (0.85, MutationKind.SWAP_OBJECTS),
    (1.00, MutationKind.MUTATE_LIGHT),
)

# Sub-choice bands for MUTATE_OBJECT.
_NUDGE_BAND = 0.40
_YAW_BAND = 0.65


def kind_for_draw(r: float) -> MutationKind:
    for upper, kind in MUTATION_BANDS:
        if r < upper:
            return kind
    return MUTATION_BANDS[-1][1]


class Mutation:
    """A single reversible edit applied to ``state``."""

    def __init__(
        self,
        state: SceneState,
        catalog: ObjectCatalog,
        config: SynthConfig,
        rng: np.random.Generator,
    ):
        self.state = state
        self.catalog = catalog
        self.config = config
        self.rng = rng
        self.kind: Optional[MutationKind] = None
        self.applied = False
        self.detail = ""
        self._saved: Optional[_Snapshot] = None

    def apply_random(self) -> bool:
        return self.apply(kind_for_draw(float(self.rng.random())))

    def apply(self, kind: MutationKind) -> bool:
        """Perform one edit of ``kind``. Returns False for a guarded no-op."""
        if self._saved is not None:
            raise RuntimeError("Mutation already applied; create a new instance")

        state = self.state
        self.kind = kind
        self._saved = (
            list(state.objects),
            list(state.lights),
            state.snapshot_scores(),
            state.generation,
        )

        handler = {
            MutationKind.ADD_OBJECT: self._add_object,
            MutationKind.REMOVE_OBJECT: self._remove_object,
            MutationKind.MUTATE_OBJECT: self._mutate_object,
            MutationKind.SWAP_OBJECTS: self._swap_objects,
            MutationKind.MUTATE_LIGHT: self._mutate_light,
        }[kind]
        self.applied = handler()
        if self.applied:
            state.mark_dirty()
            logger.debug("Mutation %s: %s", kind.value, self.detail)
        else:
            logger.debug("Mutation %s skipped: %s", kind.value, self.detail)
        return self.applied

    def revert(self) -> None:
        """Restore the state captured before apply(). Safe to call twice."""
        if self._saved is None or not self.applied:
            return
        objects, lights, scores, generation = self._saved
        self.state.objects = list(objects)
        self.state.lights = list(lights)
        self.state.restore_scores(scores)
        self.state.generation = generation
        self.applied = False

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _add_object(self) -> bool:
        objects = self.state.objects
        if len(objects) >= self.config.max_objects:
            self.detail = f"at max count {self.config.max_objects}"
            return False
        obj = random_object(self.config, self.catalog, self.rng)
        objects.append(obj)
        self.detail = f"added {obj.type_name}#{obj.uid}"
        return True

    def _remove_object(self) -> bool:
        objects = self.state.objects
        if len(objects) <= self.config.min_objects:
            self.detail = f"at min count {self.config.min_objects}"
            return False
        removed = objects.pop(int(self.rng.integers(len(objects))))
        self.detail = f"removed {removed.type_name}#{removed.uid}"
        return True

    def _mutate_object(self) -> bool:
        objects = self.state.objects
        if not objects:
            self.detail = "no objects"
            return False
        idx = int(self.rng.integers(len(objects)))
        obj = objects[idx]
        choice = float(self.rng.random())

        if choice < _NUDGE_BAND:
            step = self.config.mutation.position_nudge
            moved = np.asarray(obj.position, dtype=float) + np.array([
                self.rng.uniform(-step, step), 0.0, self.rng.uniform(-step, step),
            ])
            moved = self.config.room.clamp(moved)
            objects[idx] = replace(obj, position=to_vec3(moved))
            self.detail = f"nudged {obj.type_name}#{obj.uid}"
        elif choice < _YAW_BAND:
            yaw = float(self.rng.uniform(0.0, 360.0))
            objects[idx] = replace(obj, rotation=(obj.rotation[0], yaw, obj.rotation[2]))
            self.detail = f"rotated {obj.type_name}#{obj.uid} to {yaw:.1f} deg"
        else:
            entry = self.catalog.random_entry(self.rng)
            objects[idx] = replace(obj, type_name=entry.name)
            self.detail = f"retyped #{obj.uid} {obj.type_name} -> {entry.name}"
        return True

    def _swap_objects(self) -> bool:
        objects = self.state.objects
        n = len(objects)
        if n < 2:
            self.detail = "fewer than two objects"
            return False
        a = int(self.rng.integers(n))
        b = int(self.rng.integers(n - 1))
        if b >= a:
            b += 1
        objects[a], objects[b] = objects[b], objects[a]
        self.detail = f"swapped slots {a} and {b}"
        return True

    def _mutate_light(self) -> bool:
        lights = self.state.lights
        if not lights:
            self.detail = "no lights"
            return False
        settings = self.config.mutation
        idx = int(self.rng.integers(len(lights)))
        light = lights[idx]

        step, step_y = settings.light_nudge, settings.light_nudge_y
        moved = np.asarray(light.position, dtype=float) + np.array([
            self.rng.uniform(-step, step),
            self.rng.uniform(-step_y, step_y),
            self.rng.uniform(-step, step),
        ])
        moved = self.config.room.clamp(moved, settings.light_vertical_margin)
        intensity = light.intensity + float(
            self.rng.uniform(-settings.intensity_nudge, settings.intensity_nudge)
        )
        intensity = min(max(intensity, settings.min_light_intensity), settings.max_light_intensity)
        lights[idx] = PlacedLight(to_vec3(moved), intensity)
        self.detail = f"moved light {idx}, intensity {light.intensity:.3f} -> {intensity:.3f}"
        return True

