from __future__ import annotations

import datetime
import logging
import math
from typing import Iterable, List, Optional

from auth import AuthContext
from client import GatewayClient
from exceptions import APIError, AuthenticationError, PlanError
from models import ConfiguredExercise, ExerciseRef, PlannedSet
from routes import plan_mode
from settings_schema import SettingsSchema
import workout_service

logger = logging.getLogger(__name__)


def parse_number(value, integer: bool = False) -> float | int:
    """Parse numeric form input; reject junk and NaN, clamp negatives to 0."""
    if isinstance(value, bool):
        raise ValueError("expected a number")
    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{value!r} is not a number")
    if math.isnan(number) or math.isinf(number):
        raise ValueError(f"{value!r} is not a number")
    number = max(0.0, number)
    return int(number) if integer else number


class PlanBuilder:
    """Assembles an ordered exercise list and commits it as a workout or template."""

    def __init__(
        self,
        gateway: GatewayClient,
        auth: AuthContext,
        settings: SettingsSchema | None = None,
        today: datetime.date | None = None,
    ) -> None:
        self.gateway = gateway
        self.auth = auth
        self.settings = settings or SettingsSchema()
        self.exercises: List[ConfiguredExercise] = []
        self.date = (today or datetime.date.today()).isoformat()
        self.mode = "new"
        self.source_id: Optional[int] = None
        self.template_name = ""
        self.saving = False
        self.status_message = ""
        self.error_message = ""
        self.last_imported_key: Optional[str] = None
        self.catalog: List[ExerciseRef] = []
        self._manual_counter = 0

    # import ---------------------------------------------------------------

    def apply_query(self, query: dict) -> bool:
        """Import the source named in the planner query once per key."""
        self.mode, self.source_id = plan_mode(query)
        if self.mode == "new":
            return False
        key = f"{self.mode}:{self.source_id}"
        if key == self.last_imported_key:
            return False
        if self.auth.loading or self.auth.user_id is None:
            return False
        self.last_imported_key = key
        try:
            if self.mode == "import_workout":
                self.import_workout(self.source_id)
            else:
                self.import_template(self.source_id)
        except APIError as e:
            logger.error("import of %s failed: %s", key, e)
            self.error_message = str(e)
            self.exercises = []
        return True

    def import_template(self, template_id: int) -> None:
        template = self.gateway.select(
            "templates",
            filters={"id": template_id},
            embed=workout_service.TEMPLATE_EMBED,
            single=True,
        )
        self.template_name = template["name"]
        rows = sorted(template["template_exercises"], key=lambda r: (r["order"], r["id"]))
        self.exercises = []
        for idx, row in enumerate(rows):
            exercise = row.get("exercise") or {}
            count = row["sets"] if row.get("sets") is not None else self.settings.default_sets
            reps = row["reps"] if row.get("reps") is not None else self.settings.default_reps
            self.exercises.append(
                ConfiguredExercise(
                    config_id=f"template-{template_id}-{row['exercise_id']}-{idx}",
                    exercise_id=row["exercise_id"],
                    name=exercise.get("name", ""),
                    target_muscle=exercise.get("target_muscle", ""),
                    order=idx,
                    sets=[
                        PlannedSet(set_number=n, reps=reps, weight=0)
                        for n in range(1, count + 1)
                    ],
                )
            )

    def import_workout(self, workout_id: int) -> None:
        row = self.gateway.select(
            "workouts",
            filters={"id": workout_id},
            embed=workout_service.WORKOUT_EMBED,
            single=True,
        )
        workout = workout_service.to_workout(row)
        self.date = workout.date
        self.exercises = []
        for idx, we in enumerate(workout.workout_exercises):
            sets = [
                PlannedSet(
                    set_number=s.set_number,
                    reps=s.reps,
                    weight=s.weight,
                    intensity_type=s.intensity_type or "normal",
                    notes=s.notes,
                )
                for s in we.workout_sets
            ] or [PlannedSet(set_number=1, reps=self.settings.default_reps, weight=0)]
            self.exercises.append(
                ConfiguredExercise(
                    config_id=f"workout-{workout_id}-{we.exercise_id}-{idx}",
                    exercise_id=we.exercise_id,
                    name=we.name,
                    target_muscle=we.target_muscle,
                    order=idx,
                    sets=sets,
                )
            )

    # editing --------------------------------------------------------------

    @property
    def selected_ids(self) -> List[int]:
        return [c.exercise_id for c in self.exercises]

    def _find(self, config_id: str) -> ConfiguredExercise:
        for configured in self.exercises:
            if configured.config_id == config_id:
                return configured
        raise KeyError(config_id)

    def _renumber(self) -> None:
        for idx, configured in enumerate(self.exercises):
            configured.order = idx

    def add_exercise(self, exercise: ExerciseRef) -> ConfiguredExercise:
        for configured in self.exercises:
            if configured.exercise_id == exercise.id:
                return configured
        self._manual_counter += 1
        configured = ConfiguredExercise(
            config_id=f"manual-{exercise.id}-{self._manual_counter}",
            exercise_id=exercise.id,
            name=exercise.name,
            target_muscle=exercise.target_muscle,
            order=len(self.exercises),
            sets=[
                PlannedSet(set_number=n, reps=self.settings.default_reps, weight=0)
                for n in range(1, self.settings.default_sets + 1)
            ],
        )
        self.exercises.append(configured)
        return configured

    def remove_exercise(self, config_id: str) -> None:
        self.exercises = [c for c in self.exercises if c.config_id != config_id]
        self._renumber()

    def toggle_exercise(self, exercise: ExerciseRef) -> bool:
        """Select or deselect ``exercise``; return whether it is now selected."""
        for configured in self.exercises:
            if configured.exercise_id == exercise.id:
                self.remove_exercise(configured.config_id)
                return False
        self.add_exercise(exercise)
        return True

    def set_set_count(self, config_id: str, value) -> None:
        configured = self._find(config_id)
        count = parse_number(value, integer=True)
        sets = configured.sets[:count]
        if count > len(sets):
            first = configured.sets[0] if configured.sets else None
            reps = first.reps if first else self.settings.default_reps
            weight = first.weight if first else 0
            sets.extend(
                PlannedSet(set_number=0, reps=reps, weight=weight)
                for _ in range(count - len(sets))
            )
        for n, planned in enumerate(sets, start=1):
            planned.set_number = n
        configured.sets = sets

    def set_reps(self, config_id: str, value) -> None:
        configured = self._find(config_id)
        reps = parse_number(value, integer=True)
        for planned in configured.sets:
            planned.reps = reps

    def set_weight(self, config_id: str, value) -> None:
        configured = self._find(config_id)
        weight = parse_number(value)
        for planned in configured.sets:
            planned.weight = weight

    def move(self, from_index: int, to_index: int) -> None:
        if not 0 <= from_index < len(self.exercises):
            raise IndexError(from_index)
        to_index = max(0, min(to_index, len(self.exercises) - 1))
        configured = self.exercises.pop(from_index)
        self.exercises.insert(to_index, configured)
        self._renumber()

    def reorder(self, config_ids: Iterable[str]) -> None:
        config_ids = list(config_ids)
        if sorted(config_ids) != sorted(c.config_id for c in self.exercises):
            raise ValueError("reorder must list every configured exercise once")
        by_id = {c.config_id: c for c in self.exercises}
        self.exercises = [by_id[cid] for cid in config_ids]
        self._renumber()

    def sync_selection(self, exercise_ids: Iterable[int]) -> bool:
        """Reconcile the draft with the checkbox selection.

        A template import keeps its imported shape, so nothing changes in that
        mode. Returns whether the draft changed.
        """
        if self.mode == "import_template":
            return False
        wanted = list(dict.fromkeys(exercise_ids))
        before = [c.config_id for c in self.exercises]
        self.exercises = [c for c in self.exercises if c.exercise_id in wanted]
        self._renumber()
        catalog = {e.id: e for e in self.catalog}
        for exercise_id in wanted:
            if exercise_id not in self.selected_ids:
                if exercise_id not in catalog:
                    raise KeyError(exercise_id)
                self.add_exercise(catalog[exercise_id])
        return before != [c.config_id for c in self.exercises]

    # catalog --------------------------------------------------------------

    def load_catalog(self) -> List[ExerciseRef]:
        result = workout_service.load_exercises(self.gateway, self.auth)
        if result.error:
            self.error_message = result.error
        self.catalog = result.data
        return self.catalog

    def search(self, query: str) -> List[ExerciseRef]:
        needle = query.strip().lower()
        selected = set(self.selected_ids)
        return [
            e
            for e in self.catalog
            if e.id not in selected
            and (not needle or needle in e.name.lower() or needle in e.target_muscle.lower())
        ]

    def add_custom_exercise(self, name: str, target_muscle: str) -> ConfiguredExercise:
        try:
            exercise = workout_service.add_custom_exercise(self.gateway, name, target_muscle)
        except (APIError, ValueError) as e:
            self._fail(str(e))
        self.catalog.append(exercise)
        return self.add_exercise(exercise)

    # commit ---------------------------------------------------------------

    def _begin(self) -> None:
        if self.auth.loading:
            self._fail("Please wait for session to load.")
        if self.auth.user_id is None:
            self._fail("Sign in to save.")
        self.saving = True
        self.status_message = ""
        self.error_message = ""

    def _fail(self, message: str) -> None:
        logger.error("plan save failed: %s", message)
        self.error_message = message
        self.saving = False
        raise PlanError(message)

    def _template_rows(self) -> List[dict]:
        return [
            {
                "exercise_id": c.exercise_id,
                "sets": len(c.sets),
                "reps": c.sets[0].reps if c.sets else self.settings.default_reps,
                "order": idx,
            }
            for idx, c in enumerate(self.exercises)
        ]

    def save(self) -> str:
        """Commit the draft and return the route to navigate to."""
        if self.mode == "edit_template":
            return self.save_template()
        return self.save_workout()

    def save_workout(self) -> str:
        self._begin()
        if not self.exercises:
            self._fail("Add at least one exercise to your workout.")
        params = {
            "date": self.date,
            "exercises": [
                {
                    "exercise_id": c.exercise_id,
                    "sets": [s.model_dump() for s in c.sets],
                }
                for c in self.exercises
            ],
        }
        if self.mode == "import_workout" and self.source_id is not None:
            params["workout_id"] = self.source_id
        try:
            result = self.gateway.rpc("save_workout_plan", params)
        except (APIError, AuthenticationError) as e:
            self._fail(str(e))
        self.saving = False
        self.status_message = "Workout saved."
        return f"/workout/{result['id']}"

    def save_template(self) -> str:
        self._begin()
        if self.source_id is None:
            self._fail("No template selected.")
        rows = self._template_rows()
        if not rows:
            self._fail("Add at least one valid exercise before saving.")
        try:
            self.gateway.rpc(
                "replace_template_exercises",
                {"template_id": self.source_id, "exercises": rows},
            )
        except (APIError, AuthenticationError) as e:
            self._fail(str(e))
        self.saving = False
        self.status_message = "Template saved."
        return "/templates"

    def save_as_template(self, name: str) -> str:
        self._begin()
        if not name.strip():
            self._fail("Template name is required.")
        rows = self._template_rows()
        if not rows:
            self._fail("Add at least one valid exercise before saving.")
        try:
            self.gateway.rpc("create_template", {"name": name.strip(), "exercises": rows})
        except (APIError, AuthenticationError) as e:
            self._fail(str(e))
        self.saving = False
        self.status_message = "Template created."
        return "/templates"
