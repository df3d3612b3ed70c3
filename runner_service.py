import logging
from typing import List, Optional

from client import GatewayClient
from exceptions import APIError, AuthenticationError, RunnerError
from models import WorkoutExercise, WorkoutSet
from planner_service import parse_number
import workout_service

logger = logging.getLogger(__name__)


class WorkoutRunner:
    """Steps through every set of every exercise of a workout.

    The position is ``(exercise_index, set_index)``. Advancing past the last
    set of the last exercise finalizes the workout, after which
    ``exercise_index == len(exercises)``.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        workout_id: int,
        exercises: List[WorkoutExercise],
    ) -> None:
        self.gateway = gateway
        self.workout_id = workout_id
        self.exercises = exercises
        self.exercise_index = 0
        self.set_index = 0
        self.saving = False
        self.error_message = ""

    @property
    def complete(self) -> bool:
        return self.exercise_index >= len(self.exercises)

    @property
    def current_exercise(self) -> Optional[WorkoutExercise]:
        return None if self.complete else self.exercises[self.exercise_index]

    @property
    def current_set(self) -> Optional[WorkoutSet]:
        exercise = self.current_exercise
        if exercise is None or not exercise.workout_sets:
            return None
        return exercise.workout_sets[self.set_index]

    @property
    def progress(self) -> tuple[int, int]:
        """Return ``(sets done, total sets)``."""
        total = sum(len(e.workout_sets) for e in self.exercises)
        done = sum(len(e.workout_sets) for e in self.exercises[: self.exercise_index])
        if not self.complete:
            done += self.set_index
        return done, total

    def advance(self) -> Optional[str]:
        """Move to the next set; return the detail route once finalized."""
        if self.complete:
            return None
        exercise = self.exercises[self.exercise_index]
        if self.set_index < len(exercise.workout_sets) - 1:
            self.set_index += 1
            return None
        if self.exercise_index < len(self.exercises) - 1:
            self.exercise_index += 1
            self.set_index = 0
            return None
        return self.finalize()

    def back(self) -> None:
        if self.complete:
            return
        if self.set_index > 0:
            self.set_index -= 1
        elif self.exercise_index > 0:
            self.exercise_index -= 1
            self.set_index = max(len(self.exercises[self.exercise_index].workout_sets) - 1, 0)

    def edit_current_set(self, reps=None, weight=None, notes: Optional[str] = None) -> None:
        current = self.current_set
        if current is None:
            raise RunnerError("No set to edit.")
        if reps is not None:
            current.reps = parse_number(reps, integer=True)
        if weight is not None:
            current.weight = parse_number(weight)
        if notes is not None:
            current.notes = notes.strip() or None

    def finalize(self) -> str:
        """Write every set, mark the workout completed and return its route."""
        self.saving = True
        self.error_message = ""
        try:
            workout_service.save_workout_sets(
                self.gateway, self.workout_id, self.exercises, status="completed"
            )
        except (APIError, AuthenticationError) as e:
            logger.error("finalizing workout %s failed: %s", self.workout_id, e)
            self.saving = False
            self.error_message = str(e)
            raise RunnerError(str(e)) from e
        self.saving = False
        self.exercise_index = len(self.exercises)
        self.set_index = 0
        logger.info("workout %s completed", self.workout_id)
        return f"/workout/{self.workout_id}"
