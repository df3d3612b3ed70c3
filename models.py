"""Typed views of the rows exchanged with the workout backend."""

from typing import List, Optional
from pydantic import BaseModel, Field


class ExerciseRef(BaseModel):
    id: int
    name: str
    target_muscle: str = ""
    is_custom: bool = False
    user_id: Optional[str] = None


class PlannedSet(BaseModel):
    """One row of a configured exercise in the plan builder."""

    set_number: int
    reps: int = 8
    weight: float = 0
    intensity_type: str = "normal"
    notes: Optional[str] = None


class ConfiguredExercise(BaseModel):
    """An exercise in the plan builder draft with its per-set configuration."""

    config_id: str
    exercise_id: int
    name: str = ""
    target_muscle: str = ""
    order: int = 0
    sets: List[PlannedSet] = Field(default_factory=list)


class WorkoutSet(BaseModel):
    id: Optional[int] = None
    workout_exercise_id: Optional[int] = None
    set_number: int = 1
    reps: int = 0
    weight: float = 0
    intensity_type: str = "normal"
    notes: Optional[str] = None


class WorkoutExercise(BaseModel):
    id: Optional[int] = None
    workout_id: Optional[int] = None
    exercise_id: int
    order: int = 0
    sets: int = 0
    reps: int = 0
    weight: float = 0
    exercise: Optional[ExerciseRef] = None
    workout_sets: List[WorkoutSet] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.exercise.name if self.exercise else f"Exercise {self.exercise_id}"

    @property
    def target_muscle(self) -> str:
        return self.exercise.target_muscle if self.exercise else ""


class Workout(BaseModel):
    id: int
    date: str
    status: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    workout_exercises: List[WorkoutExercise] = Field(default_factory=list)
