from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from models import Workout, WorkoutExercise, WorkoutSet


def exercise_volume(sets: Iterable[WorkoutSet]) -> float:
    """Return the sum of reps times weight over ``sets``."""
    return float(sum(int(s.reps) * float(s.weight) for s in sets))


def _exercise_total(exercise: WorkoutExercise) -> float:
    if exercise.workout_sets:
        return exercise_volume(exercise.workout_sets)
    # no set rows: fall back to the denormalized summary
    return float(exercise.sets * exercise.reps * exercise.weight)


def muscle_volume(exercises: Iterable[WorkoutExercise]) -> Dict[str, float]:
    """Return volume per target muscle."""
    totals: Dict[str, float] = {}
    for exercise in exercises:
        muscle = exercise.target_muscle or "Other"
        totals[muscle] = totals.get(muscle, 0.0) + _exercise_total(exercise)
    return totals


def workout_volume(workout: Workout) -> float:
    return sum(_exercise_total(e) for e in workout.workout_exercises)


def volume_by_date(
    workouts: Iterable[Workout], muscle: Optional[str] = None
) -> List[Dict[str, float]]:
    """Return total volume and set count per workout date.

    With ``muscle`` only exercises targeting that muscle are counted and dates
    without any such exercise are left out.
    """
    by_date: Dict[str, Dict[str, float]] = {}
    for workout in workouts:
        for exercise in workout.workout_exercises:
            if muscle is not None and exercise.target_muscle != muscle:
                continue
            entry = by_date.setdefault(workout.date, {"volume": 0.0, "sets": 0})
            entry["volume"] += _exercise_total(exercise)
            entry["sets"] += len(exercise.workout_sets) or exercise.sets
    result = []
    for d in sorted(by_date):
        data = by_date[d]
        result.append(
            {"date": d, "volume": round(data["volume"], 2), "sets": data["sets"]}
        )
    return result


def muscle_groups(workouts: Iterable[Workout]) -> List[str]:
    """Return the sorted target muscles present in ``workouts``."""
    return sorted(
        {
            e.target_muscle
            for w in workouts
            for e in w.workout_exercises
            if e.target_muscle
        }
    )
