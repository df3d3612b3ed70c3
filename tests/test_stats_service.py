import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from models import ExerciseRef, Workout, WorkoutExercise, WorkoutSet
import stats_service


def _we(muscle: str, sets: list[tuple[int, float]], name: str = "Lift") -> WorkoutExercise:
    return WorkoutExercise(
        exercise_id=1,
        exercise=ExerciseRef(id=1, name=name, target_muscle=muscle),
        workout_sets=[
            WorkoutSet(set_number=i, reps=r, weight=w) for i, (r, w) in enumerate(sets, 1)
        ],
    )


class StatsServiceTest(unittest.TestCase):
    def test_exercise_volume(self) -> None:
        sets = _we("Chest", [(8, 100), (8, 100), (6, 110)]).workout_sets
        self.assertEqual(stats_service.exercise_volume(sets), 2260)
        self.assertEqual(stats_service.exercise_volume([]), 0)

    def test_muscle_volume(self) -> None:
        exercises = [
            _we("Chest", [(8, 100), (8, 100), (6, 110)]),
            _we("Chest", [(10, 50)]),
            _we("Back", [(5, 20)]),
        ]
        self.assertEqual(
            stats_service.muscle_volume(exercises), {"Chest": 2760, "Back": 100}
        )

    def test_summary_fallback(self) -> None:
        we = WorkoutExercise(exercise_id=2, sets=3, reps=5, weight=100)
        workout = Workout(id=1, date="2024-01-01", workout_exercises=[we])
        self.assertEqual(stats_service.workout_volume(workout), 1500)
        self.assertEqual(stats_service.muscle_volume([we]), {"Other": 1500})

    def test_volume_by_date(self) -> None:
        workouts = [
            Workout(
                id=2,
                date="2024-01-03",
                workout_exercises=[_we("Legs", [(5, 100)]), _we("Chest", [(10, 10)])],
            ),
            Workout(id=1, date="2024-01-01", workout_exercises=[_we("Chest", [(8, 50), (8, 50)])]),
        ]
        self.assertEqual(
            stats_service.volume_by_date(workouts),
            [
                {"date": "2024-01-01", "volume": 800.0, "sets": 2},
                {"date": "2024-01-03", "volume": 600.0, "sets": 2},
            ],
        )
        self.assertEqual(
            stats_service.volume_by_date(workouts, "Legs"),
            [{"date": "2024-01-03", "volume": 500.0, "sets": 1}],
        )
        self.assertEqual(stats_service.muscle_groups(workouts), ["Chest", "Legs"])


if __name__ == "__main__":
    unittest.main()
