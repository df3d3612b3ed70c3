import os
import sys
import datetime
import unittest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from auth import AuthContext
from client import GatewayClient
from config import ConnectionSettings
from exceptions import APIError
from models import WorkoutSet
from rest_api import GymAPI
import workout_service


class DefaultStatusTest(unittest.TestCase):
    def test_default_status(self) -> None:
        today = datetime.date(2024, 6, 1)
        self.assertEqual(workout_service.default_status(None, "2024-06-01", today), "scheduled")
        self.assertEqual(workout_service.default_status(None, "2024-06-09", today), "scheduled")
        self.assertEqual(workout_service.default_status(None, "2024-05-31", today), "completed")
        self.assertEqual(
            workout_service.default_status("completed", "2024-07-01", today), "completed"
        )
        self.assertEqual(
            workout_service.default_status("", datetime.date(2024, 5, 1), today), "completed"
        )


class WorkoutServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_workout_service.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.api = GymAPI(db_path=self.db_path, api_key="test-key")
        self.gateway = GatewayClient(
            ConnectionSettings("http://testserver", "test-key"),
            http=TestClient(self.api.app),
        )
        self.auth = AuthContext(self.gateway)
        self.auth.start()
        self.auth.sign_up("service@example.com", "secret-pass")
        self.ids = {
            r["name"]: r["id"]
            for r in self.gateway.select("exercises", filters={"user_id": None})
        }
        self.today = datetime.date.today()

    def tearDown(self) -> None:
        self.auth.close()
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def _workout(self, offset: int, status: str | None = None) -> int:
        params = {
            "date": (self.today + datetime.timedelta(days=offset)).isoformat(),
            "exercises": [
                {
                    "exercise_id": self.ids["Bench Press"],
                    "sets": [{"reps": 8, "weight": 100}, {"reps": 6, "weight": 110}],
                }
            ],
        }
        if status:
            params["status"] = status
        return self.gateway.rpc("save_workout_plan", params)["id"]

    def test_loading_and_signed_out_states(self) -> None:
        auth = AuthContext(self.gateway)
        result = workout_service.load_exercises(self.gateway, auth)
        self.assertTrue(result.loading)
        self.assertEqual(result.data, [])
        self.auth.sign_out()
        auth.start()
        result = workout_service.load_dashboard(self.gateway, auth)
        self.assertFalse(result.loading)
        self.assertEqual(result.data, {"upcoming": [], "recent": []})
        auth.close()

    def test_load_exercises(self) -> None:
        result = workout_service.load_exercises(self.gateway, self.auth)
        names = [e.name for e in result.data]
        self.assertEqual(names, sorted(names))
        self.assertIn("Deadlift", names)

    def test_load_dashboard(self) -> None:
        past = self._workout(-3)
        future = self._workout(2)
        today = self._workout(0)
        result = workout_service.load_dashboard(self.gateway, self.auth)
        upcoming = result.data["upcoming"]
        recent = result.data["recent"]
        self.assertEqual([w.id for w in upcoming], [today, future])
        self.assertEqual([w.id for w in recent], [past])
        self.assertEqual(upcoming[0].workout_exercises[0].name, "Bench Press")

    def test_null_status_is_defaulted(self) -> None:
        self.gateway.insert("workouts", {"date": "2000-01-01"})
        result = workout_service.load_workouts(self.gateway, self.auth)
        self.assertEqual([w.status for w in result.data["completed"]], ["completed"])
        self.assertEqual(result.data["total"], 1)

    def test_load_workouts_split(self) -> None:
        self._workout(-1, "completed")
        self._workout(-2)
        self._workout(1)
        result = workout_service.load_workouts(self.gateway, self.auth)
        self.assertEqual(len(result.data["completed"]), 1)
        self.assertEqual(len(result.data["scheduled"]), 2)

    def test_detail_of_missing_workout(self) -> None:
        result = workout_service.load_workout_detail(self.gateway, self.auth, 4242)
        self.assertIsNone(result.data)
        self.assertIsNotNone(result.error)

    def test_load_runner_exercises_fills_sets(self) -> None:
        wid = self._workout(0)
        self.gateway.insert(
            "workout_exercises",
            {
                "workout_id": wid,
                "exercise_id": self.ids["Deadlift"],
                "order": 1,
                "sets": 2,
                "reps": 5,
                "weight": 140,
            },
        )
        exercises = workout_service.load_runner_exercises(self.gateway, self.auth, wid).data
        self.assertEqual([e.name for e in exercises], ["Bench Press", "Deadlift"])
        filled = exercises[1].workout_sets
        self.assertEqual([(s.set_number, s.reps, s.weight, s.id) for s in filled], [(1, 5, 140, None), (2, 5, 140, None)])

    def test_save_workout(self) -> None:
        wid = self._workout(0)
        workout = workout_service.load_workout_detail(self.gateway, self.auth, wid).data
        bench = workout.workout_exercises[0]
        bench.workout_sets[0].reps = 12
        bench.workout_sets[0].weight = 90
        workout_service.save_workout(self.gateway, workout, date="2024-01-02", status="completed")
        saved = workout_service.load_workout_detail(self.gateway, self.auth, wid).data
        self.assertEqual(saved.date, "2024-01-02")
        self.assertEqual(saved.status, "completed")
        first = saved.workout_exercises[0]
        self.assertEqual((first.reps, first.weight, first.sets), (12, 90, 2))
        self.assertEqual(first.workout_sets[0].reps, 12)

    def test_save_workout_sets_assigns_ids(self) -> None:
        wid = self._workout(0)
        workout = workout_service.load_workout_detail(self.gateway, self.auth, wid).data
        bench = workout.workout_exercises[0]
        bench.workout_sets.append(WorkoutSet(set_number=3, reps=4, weight=120))
        workout_service.save_workout_sets(self.gateway, wid, workout.workout_exercises)
        new_id = bench.workout_sets[2].id
        self.assertIsNotNone(new_id)
        workout_service.save_workout_sets(self.gateway, wid, workout.workout_exercises)
        saved = workout_service.load_workout_detail(self.gateway, self.auth, wid).data
        self.assertEqual([s.id for s in saved.workout_exercises[0].workout_sets][-1], new_id)
        self.assertEqual(len(saved.workout_exercises[0].workout_sets), 3)
        self.assertEqual(saved.workout_exercises[0].sets, 3)
        with self.assertRaises(ValueError):
            workout_service.save_workout_sets(
                self.gateway, wid, workout.workout_exercises, status="skipped"
            )

    def test_status_and_delete(self) -> None:
        wid = self._workout(3)
        workout_service.set_workout_status(self.gateway, wid, "completed")
        detail = workout_service.load_workout_detail(self.gateway, self.auth, wid).data
        self.assertEqual(detail.status, "completed")
        with self.assertRaises(ValueError):
            workout_service.set_workout_status(self.gateway, wid, "skipped")
        workout_service.delete_workout(self.gateway, wid)
        self.assertEqual(self.gateway.select("workouts"), [])

    def test_templates(self) -> None:
        wid = self._workout(0)
        tid = workout_service.create_template_from_workout(self.gateway, wid, "Bench day")
        templates = workout_service.load_templates(self.gateway, self.auth).data
        self.assertEqual([t["name"] for t in templates], ["Bench day"])
        te = templates[0]["template_exercises"][0]
        self.assertEqual(te["exercise"]["name"], "Bench Press")
        self.assertEqual((te["sets"], te["reps"]), (2, 8))
        workout_service.delete_template(self.gateway, tid)
        self.assertEqual(workout_service.load_templates(self.gateway, self.auth).data, [])

    def test_add_custom_exercise(self) -> None:
        exercise = workout_service.add_custom_exercise(self.gateway, " Sled Push ", "Legs")
        self.assertEqual(exercise.name, "Sled Push")
        self.assertTrue(exercise.is_custom)
        with self.assertRaises(ValueError):
            workout_service.add_custom_exercise(self.gateway, "", "Legs")

    def test_write_errors_propagate(self) -> None:
        self.auth.sign_out()
        with self.assertRaises(APIError):
            workout_service.create_template_from_workout(self.gateway, 1, "x")

    def test_analytics(self) -> None:
        self._workout(-5, "completed")
        self._workout(-1, "completed")
        workouts = workout_service.load_analytics(self.gateway, self.auth).data
        self.assertEqual(len(workouts), 2)
        self.assertLess(workouts[0].date, workouts[1].date)


if __name__ == "__main__":
    unittest.main()
