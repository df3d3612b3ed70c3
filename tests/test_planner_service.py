import os
import sys
import datetime
import unittest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from auth import AuthContext
from client import GatewayClient
from config import ConnectionSettings
from exceptions import PlanError
from planner_service import PlanBuilder, parse_number
from rest_api import GymAPI
from settings_schema import SettingsSchema


class PlanBuilderTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_planner.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.api = GymAPI(db_path=self.db_path, api_key="test-key")
        self.gateway = GatewayClient(
            ConnectionSettings("http://testserver", "test-key"),
            http=TestClient(self.api.app),
        )
        self.auth = AuthContext(self.gateway)
        self.auth.start()
        self.auth.sign_up("planner@example.com", "secret-pass")
        self.builder = PlanBuilder(self.gateway, self.auth, today=datetime.date(2024, 6, 1))
        self.builder.load_catalog()

    def tearDown(self) -> None:
        self.auth.close()
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def _exercise(self, name: str):
        return next(e for e in self.builder.catalog if e.name == name)

    def _add(self, *names: str) -> list:
        return [self.builder.add_exercise(self._exercise(n)) for n in names]

    def _template(self, exercises: list) -> int:
        return self.gateway.rpc(
            "create_template", {"name": "Push", "exercises": exercises}
        )["id"]

    def test_add_exercise_defaults(self) -> None:
        (bench,) = self._add("Bench Press")
        self.assertEqual(bench.order, 0)
        self.assertEqual([(s.set_number, s.reps, s.weight) for s in bench.sets], [(1, 8, 0), (2, 8, 0), (3, 8, 0)])
        self.assertTrue(bench.config_id.startswith("manual-"))
        self.assertIs(self.builder.add_exercise(self._exercise("Bench Press")), bench)
        self.assertEqual(len(self.builder.exercises), 1)

    def test_settings_drive_defaults(self) -> None:
        builder = PlanBuilder(
            self.gateway, self.auth, SettingsSchema(default_sets=2, default_reps=5)
        )
        configured = builder.add_exercise(self._exercise("Deadlift"))
        self.assertEqual([(s.set_number, s.reps) for s in configured.sets], [(1, 5), (2, 5)])

    def test_remove_renumbers_order(self) -> None:
        configured = self._add("Bench Press", "Back Squat", "Deadlift", "Pull Up")
        self.builder.remove_exercise(configured[1].config_id)
        self.assertEqual([c.order for c in self.builder.exercises], [0, 1, 2])
        self.assertEqual(
            [c.name for c in self.builder.exercises], ["Bench Press", "Deadlift", "Pull Up"]
        )

    def test_toggle_exercise(self) -> None:
        bench = self._exercise("Bench Press")
        self.assertTrue(self.builder.toggle_exercise(bench))
        self.assertFalse(self.builder.toggle_exercise(bench))
        self.assertEqual(self.builder.exercises, [])

    def test_set_count_grow_and_shrink(self) -> None:
        (bench,) = self._add("Bench Press")
        bench.sets[0].reps = 10
        bench.sets[0].weight = 60
        self.builder.set_set_count(bench.config_id, 5)
        self.assertEqual([s.set_number for s in bench.sets], [1, 2, 3, 4, 5])
        self.assertEqual([(s.reps, s.weight) for s in bench.sets[3:]], [(10, 60), (10, 60)])
        self.builder.set_set_count(bench.config_id, "2")
        self.assertEqual([s.set_number for s in bench.sets], [1, 2])
        self.builder.set_set_count(bench.config_id, -4)
        self.assertEqual(bench.sets, [])
        self.builder.set_set_count(bench.config_id, 1)
        self.assertEqual((bench.sets[0].reps, bench.sets[0].weight), (8, 0))

    def test_uniform_reps_and_weight(self) -> None:
        (bench,) = self._add("Bench Press")
        self.builder.set_reps(bench.config_id, "12")
        self.builder.set_weight(bench.config_id, 42.5)
        self.assertEqual({(s.reps, s.weight) for s in bench.sets}, {(12, 42.5)})
        with self.assertRaises(ValueError):
            self.builder.set_weight(bench.config_id, "heavy")
        with self.assertRaises(ValueError):
            self.builder.set_reps(bench.config_id, float("nan"))
        self.builder.set_weight(bench.config_id, -10)
        self.assertEqual({s.weight for s in bench.sets}, {0})

    def test_move_and_reorder(self) -> None:
        a, b, c = self._add("Bench Press", "Back Squat", "Deadlift")
        self.builder.move(0, 2)
        self.assertEqual([x.config_id for x in self.builder.exercises], [b.config_id, c.config_id, a.config_id])
        self.assertEqual([x.order for x in self.builder.exercises], [0, 1, 2])
        self.builder.reorder([a.config_id, b.config_id, c.config_id])
        self.assertEqual([x.order for x in (a, b, c)], [0, 1, 2])
        with self.assertRaises(ValueError):
            self.builder.reorder([a.config_id, b.config_id])
        with self.assertRaises(IndexError):
            self.builder.move(5, 0)

    def test_search_hides_selected(self) -> None:
        self._add("Bench Press")
        names = [e.name for e in self.builder.search("chest")]
        self.assertIn("Incline Dumbbell Press", names)
        self.assertNotIn("Bench Press", names)
        self.assertEqual([e.name for e in self.builder.search("squat")], ["Back Squat", "Front Squat"])

    def test_add_custom_exercise(self) -> None:
        configured = self.builder.add_custom_exercise("Zercher Squat", "Legs")
        self.assertEqual(configured.name, "Zercher Squat")
        self.assertIn("Zercher Squat", [e.name for e in self.builder.catalog])
        with self.assertRaises(PlanError):
            self.builder.add_custom_exercise("  ", "Legs")

    def test_template_import_fidelity(self) -> None:
        bench = self._exercise("Bench Press")
        squat = self._exercise("Back Squat")
        tid = self._template(
            [
                {"exercise_id": bench.id, "sets": 3, "reps": 8},
                {"exercise_id": squat.id, "sets": 3, "reps": 8},
            ]
        )
        self.assertTrue(self.builder.apply_query({"importTemplate": str(tid)}))
        self.assertEqual(self.builder.mode, "import_template")
        self.assertEqual([c.exercise_id for c in self.builder.exercises], [bench.id, squat.id])
        for configured in self.builder.exercises:
            self.assertEqual(
                [(s.set_number, s.reps, s.weight, s.intensity_type) for s in configured.sets],
                [(1, 8, 0, "normal"), (2, 8, 0, "normal"), (3, 8, 0, "normal")],
            )
        self.assertEqual(
            self.builder.exercises[0].config_id, f"template-{tid}-{bench.id}-0"
        )

    def test_import_happens_once_per_key(self) -> None:
        tid = self._template([{"exercise_id": self._exercise("Bench Press").id}])
        self.assertTrue(self.builder.apply_query({"importTemplate": str(tid)}))
        self.builder.add_exercise(self._exercise("Deadlift"))
        self.assertFalse(self.builder.apply_query({"importTemplate": str(tid)}))
        self.assertEqual(len(self.builder.exercises), 2)

    def test_import_waits_for_user(self) -> None:
        self.auth.sign_out()
        self.assertFalse(self.builder.apply_query({"importTemplate": "1"}))
        self.assertIsNone(self.builder.last_imported_key)

    def test_import_missing_source_sets_error(self) -> None:
        self.assertTrue(self.builder.apply_query({"importWorkout": "999"}))
        self.assertEqual(self.builder.exercises, [])
        self.assertTrue(self.builder.error_message)

    def test_workout_import_copies_sets(self) -> None:
        bench = self._exercise("Bench Press")
        row = self.gateway.rpc(
            "save_workout_plan",
            {
                "date": "2024-05-20",
                "exercises": [
                    {
                        "exercise_id": bench.id,
                        "sets": [
                            {"reps": 5, "weight": 100, "intensity_type": "heavy", "notes": "pr"},
                            {"reps": 3, "weight": 105},
                        ],
                    }
                ],
            },
        )
        # a workout exercise without set rows falls back to one default set
        we = self.gateway.insert(
            "workout_exercises",
            {"workout_id": row["id"], "exercise_id": self._exercise("Deadlift").id, "order": 1},
        )[0]
        self.builder.apply_query({"importWorkout": str(row["id"])})
        self.assertEqual(self.builder.date, "2024-05-20")
        first, second = self.builder.exercises
        self.assertEqual(
            [(s.set_number, s.reps, s.weight, s.intensity_type, s.notes) for s in first.sets],
            [(1, 5, 100, "heavy", "pr"), (2, 3, 105, "normal", None)],
        )
        self.assertEqual(second.exercise_id, we["exercise_id"])
        self.assertEqual([(s.set_number, s.reps, s.weight) for s in second.sets], [(1, 8, 0)])

    def test_save_new_workout(self) -> None:
        self._add("Bench Press", "Back Squat")
        self.builder.date = "2024-06-03"
        target = self.builder.save()
        self.assertTrue(target.startswith("/workout/"))
        self.assertFalse(self.builder.saving)
        wid = int(target.rsplit("/", 1)[1])
        workout = self.gateway.select(
            "workouts",
            filters={"id": wid},
            embed={"workout_exercises": {"workout_sets": {}}},
            single=True,
        )
        self.assertEqual(workout["date"], "2024-06-03")
        self.assertEqual(workout["status"], "scheduled")
        self.assertEqual([len(we["workout_sets"]) for we in workout["workout_exercises"]], [3, 3])

    def test_save_edited_workout_updates_in_place(self) -> None:
        self._add("Bench Press")
        wid = int(self.builder.save().rsplit("/", 1)[1])
        builder = PlanBuilder(self.gateway, self.auth)
        builder.load_catalog()
        builder.apply_query({"importWorkout": str(wid)})
        builder.sync_selection([self._exercise("Deadlift").id])
        self.assertEqual([c.name for c in builder.exercises], ["Deadlift"])
        self.assertEqual(builder.save(), f"/workout/{wid}")
        rows = self.gateway.select("workout_exercises", filters={"workout_id": wid})
        self.assertEqual([r["exercise_id"] for r in rows], [self._exercise("Deadlift").id])
        self.assertEqual(len(self.gateway.select("workouts")), 1)

    def test_save_empty_workout_fails(self) -> None:
        with self.assertRaises(PlanError):
            self.builder.save()
        self.assertEqual(self.builder.error_message, "Add at least one exercise to your workout.")
        self.assertFalse(self.builder.saving)

    def test_save_requires_user(self) -> None:
        self._add("Bench Press")
        self.auth.sign_out()
        with self.assertRaises(PlanError):
            self.builder.save()
        self.assertFalse(self.builder.saving)

    def test_edit_template_save(self) -> None:
        bench = self._exercise("Bench Press")
        tid = self._template([{"exercise_id": bench.id, "sets": 3, "reps": 8}])
        self.builder.apply_query({"editTemplate": str(tid)})
        self.assertEqual(self.builder.mode, "edit_template")
        self.assertEqual(self.builder.template_name, "Push")
        self.builder.sync_selection([bench.id, self._exercise("Overhead Press").id])
        self.builder.set_set_count(self.builder.exercises[0].config_id, 5)
        self.builder.set_reps(self.builder.exercises[0].config_id, 5)
        self.assertEqual(self.builder.save(), "/templates")
        rows = self.gateway.select("template_exercises", filters={"template_id": tid})
        self.assertEqual([(r["sets"], r["reps"], r["order"]) for r in rows], [(5, 5, 0), (3, 8, 1)])

    def test_template_import_ignores_selection_sync(self) -> None:
        bench = self._exercise("Bench Press")
        tid = self._template([{"exercise_id": bench.id}])
        self.builder.apply_query({"importTemplate": str(tid)})
        self.assertFalse(self.builder.sync_selection([]))
        self.assertEqual(len(self.builder.exercises), 1)

    def test_save_as_template(self) -> None:
        self._add("Bench Press", "Pull Up")
        self.assertEqual(self.builder.save_as_template("Upper"), "/templates")
        template = self.gateway.select(
            "templates", filters={"name": "Upper"}, embed={"template_exercises": {}}, single=True
        )
        self.assertEqual(len(template["template_exercises"]), 2)
        with self.assertRaises(PlanError):
            self.builder.save_as_template(" ")


class ParseNumberTest(unittest.TestCase):
    def test_parse_number(self) -> None:
        self.assertEqual(parse_number("12"), 12.0)
        self.assertEqual(parse_number(" 7.9 ", integer=True), 7)
        self.assertEqual(parse_number(-3), 0)
        for bad in ("", "abc", None, float("nan"), float("inf"), True):
            with self.assertRaises(ValueError):
                parse_number(bad)


if __name__ == "__main__":
    unittest.main()
