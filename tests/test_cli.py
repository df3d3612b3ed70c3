import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import cli
from db import ProcedureRepository


class CLITest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cli.db"
        self.backup_path = "test_cli_backup.db"
        for path in (self.db_path, self.backup_path):
            if os.path.exists(path):
                os.remove(path)

    def tearDown(self) -> None:
        for path in (self.db_path, self.backup_path):
            if os.path.exists(path):
                os.remove(path)

    def test_seed_data(self) -> None:
        user_id = cli.seed_data(self.db_path, "demo@example.com", "demo-password")
        self.assertIsNotNone(user_id)
        rows = ProcedureRepository(self.db_path)
        workouts = rows.select(user_id, "workouts", order=[("date", False)])
        self.assertEqual([w["status"] for w in workouts], ["completed", "scheduled"])
        templates = rows.select(
            user_id, "templates", embed={"template_exercises": {}}
        )
        self.assertEqual(templates[0]["name"], "Full Body A")
        self.assertEqual(len(templates[0]["template_exercises"]), 3)
        self.assertIsNone(cli.seed_data(self.db_path, "demo@example.com", "demo-password"))

    def test_backup_and_restore(self) -> None:
        cli.main(["seed", "--db", self.db_path, "--email", "cli@example.com"])
        cli.main(["backup", "--db", self.db_path, "--out", self.backup_path])
        os.remove(self.db_path)
        cli.main(["restore", "--in", self.backup_path, "--db", self.db_path])
        rows = ProcedureRepository(self.db_path)
        user = rows.fetch_dicts("SELECT id FROM users WHERE email = ?", ("cli@example.com",))
        self.assertEqual(len(user), 1)

    def test_vacuum(self) -> None:
        user_id = cli.seed_data(self.db_path, "vac@example.com", "demo-password")
        rows = ProcedureRepository(self.db_path)
        for workout in rows.select(user_id, "workouts"):
            rows.delete(user_id, "workouts", [("id", "eq", workout["id"])])
        size = os.path.getsize(self.db_path)
        cli.main(["vacuum", "--db", self.db_path])
        self.assertLessEqual(os.path.getsize(self.db_path), size)
        self.assertEqual(rows.select(user_id, "workout_sets"), [])
        self.assertEqual(len(rows.select(user_id, "templates")), 1)


if __name__ == "__main__":
    unittest.main()
