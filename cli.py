import argparse
import datetime
import logging
import os
import shutil
import subprocess
import sys
import time
from typing import Optional

import requests

from db import Database, ProcedureRepository, UserRepository

logger = logging.getLogger(__name__)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def vacuum_db(db_path: str) -> None:
    Database(db_path).vacuum()
    logger.info("vacuumed %s", db_path)


def benchmark(url: str, runs: int = 10) -> float:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")
    return avg


def seed_data(db_path: str, email: str, password: str) -> Optional[str]:
    """Create a demo account with a template and two workouts."""
    users = UserRepository(db_path)
    rows = ProcedureRepository(db_path)
    try:
        user = users.create(email, password)
    except ValueError as e:
        print(f"Not seeding: {e}")
        return None
    catalog = {
        r["name"]: r["id"]
        for r in rows.select(user["id"], "exercises", filters=[("user_id", "is", None)])
    }
    picks = [catalog[n] for n in ("Bench Press", "Back Squat", "Barbell Row") if n in catalog]
    if not picks:
        picks = list(catalog.values())[:3]
    today = datetime.date.today()
    rows.create_template(
        user["id"],
        {
            "name": "Full Body A",
            "exercises": [{"exercise_id": ex, "sets": 3, "reps": 8} for ex in picks],
        },
    )
    for offset, status in ((-2, "completed"), (1, "scheduled")):
        rows.save_workout_plan(
            user["id"],
            {
                "date": (today + datetime.timedelta(days=offset)).isoformat(),
                "status": status,
                "exercises": [
                    {
                        "exercise_id": ex,
                        "sets": [
                            {"reps": 8, "weight": 60 + 10 * i} for i in range(3)
                        ],
                    }
                    for ex in picks
                ],
            },
        )
    print(f"Demo data inserted for {user['email']}")
    return user["id"]


def serve(db_path: str, host: str, port: int) -> None:
    import uvicorn
    from rest_api import GymAPI

    api = GymAPI(
        db_path=db_path,
        api_key=os.environ.get("LIFTPLAN_API_KEY", "local-dev-key"),
        require_confirmation=os.environ.get("LIFTPLAN_REQUIRE_CONFIRMATION") == "1",
    )
    uvicorn.run(api.app, host=host, port=port)


def run_ui(port: int) -> int:
    app_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "streamlit_app.py")
    return subprocess.call(
        [sys.executable, "-m", "streamlit", "run", app_path, "--server.port", str(port)]
    )


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Lift Planner utility commands")
    sub = parser.add_subparsers(dest="cmd", required=True)

    srv = sub.add_parser("serve")
    srv.add_argument("--db", default=os.environ.get("LIFTPLAN_DB_PATH", "workout.db"))
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    ui = sub.add_parser("ui")
    ui.add_argument("--port", type=int, default=8501)

    seed = sub.add_parser("seed")
    seed.add_argument("--db", default=os.environ.get("LIFTPLAN_DB_PATH", "workout.db"))
    seed.add_argument("--email", default="demo@example.com")
    seed.add_argument("--password", default="demo-password")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="workout.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="workout.db")

    vac = sub.add_parser("vacuum")
    vac.add_argument("--db", default=os.environ.get("LIFTPLAN_DB_PATH", "workout.db"))

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args(argv)
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

    if args.cmd == "serve":
        serve(args.db, args.host, args.port)
    elif args.cmd == "ui":
        run_ui(args.port)
    elif args.cmd == "seed":
        seed_data(args.db, args.email, args.password)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "vacuum":
        vacuum_db(args.db)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)


if __name__ == "__main__":
    main()
