"""Reads and writes behind the workout screens.

Read helpers honour the auth state: while it is loading no request is issued,
and without a user they return empty data. Read failures are logged and
degrade to empty data; write failures propagate.
"""

import datetime
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional

from pydantic import BaseModel

from auth import AuthContext
from client import GatewayClient
from exceptions import APIError
from models import ExerciseRef, Workout, WorkoutExercise, WorkoutSet

logger = logging.getLogger(__name__)

WORKOUT_EMBED = {"workout_exercises": {"exercise": {}, "workout_sets": {}}}
TEMPLATE_EMBED = {"template_exercises": {"exercise": {}}}
STATUSES = ("scheduled", "completed")


class QueryResult(BaseModel):
    data: Any = None
    loading: bool = False
    error: Optional[str] = None


def default_status(
    status: Optional[str], date: str | datetime.date, today: datetime.date | None = None
) -> str:
    """Return ``status`` or derive it from the workout date."""
    if status:
        return status
    today = today or datetime.date.today()
    day = date if isinstance(date, datetime.date) else datetime.date.fromisoformat(str(date)[:10])
    return "scheduled" if day >= today else "completed"


def _query(auth: AuthContext, empty: Any, fetch: Callable[[], Any]) -> QueryResult:
    if auth.loading:
        return QueryResult(data=empty, loading=True)
    if auth.user_id is None:
        return QueryResult(data=empty)
    try:
        return QueryResult(data=fetch())
    except APIError as e:
        logger.error("read failed: %s", e)
        return QueryResult(data=empty, error=str(e))


def to_workout(row: dict, today: datetime.date | None = None) -> Workout:
    workout = Workout(**row)
    workout.status = default_status(workout.status, workout.date, today)
    workout.workout_exercises.sort(key=lambda we: (we.order, we.id or 0))
    for we in workout.workout_exercises:
        we.workout_sets.sort(key=lambda s: s.set_number)
    return workout


def load_exercises(gateway: GatewayClient, auth: AuthContext) -> QueryResult:
    return _query(
        auth,
        [],
        lambda: [ExerciseRef(**r) for r in gateway.select("exercises", order="name")],
    )


def load_templates(gateway: GatewayClient, auth: AuthContext) -> QueryResult:
    return _query(
        auth,
        [],
        lambda: gateway.select("templates", order="created_at.desc", embed=TEMPLATE_EMBED),
    )


def load_dashboard(
    gateway: GatewayClient,
    auth: AuthContext,
    today: datetime.date | None = None,
    limit: int = 5,
) -> QueryResult:
    """Load upcoming and recent workouts with two concurrent reads."""
    today = today or datetime.date.today()

    def fetch() -> dict:
        with ThreadPoolExecutor(max_workers=2) as pool:
            upcoming = pool.submit(
                gateway.select,
                "workouts",
                filters=[("date", "gte", today.isoformat())],
                order=["date", "id"],
                embed=WORKOUT_EMBED,
                limit=limit,
            )
            recent = pool.submit(
                gateway.select,
                "workouts",
                filters=[("date", "lt", today.isoformat())],
                order=["date.desc", "id.desc"],
                embed=WORKOUT_EMBED,
                limit=limit,
            )
            return {
                "upcoming": [to_workout(r, today) for r in upcoming.result()],
                "recent": [to_workout(r, today) for r in recent.result()],
            }

    return _query(auth, {"upcoming": [], "recent": []}, fetch)


def load_workouts(
    gateway: GatewayClient, auth: AuthContext, today: datetime.date | None = None
) -> QueryResult:
    """Load every workout split into completed and scheduled lists."""

    def fetch() -> dict:
        rows, total = gateway.select(
            "workouts", order=["date.desc", "id.desc"], embed=WORKOUT_EMBED, count=True
        )
        workouts = [to_workout(r, today) for r in rows]
        return {
            "completed": [w for w in workouts if w.status == "completed"],
            "scheduled": [w for w in workouts if w.status != "completed"],
            "total": total,
        }

    return _query(auth, {"completed": [], "scheduled": [], "total": 0}, fetch)


def load_workout_detail(
    gateway: GatewayClient, auth: AuthContext, workout_id: int
) -> QueryResult:
    return _query(
        auth,
        None,
        lambda: to_workout(
            gateway.select(
                "workouts", filters={"id": workout_id}, embed=WORKOUT_EMBED, single=True
            )
        ),
    )


def load_runner_exercises(
    gateway: GatewayClient, auth: AuthContext, workout_id: int
) -> QueryResult:
    """Load a workout's exercises in order, each with at least one set."""

    def fetch() -> List[WorkoutExercise]:
        rows = gateway.select(
            "workout_exercises",
            filters={"workout_id": workout_id},
            order=["order", "id"],
            embed={"exercise": {}, "workout_sets": {}},
        )
        exercises = []
        for row in rows:
            we = WorkoutExercise(**row)
            we.workout_sets.sort(key=lambda s: s.set_number)
            if not we.workout_sets:
                we.workout_sets = [
                    WorkoutSet(
                        workout_exercise_id=we.id,
                        set_number=n,
                        reps=we.reps,
                        weight=we.weight,
                    )
                    for n in range(1, max(we.sets, 1) + 1)
                ]
            exercises.append(we)
        return exercises

    return _query(auth, [], fetch)


def load_analytics(gateway: GatewayClient, auth: AuthContext) -> QueryResult:
    return _query(
        auth,
        [],
        lambda: [
            to_workout(r)
            for r in gateway.select("workouts", order=["date", "id"], embed=WORKOUT_EMBED)
        ],
    )


def set_rows(exercise: WorkoutExercise) -> List[dict]:
    rows = []
    for s in exercise.workout_sets:
        row = {
            "workout_exercise_id": exercise.id,
            "set_number": s.set_number,
            "reps": s.reps,
            "weight": s.weight,
            "intensity_type": s.intensity_type or "normal",
            "notes": s.notes,
        }
        if s.id is not None:
            row["id"] = s.id
        rows.append(row)
    return rows


def save_workout_sets(
    gateway: GatewayClient,
    workout_id: int,
    exercises: List[WorkoutExercise],
    date: Optional[str] = None,
    status: Optional[str] = None,
) -> None:
    """Persist every set and summary of ``exercises`` plus the workout patch atomically.

    Ids assigned to new sets are written back onto the models, so saving the
    same exercises again updates instead of inserting.
    """
    if status is not None and status not in STATUSES:
        raise ValueError(f"status must be one of {', '.join(STATUSES)}")
    params = {
        "workout_id": workout_id,
        "exercises": [
            {"id": we.id, "sets": set_rows(we)} for we in exercises
        ],
    }
    if date:
        params["date"] = date
    if status:
        params["status"] = status
    result = gateway.rpc("save_workout_sets", params)
    for we, saved in zip(exercises, result["exercises"]):
        for s, set_id in zip(we.workout_sets, saved["set_ids"]):
            s.id = set_id
            s.workout_exercise_id = we.id


def save_workout(
    gateway: GatewayClient,
    workout: Workout,
    date: Optional[str] = None,
    status: Optional[str] = None,
) -> None:
    """Persist edited sets and summaries, then the workout's date and status."""
    save_workout_sets(
        gateway, workout.id, workout.workout_exercises, date or workout.date, status
    )


def set_workout_status(gateway: GatewayClient, workout_id: int, status: str) -> None:
    if status not in STATUSES:
        raise ValueError(f"status must be one of {', '.join(STATUSES)}")
    gateway.update("workouts", {"status": status}, {"id": workout_id})


def delete_workout(gateway: GatewayClient, workout_id: int) -> None:
    gateway.delete("workouts", {"id": workout_id})


def delete_template(gateway: GatewayClient, template_id: int) -> None:
    gateway.delete("templates", {"id": template_id})


def create_template_from_workout(
    gateway: GatewayClient, workout_id: int, name: str
) -> int:
    return gateway.rpc(
        "create_template_from_workout", {"workout_id": workout_id, "name": name}
    )["id"]


def add_custom_exercise(
    gateway: GatewayClient, name: str, target_muscle: str
) -> ExerciseRef:
    name = name.strip()
    if not name:
        raise ValueError("exercise name required")
    row = gateway.insert(
        "exercises", {"name": name, "target_muscle": target_muscle.strip()}
    )[0]
    return ExerciseRef(**row)
