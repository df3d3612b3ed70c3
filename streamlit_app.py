import datetime
import logging
import os
from contextlib import contextmanager
from typing import Callable, Generator, Optional

import altair as alt
import pandas as pd
import streamlit as st

from auth import AuthContext
from client import GatewayClient
from config import YamlConfig
from exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    PlanError,
    RunnerError,
)
from models import Workout
from planner_service import PlanBuilder
from runner_service import WorkoutRunner
from settings_schema import SettingsSchema, validate_settings
import routes
import stats_service
import workout_service

logger = logging.getLogger(__name__)


class GymApp:
    """Streamlit screens for planning, running and reviewing workouts."""

    def __init__(
        self,
        session_path: str = "session.yaml",
        settings_path: str = "settings.yaml",
    ) -> None:
        if "gateway" not in st.session_state:
            st.session_state.gateway = GatewayClient(storage=YamlConfig(session_path))
        self.gateway: GatewayClient = st.session_state.gateway
        if "auth" not in st.session_state:
            auth = AuthContext(self.gateway)
            auth.start()
            st.session_state.auth = auth
        self.auth: AuthContext = st.session_state.auth
        try:
            self.settings = validate_settings(YamlConfig(settings_path).load())
        except ValueError as e:
            logger.warning("ignoring invalid settings: %s", e)
            self.settings = SettingsSchema()
        self.weight_unit = self.settings.weight_unit

    # helpers --------------------------------------------------------------

    def _navigate(self, target: str) -> None:
        path, query = routes.split(target)
        st.query_params.clear()
        st.query_params.update({"path": path, **query})
        st.rerun()

    def _metric_grid(self, metrics: list[tuple[str, str]]) -> None:
        """Render metrics in a row of columns."""
        if not metrics:
            return
        cols = st.columns(len(metrics))
        for col, (label, val) in zip(cols, metrics):
            with col:
                st.metric(label, val)

    def _line_chart(
        self,
        data: dict[str, list],
        x: list[str],
        *,
        x_label: str = "x",
        y_label: str = "value",
    ) -> None:
        """Render a consistent line chart with accessible labels."""
        df = pd.DataFrame({"x": x})
        for key, values in data.items():
            df[key] = values
        long_df = df.melt("x", var_name="series", value_name="value")
        chart = (
            alt.Chart(long_df)
            .mark_line(point=True)
            .encode(
                x=alt.X("x", title=x_label),
                y=alt.Y("value", title=y_label),
                color=alt.Color(
                    "series",
                    scale=alt.Scale(scheme="dark2"),
                    legend=None if len(data) == 1 else alt.Legend(title="Series"),
                ),
            )
        )
        st.altair_chart(chart, use_container_width=True)

    def _bar_chart(self, values: dict[str, float], *, x_label: str, y_label: str) -> None:
        df = pd.DataFrame({"x": list(values), "value": list(values.values())})
        chart = (
            alt.Chart(df)
            .mark_bar()
            .encode(x=alt.X("x", title=x_label), y=alt.Y("value", title=y_label))
        )
        st.altair_chart(chart, use_container_width=True)

    def _show_dialog(self, title: str, content_fn: Callable[[], None]) -> None:
        """Display a modal dialog using the decorator API."""

        @st.dialog(title)
        def _dlg() -> None:
            content_fn()

        _dlg()

    def _confirm(self, message: str, key: str, action: Callable[[], Optional[str]]) -> None:
        """Ask before running ``action``; navigate to the route it returns."""

        def content() -> None:
            st.write(message)
            cols = st.columns(2)
            with cols[0]:
                confirmed = st.button("Delete", key=f"{key}_yes", type="primary")
            with cols[1]:
                if st.button("Cancel", key=f"{key}_no"):
                    st.rerun()
            if confirmed:
                try:
                    target = action()
                except APIError as e:
                    st.error(str(e))
                    return
                if target:
                    self._navigate(target)
                st.rerun()

        self._show_dialog("Please confirm", content)

    @contextmanager
    def _section(self, title: str) -> Generator[None, None, None]:
        """Context manager for a titled page section."""
        st.header(title)
        try:
            yield
        finally:
            st.divider()

    def _workout_label(self, workout: Workout) -> str:
        names = ", ".join(we.name for we in workout.workout_exercises[:3])
        more = len(workout.workout_exercises) - 3
        if more > 0:
            names += f" +{more}"
        return f"{workout.date} · {workout.status} · {names or 'no exercises'}"

    # shell ----------------------------------------------------------------

    def _create_sidebar(self) -> None:
        with st.sidebar:
            st.title("Lift Planner")
            for label, target in (
                ("Dashboard", "/"),
                ("Plan Workout", "/plan"),
                ("Templates", "/templates"),
                ("Past Workouts", "/past"),
                ("Analytics", "/analytics"),
            ):
                if st.button(label, key=f"nav_{target}", use_container_width=True):
                    st.session_state.pop("planner", None)
                    self._navigate(target)
            st.caption(self.auth.user["email"] if self.auth.user else "")
            if st.button("Sign out", key="nav_signout"):
                try:
                    self.auth.sign_out()
                except AuthenticationError as e:
                    st.error(str(e))
                    return
                self._navigate("/login")

    def run(self) -> None:
        try:
            self.gateway.settings.require()
        except ConfigurationError as e:
            st.error(str(e))
            return
        params = dict(st.query_params)
        path = params.pop("path", "/")
        redirect = routes.guard(path, params, self.auth.user)
        if redirect:
            self._navigate(redirect)
            return
        route, args = routes.match(path)
        if route == "/login":
            self._login_page(params)
            return
        self._create_sidebar()
        pages = {
            "/": self._dashboard_page,
            "/templates": self._templates_page,
            "/templates/:id/edit": self._template_edit_page,
            "/runner": self._runner_page,
            "/runner/:id": self._runner_page,
            "/past": self._past_page,
            "/analytics": self._analytics_page,
            "/past/:id": self._workout_page,
            "/workout/:id": self._workout_page,
        }
        if route == "/plan":
            self._plan_page(params)
        elif route == "/recap":
            self._recap_page(params)
        else:
            pages[route](**args)

    # pages ----------------------------------------------------------------

    def _login_page(self, query: dict) -> None:
        if self.auth.user is not None:
            self._navigate(routes.post_login_target(query))
            return
        st.title("Lift Planner")
        sign_in_tab, sign_up_tab = st.tabs(["Sign in", "Sign up"])
        with sign_in_tab:
            with st.form("sign_in_form"):
                email = st.text_input("Email", key="sign_in_email")
                password = st.text_input("Password", type="password", key="sign_in_password")
                submitted = st.form_submit_button("Sign in")
            if submitted:
                try:
                    self.auth.sign_in(email, password)
                except AuthenticationError as e:
                    st.error(str(e))
                else:
                    self._navigate(routes.post_login_target(query))
        with sign_up_tab:
            with st.form("sign_up_form"):
                email = st.text_input("Email", key="sign_up_email")
                password = st.text_input("Password", type="password", key="sign_up_password")
                submitted = st.form_submit_button("Create account")
            if submitted:
                try:
                    has_session = self.auth.sign_up(email, password)
                except AuthenticationError as e:
                    st.error(str(e))
                else:
                    if has_session:
                        self._navigate(routes.post_login_target(query))
                    else:
                        st.info("Check your email to confirm your account, then sign in.")

    def _dashboard_page(self) -> None:
        result = workout_service.load_dashboard(
            self.gateway, self.auth, limit=self.settings.dashboard_recent_limit
        )
        with self._section("Upcoming"):
            if not result.data["upcoming"]:
                st.info("No workouts scheduled.")
                if st.button("Plan a workout", key="dash_plan"):
                    self._navigate("/plan")
            for workout in result.data["upcoming"]:
                st.write(self._workout_label(workout))
                cols = st.columns(3)
                with cols[0]:
                    if st.button("Start", key=f"dash_start_{workout.id}"):
                        self._navigate(f"/runner/{workout.id}")
                with cols[1]:
                    if st.button("View", key=f"dash_view_{workout.id}"):
                        self._navigate(f"/workout/{workout.id}")
                with cols[2]:
                    if st.button("Delete", key=f"dash_delete_{workout.id}"):
                        self._confirm(
                            "Delete this workout?",
                            f"dash_del_{workout.id}",
                            lambda wid=workout.id: workout_service.delete_workout(self.gateway, wid),
                        )
        with self._section("Recent"):
            if not result.data["recent"]:
                st.info("No past workouts yet.")
            for workout in result.data["recent"]:
                cols = st.columns([4, 1])
                with cols[0]:
                    st.write(self._workout_label(workout))
                with cols[1]:
                    if st.button("View", key=f"dash_recent_{workout.id}"):
                        self._navigate(f"/workout/{workout.id}")

    def _planner(self) -> PlanBuilder:
        if "planner" not in st.session_state:
            builder = PlanBuilder(self.gateway, self.auth, self.settings)
            builder.load_catalog()
            st.session_state.planner = builder
        return st.session_state.planner

    def _plan_page(self, query: dict) -> None:
        builder = self._planner()
        builder.apply_query(query)
        titles = {
            "new": "Plan Workout",
            "import_template": "New Workout from Template",
            "import_workout": "Edit Workout",
            "edit_template": f"Edit Template {builder.template_name}",
        }
        with self._section(titles[builder.mode]):
            if builder.mode != "edit_template":
                picked = st.date_input(
                    "Date", datetime.date.fromisoformat(builder.date), key="plan_date"
                )
                builder.date = picked.isoformat()
            self._exercise_picker(builder)
        with self._section("Configure"):
            self._configured_list(builder)
        if builder.error_message:
            st.error(builder.error_message)
        if builder.status_message:
            st.success(builder.status_message)
        label = "Save Template" if builder.mode == "edit_template" else "Save Workout"
        if st.button(label, key="plan_save", type="primary", disabled=builder.saving):
            try:
                target = builder.save()
            except PlanError:
                st.rerun()
            else:
                st.session_state.pop("planner", None)
                self._navigate(target)
        if builder.mode != "edit_template":
            with st.expander("Save as template"):
                with st.form("save_as_template_form"):
                    name = st.text_input("Template name")
                    submitted = st.form_submit_button("Create template")
                if submitted:
                    try:
                        target = builder.save_as_template(name)
                    except PlanError as e:
                        st.error(str(e))
                    else:
                        st.session_state.pop("planner", None)
                        self._navigate(target)

    def _exercise_picker(self, builder: PlanBuilder) -> None:
        term = st.text_input("Search exercises", key="plan_search")
        for exercise in builder.search(term)[:15]:
            cols = st.columns([4, 1])
            with cols[0]:
                st.write(f"{exercise.name} ({exercise.target_muscle})")
            with cols[1]:
                if st.button("Add", key=f"plan_add_{exercise.id}"):
                    builder.add_exercise(exercise)
                    st.rerun()
        with st.expander("Custom exercise"):
            with st.form("custom_exercise_form"):
                name = st.text_input("Name")
                muscle = st.text_input("Target muscle")
                submitted = st.form_submit_button("Add custom exercise")
            if submitted:
                try:
                    builder.add_custom_exercise(name, muscle)
                except PlanError as e:
                    st.error(str(e))
                else:
                    st.rerun()

    def _configured_list(self, builder: PlanBuilder) -> None:
        if not builder.exercises:
            st.info("No exercises selected.")
            return
        for idx, configured in enumerate(list(builder.exercises)):
            cid = configured.config_id
            with st.expander(f"{idx + 1}. {configured.name}", expanded=True):
                first = configured.sets[0] if configured.sets else None
                cols = st.columns(3)
                with cols[0]:
                    count = st.number_input(
                        "Sets", min_value=0, step=1, value=len(configured.sets), key=f"sets_{cid}"
                    )
                with cols[1]:
                    reps = st.number_input(
                        "Reps",
                        min_value=0,
                        step=1,
                        value=first.reps if first else self.settings.default_reps,
                        key=f"reps_{cid}",
                    )
                with cols[2]:
                    weight = st.number_input(
                        f"Weight ({self.weight_unit})",
                        min_value=0.0,
                        step=2.5,
                        value=float(first.weight) if first else 0.0,
                        key=f"weight_{cid}",
                    )
                if count != len(configured.sets):
                    builder.set_set_count(cid, count)
                if first is None or reps != first.reps:
                    builder.set_reps(cid, reps)
                if first is None or weight != first.weight:
                    builder.set_weight(cid, weight)
                actions = st.columns(3)
                with actions[0]:
                    if st.button("Up", key=f"up_{cid}", disabled=idx == 0):
                        builder.move(idx, idx - 1)
                        st.rerun()
                with actions[1]:
                    if st.button(
                        "Down", key=f"down_{cid}", disabled=idx == len(builder.exercises) - 1
                    ):
                        builder.move(idx, idx + 1)
                        st.rerun()
                with actions[2]:
                    if st.button("Remove", key=f"remove_{cid}"):
                        builder.remove_exercise(cid)
                        st.rerun()

    def _templates_page(self) -> None:
        result = workout_service.load_templates(self.gateway, self.auth)
        with self._section("Templates"):
            if not result.data:
                st.info("No templates yet. Save one from the planner.")
            for template in result.data:
                tid = template["id"]
                with st.expander(template["name"]):
                    for te in template["template_exercises"]:
                        exercise = te.get("exercise") or {}
                        st.write(f"{exercise.get('name', te['exercise_id'])}: {te['sets']} x {te['reps']}")
                    cols = st.columns(3)
                    with cols[0]:
                        if st.button("Use", key=f"tpl_use_{tid}"):
                            st.session_state.pop("planner", None)
                            self._navigate(f"/plan?importTemplate={tid}")
                    with cols[1]:
                        if st.button("Edit", key=f"tpl_edit_{tid}"):
                            self._navigate(f"/templates/{tid}/edit")
                    with cols[2]:
                        if st.button("Delete", key=f"tpl_delete_{tid}"):
                            self._confirm(
                                "Delete this template?",
                                f"tpl_del_{tid}",
                                lambda t=tid: workout_service.delete_template(self.gateway, t),
                            )

    def _template_edit_page(self, id: int) -> None:
        st.session_state.pop("planner", None)
        self._navigate(f"/plan?editTemplate={id}")

    def _runner_page(self, id: int | None = None) -> None:
        if id is None:
            upcoming = workout_service.load_dashboard(self.gateway, self.auth).data["upcoming"]
            if not upcoming:
                st.info("No scheduled workout to run.")
                return
            self._navigate(f"/runner/{upcoming[0].id}")
            return
        key = f"runner_{id}"
        if key not in st.session_state:
            result = workout_service.load_runner_exercises(self.gateway, self.auth, id)
            if result.error:
                st.error(result.error)
                return
            st.session_state[key] = WorkoutRunner(self.gateway, id, result.data)
        runner: WorkoutRunner = st.session_state[key]
        if runner.complete:
            st.success("Workout complete.")
            return
        done, total = runner.progress
        st.progress(done / total if total else 1.0, text=f"{done} of {total} sets")
        exercise = runner.current_exercise
        current = runner.current_set
        with self._section(exercise.name):
            st.caption(
                f"Exercise {runner.exercise_index + 1} of {len(runner.exercises)} · "
                f"Set {runner.set_index + 1} of {len(exercise.workout_sets)}"
            )
            suffix = f"{runner.exercise_index}_{runner.set_index}"
            reps = st.number_input("Reps", min_value=0, step=1, value=current.reps, key=f"run_reps_{suffix}")
            weight = st.number_input(
                f"Weight ({self.weight_unit})",
                min_value=0.0,
                step=2.5,
                value=float(current.weight),
                key=f"run_weight_{suffix}",
            )
            notes = st.text_input("Notes", value=current.notes or "", key=f"run_notes_{suffix}")
        if runner.error_message:
            st.error(runner.error_message)
        cols = st.columns(2)
        with cols[0]:
            if st.button("Back", key="run_back"):
                runner.edit_current_set(reps=reps, weight=weight, notes=notes)
                runner.back()
                st.rerun()
        with cols[1]:
            last = runner.progress[0] == total - 1
            if st.button("Finish" if last else "Next", key="run_next", type="primary"):
                runner.edit_current_set(reps=reps, weight=weight, notes=notes)
                try:
                    target = runner.advance()
                except RunnerError:
                    st.rerun()
                else:
                    if target:
                        st.session_state.pop(key, None)
                        st.session_state.last_completed = id
                        self._navigate(target)
                    st.rerun()

    def _recap_page(self, query: dict) -> None:
        workout_id = query.get("workoutId")
        if workout_id is not None and str(workout_id).isdigit():
            workout_id = int(workout_id)
        else:
            workout_id = st.session_state.get("last_completed")
        if workout_id is None:
            completed = workout_service.load_workouts(self.gateway, self.auth).data["completed"]
            if not completed:
                st.info("Complete a workout to see its recap.")
                return
            workout_id = completed[0].id
        self._workout_page(workout_id, title="Recap")

    def _past_page(self) -> None:
        result = workout_service.load_workouts(self.gateway, self.auth)
        for title, key in (("Scheduled", "scheduled"), ("Completed", "completed")):
            with self._section(title):
                if not result.data[key]:
                    st.info(f"No {key} workouts.")
                for workout in result.data[key]:
                    cols = st.columns([4, 1, 1])
                    with cols[0]:
                        st.write(self._workout_label(workout))
                    with cols[1]:
                        if st.button("View", key=f"past_view_{workout.id}"):
                            self._navigate(f"/past/{workout.id}")
                    with cols[2]:
                        flip = "scheduled" if workout.status == "completed" else "completed"
                        if st.button(f"Mark {flip}", key=f"past_status_{workout.id}"):
                            try:
                                workout_service.set_workout_status(self.gateway, workout.id, flip)
                            except APIError as e:
                                st.error(str(e))
                            else:
                                st.rerun()

    def _workout_page(self, id: int, title: str = "Workout") -> None:
        result = workout_service.load_workout_detail(self.gateway, self.auth, id)
        workout: Optional[Workout] = result.data
        if workout is None:
            st.warning("Workout not found.")
            return
        with self._section(f"{title} · {workout.date}"):
            per_muscle = stats_service.muscle_volume(workout.workout_exercises)
            self._metric_grid(
                [
                    ("Status", workout.status),
                    ("Exercises", str(len(workout.workout_exercises))),
                    ("Volume", f"{stats_service.workout_volume(workout):g} {self.weight_unit}"),
                ]
            )
            if per_muscle:
                self._bar_chart(per_muscle, x_label="Muscle", y_label="Volume")
        with self._section("Sets"):
            with st.form(f"workout_edit_{id}"):
                for we in workout.workout_exercises:
                    st.subheader(
                        f"{we.name} · {stats_service.exercise_volume(we.workout_sets):g} {self.weight_unit}"
                    )
                    for s in we.workout_sets:
                        cols = st.columns(2)
                        with cols[0]:
                            s.reps = st.number_input(
                                f"Set {s.set_number} reps",
                                min_value=0,
                                step=1,
                                value=s.reps,
                                key=f"edit_reps_{s.id}",
                            )
                        with cols[1]:
                            s.weight = st.number_input(
                                f"Set {s.set_number} weight",
                                min_value=0.0,
                                step=2.5,
                                value=float(s.weight),
                                key=f"edit_weight_{s.id}",
                            )
                saved = st.form_submit_button("Save changes")
            if saved:
                try:
                    workout_service.save_workout(self.gateway, workout)
                except APIError as e:
                    st.error(str(e))
                else:
                    st.success("Workout saved.")
        cols = st.columns(4)
        with cols[0]:
            flip = "scheduled" if workout.status == "completed" else "completed"
            if st.button(f"Mark {flip}", key=f"detail_status_{id}"):
                try:
                    workout_service.set_workout_status(self.gateway, id, flip)
                except APIError as e:
                    st.error(str(e))
                else:
                    st.rerun()
        with cols[1]:
            if st.button("Re-plan", key=f"detail_replan_{id}"):
                st.session_state.pop("planner", None)
                self._navigate(f"/plan?importWorkout={id}")
        with cols[2]:
            if st.button("Start", key=f"detail_start_{id}"):
                self._navigate(f"/runner/{id}")
        with cols[3]:
            if st.button("Delete", key=f"detail_delete_{id}"):
                self._confirm(
                    "Delete this workout?",
                    f"detail_del_{id}",
                    lambda: workout_service.delete_workout(self.gateway, id) or "/",
                )
        with st.expander("Create template"):
            with st.form(f"create_template_{id}"):
                name = st.text_input("Template name", value=f"Workout {workout.date}")
                submitted = st.form_submit_button("Create template")
            if submitted:
                try:
                    workout_service.create_template_from_workout(self.gateway, id, name)
                except APIError as e:
                    st.error(str(e))
                else:
                    self._navigate("/templates")

    def _analytics_page(self) -> None:
        result = workout_service.load_analytics(self.gateway, self.auth)
        with self._section("Analytics"):
            if not result.data:
                st.info("No workouts to analyze yet.")
                return
            muscles = stats_service.muscle_groups(result.data)
            choice = st.selectbox("Muscle group", ["All"] + muscles, key="analytics_muscle")
            rows = stats_service.volume_by_date(
                result.data, None if choice == "All" else choice
            )
            if not rows:
                st.info("No volume recorded for this muscle group.")
                return
            total = sum(r["volume"] for r in rows)
            self._metric_grid(
                [
                    ("Days", str(len(rows))),
                    ("Total volume", f"{total:g} {self.weight_unit}"),
                    ("Sets", str(sum(r["sets"] for r in rows))),
                ]
            )
            self._line_chart(
                {"Volume": [r["volume"] for r in rows]},
                [r["date"] for r in rows],
                x_label="Date",
                y_label=f"Volume ({self.weight_unit})",
            )


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    GymApp(
        session_path=os.environ.get("LIFTPLAN_SESSION_PATH", "session.yaml"),
        settings_path=os.environ.get("LIFTPLAN_SETTINGS_PATH", "settings.yaml"),
    ).run()
