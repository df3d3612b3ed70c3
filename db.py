import sqlite3
import csv
import os
import datetime
import logging
import secrets
import uuid
from contextlib import contextmanager
from typing import List, Tuple, Optional, Iterable

import bcrypt

logger = logging.getLogger(__name__)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    confirmed INTEGER NOT NULL DEFAULT 1,
                    confirmation_token TEXT UNIQUE,
                    created_at TEXT NOT NULL
                );""",
            ["id", "email", "password_hash", "confirmed", "confirmation_token", "created_at"],
        ),
        "sessions": (
            """CREATE TABLE sessions (
                    access_token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["access_token", "user_id", "created_at", "expires_at"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    target_muscle TEXT NOT NULL DEFAULT '',
                    is_custom INTEGER NOT NULL DEFAULT 0,
                    user_id TEXT,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["id", "name", "target_muscle", "is_custom", "user_id"],
        ),
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    status TEXT CHECK (status IS NULL OR status IN ('scheduled', 'completed')),
                    user_id TEXT NOT NULL,
                    created_at TEXT,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["id", "date", "status", "user_id", "created_at"],
        ),
        "workout_exercises": (
            """CREATE TABLE workout_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    "order" INTEGER NOT NULL DEFAULT 0,
                    sets INTEGER NOT NULL DEFAULT 0,
                    reps INTEGER NOT NULL DEFAULT 0,
                    weight REAL NOT NULL DEFAULT 0,
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            ["id", "workout_id", "exercise_id", "order", "sets", "reps", "weight"],
        ),
        "workout_sets": (
            """CREATE TABLE workout_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_exercise_id INTEGER NOT NULL,
                    set_number INTEGER NOT NULL,
                    reps INTEGER NOT NULL DEFAULT 0 CHECK (reps >= 0),
                    weight REAL NOT NULL DEFAULT 0 CHECK (weight >= 0),
                    intensity_type TEXT NOT NULL DEFAULT 'normal',
                    notes TEXT,
                    FOREIGN KEY(workout_exercise_id) REFERENCES workout_exercises(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "workout_exercise_id",
                "set_number",
                "reps",
                "weight",
                "intensity_type",
                "notes",
            ],
        ),
        "templates": (
            """CREATE TABLE templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    source_workout_id INTEGER,
                    created_at TEXT,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY(source_workout_id) REFERENCES workouts(id) ON DELETE SET NULL
                );""",
            ["id", "name", "user_id", "source_workout_id", "created_at"],
        ),
        "template_exercises": (
            """CREATE TABLE template_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    template_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    sets INTEGER NOT NULL DEFAULT 3 CHECK (sets >= 0),
                    reps INTEGER NOT NULL DEFAULT 8 CHECK (reps >= 0),
                    "order" INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY(template_id) REFERENCES templates(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            ["id", "template_id", "exercise_id", "sets", "reps", "order"],
        ),
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._import_exercise_catalog_data()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA foreign_keys=off;")
            conn.execute("PRAGMA legacy_alter_table=on;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            conn.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(f'"{c}"' for c in common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "intensity_type":
                        return "'normal'"
                    if col in ("order", "sets", "reps", "weight", "is_custom"):
                        return "0"
                    if col == "confirmed":
                        return "1"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                missing_cols = ", ".join(f'"{c}"' for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {missing_cols}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _import_exercise_catalog_data(self) -> None:
        csv_path = os.path.join(os.path.dirname(__file__), "exercise_catalog.csv")
        if not os.path.exists(csv_path):
            return
        with open(csv_path, newline="", encoding="utf-8") as csvfile:
            reader = csv.DictReader(csvfile)
            records = [
                (row["Exercise Name"].strip(), row["Target Muscle"].strip())
                for row in reader
                if row.get("Exercise Name")
            ]
        with self._connection() as conn:
            for name, target_muscle in records:
                conn.execute(
                    "INSERT INTO exercises (name, target_muscle, is_custom, user_id) "
                    "SELECT ?, ?, 0, NULL WHERE NOT EXISTS "
                    "(SELECT 1 FROM exercises WHERE name = ? AND user_id IS NULL);",
                    (name, target_muscle, name),
                )

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [tuple(row) for row in cursor.fetchall()]

    def fetch_dicts(self, query: str, params: Tuple = ()) -> List[dict]:
        with self._connection() as conn:
            cursor = conn.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]


def _now() -> str:
    return datetime.datetime.now().isoformat(timespec="seconds")


def _column_list(columns: Iterable[str]) -> str:
    return ", ".join(f'"{c}"' for c in columns)


class UserRepository(BaseRepository):
    """Repository for accounts of the authentication service."""

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # hashes written before the bcrypt switch
            return False

    @staticmethod
    def _public(row: dict) -> dict:
        return {
            "id": row["id"],
            "email": row["email"],
            "confirmed": bool(row["confirmed"]),
            "created_at": row["created_at"],
        }

    def create(self, email: str, password: str, confirmed: bool = True) -> dict:
        """Register an account.

        Unconfirmed accounts get a one-time ``confirmation_token`` which
        ``confirm`` exchanges for a confirmed account.
        """
        email = email.strip().lower()
        if "@" not in email:
            raise ValueError("Unable to validate email address: invalid format")
        if len(password) < 6:
            raise ValueError("Password should be at least 6 characters")
        if self.fetch_all("SELECT id FROM users WHERE email = ?;", (email,)):
            raise ValueError("User already registered")
        user_id = str(uuid.uuid4())
        token = None if confirmed else secrets.token_urlsafe(24)
        self.execute(
            "INSERT INTO users (id, email, password_hash, confirmed, confirmation_token, created_at) VALUES (?, ?, ?, ?, ?, ?);",
            (user_id, email, self.hash_password(password), int(confirmed), token, _now()),
        )
        return self.fetch_detail(user_id)

    def confirmation_token(self, user_id: str) -> Optional[str]:
        rows = self.fetch_all(
            "SELECT confirmation_token FROM users WHERE id = ?;", (user_id,)
        )
        if not rows:
            raise LookupError("user not found")
        return rows[0][0]

    def authenticate(self, email: str, password: str) -> dict:
        rows = self.fetch_dicts(
            "SELECT * FROM users WHERE email = ?;", (email.strip().lower(),)
        )
        if not rows:
            raise ValueError("Invalid login credentials")
        row = rows[0]
        if not self.verify_password(password, row["password_hash"]):
            raise ValueError("Invalid login credentials")
        if not row["confirmed"]:
            raise ValueError("Email not confirmed")
        return self._public(row)

    def confirm(self, token: str) -> dict:
        rows = self.fetch_all(
            "SELECT id FROM users WHERE confirmation_token = ? AND confirmed = 0;",
            (token,),
        )
        if not token or not rows:
            raise LookupError("invalid or used confirmation token")
        self.execute(
            "UPDATE users SET confirmed = 1, confirmation_token = NULL WHERE id = ?;",
            (rows[0][0],),
        )
        return self.fetch_detail(rows[0][0])

    def fetch_detail(self, user_id: str) -> dict:
        rows = self.fetch_dicts("SELECT * FROM users WHERE id = ?;", (user_id,))
        if not rows:
            raise LookupError("user not found")
        return self._public(rows[0])


class SessionRepository(BaseRepository):
    """Repository for issued access tokens."""

    def __init__(self, db_path: str = "workout.db", ttl_seconds: int = 7 * 24 * 3600) -> None:
        super().__init__(db_path)
        self.ttl_seconds = ttl_seconds
        self.users = UserRepository(db_path)

    def create(self, user: dict) -> dict:
        token = secrets.token_urlsafe(32)
        now = datetime.datetime.now()
        expires = now + datetime.timedelta(seconds=self.ttl_seconds)
        self.execute(
            "INSERT INTO sessions (access_token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?);",
            (
                token,
                user["id"],
                now.isoformat(timespec="seconds"),
                expires.isoformat(timespec="seconds"),
            ),
        )
        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_at": expires.isoformat(timespec="seconds"),
            "user": user,
        }

    def resolve(self, token: str) -> Optional[dict]:
        rows = self.fetch_all(
            "SELECT user_id, expires_at FROM sessions WHERE access_token = ?;",
            (token,),
        )
        if not rows:
            return None
        user_id, expires_at = rows[0]
        if datetime.datetime.fromisoformat(expires_at) <= datetime.datetime.now():
            self.revoke(token)
            return None
        return self.users.fetch_detail(user_id)

    def revoke(self, token: str) -> None:
        self.execute("DELETE FROM sessions WHERE access_token = ?;", (token,))


class TableRepository(BaseRepository):
    """Row access for the data tables with row-level security.

    Every read and write is scoped to ``user_id``. Tables either carry the
    owner directly or inherit it through their parent chain. Catalog
    exercises (``user_id IS NULL``) are readable by everyone and writable by
    nobody.
    """

    TABLES = {
        "exercises": {"owner": "user_id", "shared": True},
        "workouts": {"owner": "user_id"},
        "workout_exercises": {"parent": ("workouts", "workout_id")},
        "workout_sets": {"parent": ("workout_exercises", "workout_exercise_id")},
        "templates": {"owner": "user_id"},
        "template_exercises": {"parent": ("templates", "template_id")},
    }

    RELATIONS = {
        "workouts": {
            "workout_exercises": ("workout_exercises", "workout_id", "many"),
        },
        "workout_exercises": {
            "exercise": ("exercises", "exercise_id", "one"),
            "workout_sets": ("workout_sets", "workout_exercise_id", "many"),
        },
        "templates": {
            "template_exercises": ("template_exercises", "template_id", "many"),
        },
        "template_exercises": {
            "exercise": ("exercises", "exercise_id", "one"),
        },
    }

    COMPARISONS = {
        "eq": "=",
        "neq": "!=",
        "gt": ">",
        "gte": ">=",
        "lt": "<",
        "lte": "<=",
    }

    def columns(self, table: str) -> List[str]:
        self._check_table(table)
        return self._TABLE_DEFINITIONS[table][1]

    def _check_table(self, table: str) -> None:
        if table not in self.TABLES:
            raise LookupError(f"unknown table {table}")

    def _check_column(self, table: str, column: str) -> None:
        if column not in self._TABLE_DEFINITIONS[table][1]:
            raise ValueError(f"unknown column {column} on {table}")

    def _visibility(self, table: str, user_id: str, write: bool = False) -> Tuple[str, list]:
        rule = self.TABLES[table]
        if "owner" in rule:
            owner = rule["owner"]
            if rule.get("shared") and not write:
                return f'("{owner}" IS NULL OR "{owner}" = ?)', [user_id]
            return f'"{owner}" = ?', [user_id]
        parent, fk = rule["parent"]
        sql, params = self._visibility(parent, user_id, write=True)
        return f'"{fk}" IN (SELECT "id" FROM {parent} WHERE {sql})', params

    def _where(
        self,
        table: str,
        user_id: str,
        filters: Iterable[Tuple[str, str, object]] = (),
        write: bool = False,
    ) -> Tuple[str, list]:
        sql, params = self._visibility(table, user_id, write)
        clauses = [sql]
        for column, op, value in filters:
            self._check_column(table, column)
            if op in self.COMPARISONS:
                clauses.append(f'"{column}" {self.COMPARISONS[op]} ?')
                params.append(value)
            elif op == "is":
                if value is not None:
                    raise ValueError("'is' filters only support null")
                clauses.append(f'"{column}" IS NULL')
            elif op == "in":
                values = list(value)
                if not values:
                    clauses.append("0")
                else:
                    clauses.append(f'"{column}" IN ({", ".join("?" for _ in values)})')
                    params.extend(values)
            else:
                raise ValueError(f"unsupported filter operator {op}")
        return " WHERE " + " AND ".join(clauses), params

    def _order_clause(self, table: str, order: Iterable[Tuple[str, bool]]) -> str:
        parts = []
        for column, descending in order:
            self._check_column(table, column)
            parts.append(f'"{column}" {"DESC" if descending else "ASC"}')
        return " ORDER BY " + ", ".join(parts) if parts else ""

    def _default_order(self, table: str) -> List[Tuple[str, bool]]:
        cols = self._TABLE_DEFINITIONS[table][1]
        if "order" in cols:
            return [("order", False), ("id", False)]
        if "set_number" in cols:
            return [("set_number", False), ("id", False)]
        return [("id", False)]

    def _select(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        table: str,
        columns: Optional[List[str]] = None,
        filters: Iterable[Tuple[str, str, object]] = (),
        order: Iterable[Tuple[str, bool]] = (),
        limit: Optional[int] = None,
        embed: Optional[dict] = None,
    ) -> List[dict]:
        self._check_table(table)
        embed = embed or {}
        wanted = list(columns) if columns else list(self.columns(table))
        for col in wanted:
            self._check_column(table, col)
        fetch_cols = list(wanted)
        for name in embed:
            relation = self.RELATIONS.get(table, {}).get(name)
            if relation is None:
                raise ValueError(f"unknown relation {name} on {table}")
            _target, fk, kind = relation
            needed = fk if kind == "one" else "id"
            if needed not in fetch_cols:
                fetch_cols.append(needed)
        where, params = self._where(table, user_id, filters)
        query = (
            f"SELECT {_column_list(fetch_cols)} FROM {table}"
            + where
            + self._order_clause(table, list(order) or self._default_order(table))
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        rows = [dict(r) for r in conn.execute(query + ";", params).fetchall()]
        for name, sub_embed in embed.items():
            self._embed(conn, user_id, table, rows, name, sub_embed or {})
        for row in rows:
            for col in fetch_cols:
                if col not in wanted:
                    row.pop(col, None)
        return rows

    def _embed(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        table: str,
        rows: List[dict],
        name: str,
        sub_embed: dict,
    ) -> None:
        target, fk, kind = self.RELATIONS[table][name]
        if kind == "many":
            ids = [r["id"] for r in rows]
            children = self._select(
                conn, user_id, target, filters=[(fk, "in", ids)], embed=sub_embed
            ) if ids else []
            grouped: dict = {}
            for child in children:
                grouped.setdefault(child[fk], []).append(child)
            for row in rows:
                row[name] = grouped.get(row["id"], [])
        else:
            keys = sorted({r[fk] for r in rows if r.get(fk) is not None})
            related = self._select(
                conn, user_id, target, filters=[("id", "in", keys)], embed=sub_embed
            ) if keys else []
            by_id = {r["id"]: r for r in related}
            # to-one relations are returned as zero or one element lists
            for row in rows:
                match = by_id.get(row.get(fk))
                row[name] = [match] if match is not None else []

    def _prepare_row(
        self, conn: sqlite3.Connection, user_id: str, table: str, row: dict
    ) -> dict:
        data = dict(row)
        data.pop("id", None)
        for col in data:
            self._check_column(table, col)
        rule = self.TABLES[table]
        if "owner" in rule:
            owner = rule["owner"]
            if data.get(owner) not in (None, user_id):
                raise PermissionError("row-level security violation")
            data[owner] = user_id
            if table == "exercises":
                data["is_custom"] = 1
        else:
            parent, fk = rule["parent"]
            self._require_visible(conn, user_id, parent, data.get(fk))
        return data

    def _require_visible(
        self, conn: sqlite3.Connection, user_id: str, table: str, row_id
    ) -> None:
        if row_id is None:
            raise ValueError(f"missing reference to {table}")
        where, params = self._where(table, user_id, [("id", "eq", row_id)], write=True)
        if conn.execute(f"SELECT 1 FROM {table}{where};", params).fetchone() is None:
            raise PermissionError(f"{table} {row_id} is not accessible")

    def _insert(
        self, conn: sqlite3.Connection, user_id: str, table: str, rows: List[dict]
    ) -> List[dict]:
        self._check_table(table)
        inserted_ids = []
        for row in rows:
            data = self._prepare_row(conn, user_id, table, row)
            cols = list(data)
            cursor = conn.execute(
                f"INSERT INTO {table} ({_column_list(cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)});",
                [data[c] for c in cols],
            )
            inserted_ids.append(cursor.lastrowid)
        if not inserted_ids:
            return []
        return self._select(conn, user_id, table, filters=[("id", "in", inserted_ids)])

    def _update(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        table: str,
        patch: dict,
        filters: Iterable[Tuple[str, str, object]],
    ) -> int:
        self._check_table(table)
        data = dict(patch)
        data.pop("id", None)
        if not data:
            return 0
        for col in data:
            self._check_column(table, col)
        rule = self.TABLES[table]
        if "owner" in rule and data.get(rule["owner"], user_id) != user_id:
            raise PermissionError("row-level security violation")
        if "parent" in rule and rule["parent"][1] in data:
            parent, fk = rule["parent"]
            self._require_visible(conn, user_id, parent, data[fk])
        where, params = self._where(table, user_id, filters, write=True)
        assignments = ", ".join(f'"{c}" = ?' for c in data)
        cursor = conn.execute(
            f"UPDATE {table} SET {assignments}{where};",
            [data[c] for c in data] + params,
        )
        return cursor.rowcount

    def _delete(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        table: str,
        filters: List[Tuple[str, str, object]],
    ) -> int:
        self._check_table(table)
        if not filters:
            raise ValueError("DELETE requires a filter")
        where, params = self._where(table, user_id, filters, write=True)
        cursor = conn.execute(f"DELETE FROM {table}{where};", params)
        return cursor.rowcount

    def select(
        self,
        user_id: str,
        table: str,
        columns: Optional[List[str]] = None,
        filters: Iterable[Tuple[str, str, object]] = (),
        order: Iterable[Tuple[str, bool]] = (),
        limit: Optional[int] = None,
        embed: Optional[dict] = None,
    ) -> List[dict]:
        with self._connection() as conn:
            return self._select(conn, user_id, table, columns, filters, order, limit, embed)

    def count(
        self, user_id: str, table: str, filters: Iterable[Tuple[str, str, object]] = ()
    ) -> int:
        self._check_table(table)
        where, params = self._where(table, user_id, filters)
        with self._connection() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM {table}{where};", params).fetchone()[0])

    def insert(self, user_id: str, table: str, rows: List[dict]) -> List[dict]:
        with self._connection() as conn:
            return self._insert(conn, user_id, table, rows)

    def upsert(
        self, user_id: str, table: str, rows: List[dict], on_conflict: str = "id"
    ) -> List[dict]:
        """Update rows whose id exists, insert the others, in one transaction."""
        if on_conflict != "id":
            raise ValueError("only on_conflict=id is supported")
        self._check_table(table)
        with self._connection() as conn:
            touched: List[int] = []
            for row in rows:
                row_id = row.get("id")
                exists = row_id is not None and conn.execute(
                    f"SELECT 1 FROM {table} WHERE id = ?;", (row_id,)
                ).fetchone() is not None
                if exists:
                    changed = self._update(conn, user_id, table, row, [("id", "eq", row_id)])
                    if changed == 0:
                        raise PermissionError(f"{table} {row_id} is not accessible")
                    touched.append(row_id)
                else:
                    touched.extend(r["id"] for r in self._insert(conn, user_id, table, [row]))
            if not touched:
                return []
            return self._select(conn, user_id, table, filters=[("id", "in", touched)])

    def update(
        self,
        user_id: str,
        table: str,
        patch: dict,
        filters: Iterable[Tuple[str, str, object]],
    ) -> int:
        with self._connection() as conn:
            return self._update(conn, user_id, table, patch, filters)

    def delete(
        self, user_id: str, table: str, filters: List[Tuple[str, str, object]]
    ) -> int:
        with self._connection() as conn:
            return self._delete(conn, user_id, table, filters)


class ProcedureRepository(TableRepository):
    """Multi-row writes that must commit or fail as a unit."""

    def call(self, user_id: str, name: str, params: dict) -> dict:
        procedures = {
            "save_workout_plan": self.save_workout_plan,
            "save_workout_sets": self.save_workout_sets,
            "replace_template_exercises": self.replace_template_exercises,
            "create_template": self.create_template,
            "create_template_from_workout": self.create_template_from_workout,
        }
        if name not in procedures:
            raise LookupError(f"unknown procedure {name}")
        return procedures[name](user_id, params)

    @staticmethod
    def _non_negative(value, label: str) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{label} must be a number")
        if number != number or number < 0:
            raise ValueError(f"{label} must be a non-negative number")
        return number

    def _template_rows(self, template_id: int, exercises: list) -> List[dict]:
        rows = []
        for idx, ex in enumerate(e for e in exercises if e.get("exercise_id")):
            rows.append(
                {
                    "template_id": template_id,
                    "exercise_id": ex["exercise_id"],
                    "sets": int(self._non_negative(ex.get("sets", 3), "sets")),
                    "reps": int(self._non_negative(ex.get("reps", 8), "reps")),
                    "order": idx,
                }
            )
        return rows

    def save_workout_plan(self, user_id: str, params: dict) -> dict:
        """Create or update a workout together with its exercises and sets."""
        exercises = [e for e in params.get("exercises") or [] if e.get("exercise_id")]
        if not exercises:
            raise ValueError("Add at least one exercise to your workout.")
        date = params.get("date") or datetime.date.today().isoformat()
        datetime.date.fromisoformat(date)
        workout_id = params.get("workout_id")
        with self._connection() as conn:
            if workout_id is not None:
                patch = {"date": date}
                if params.get("status"):
                    patch["status"] = params["status"]
                if self._update(conn, user_id, "workouts", patch, [("id", "eq", workout_id)]) == 0:
                    raise LookupError("workout not found")
                self._delete(conn, user_id, "workout_exercises", [("workout_id", "eq", workout_id)])
            else:
                created = self._insert(
                    conn,
                    user_id,
                    "workouts",
                    [
                        {
                            "date": date,
                            "status": params.get("status") or "scheduled",
                            "created_at": _now(),
                        }
                    ],
                )
                workout_id = created[0]["id"]
            for idx, ex in enumerate(exercises):
                visible, vparams = self._where(
                    "exercises", user_id, [("id", "eq", ex["exercise_id"])]
                )
                if conn.execute(f"SELECT 1 FROM exercises{visible};", vparams).fetchone() is None:
                    raise ValueError(f"unknown exercise {ex['exercise_id']}")
                sets = ex.get("sets") or []
                first = sets[0] if sets else {}
                we = self._insert(
                    conn,
                    user_id,
                    "workout_exercises",
                    [
                        {
                            "workout_id": workout_id,
                            "exercise_id": ex["exercise_id"],
                            "order": idx,
                            "sets": len(sets),
                            "reps": int(self._non_negative(first.get("reps", 0), "reps")),
                            "weight": self._non_negative(first.get("weight", 0), "weight"),
                        }
                    ],
                )[0]
                set_rows = [
                    {
                        "workout_exercise_id": we["id"],
                        "set_number": set_idx + 1,
                        "reps": int(self._non_negative(s.get("reps", 0), "reps")),
                        "weight": self._non_negative(s.get("weight", 0), "weight"),
                        "intensity_type": s.get("intensity_type") or "normal",
                        "notes": s.get("notes"),
                    }
                    for set_idx, s in enumerate(sets)
                ]
                if set_rows:
                    self._insert(conn, user_id, "workout_sets", set_rows)
        logger.info("saved workout %s with %d exercises", workout_id, len(exercises))
        return {"id": workout_id}

    def save_workout_sets(self, user_id: str, params: dict) -> dict:
        """Write a workout's sets, refresh the exercise summaries and patch the workout.

        Sets carrying an ``id`` are updated in place, the others are inserted.
        Returns the set ids per workout exercise in the order they were given.
        """
        workout_id = params.get("workout_id")
        patch = {}
        if params.get("date"):
            datetime.date.fromisoformat(params["date"])
            patch["date"] = params["date"]
        if params.get("status"):
            patch["status"] = params["status"]
        saved = []
        with self._connection() as conn:
            self._require_visible(conn, user_id, "workouts", workout_id)
            for ex in params.get("exercises") or []:
                we_id = ex.get("id")
                owned = self._select(
                    conn,
                    user_id,
                    "workout_exercises",
                    ["id"],
                    filters=[("id", "eq", we_id), ("workout_id", "eq", workout_id)],
                )
                if not owned:
                    raise LookupError(f"workout exercise {we_id} not found")
                set_ids = []
                sets = ex.get("sets") or []
                for s in sets:
                    row = {
                        "workout_exercise_id": we_id,
                        "set_number": int(self._non_negative(s.get("set_number", 1), "set_number")),
                        "reps": int(self._non_negative(s.get("reps", 0), "reps")),
                        "weight": self._non_negative(s.get("weight", 0), "weight"),
                        "intensity_type": s.get("intensity_type") or "normal",
                        "notes": s.get("notes"),
                    }
                    if s.get("id") is None:
                        set_ids.append(self._insert(conn, user_id, "workout_sets", [row])[0]["id"])
                        continue
                    filters = [("id", "eq", s["id"]), ("workout_exercise_id", "eq", we_id)]
                    if self._update(conn, user_id, "workout_sets", row, filters) == 0:
                        raise LookupError(f"set {s['id']} not found")
                    set_ids.append(s["id"])
                first = sets[0] if sets else {}
                self._update(
                    conn,
                    user_id,
                    "workout_exercises",
                    {
                        "sets": len(sets),
                        "reps": int(self._non_negative(first.get("reps", 0), "reps")),
                        "weight": self._non_negative(first.get("weight", 0), "weight"),
                    },
                    [("id", "eq", we_id)],
                )
                saved.append({"id": we_id, "set_ids": set_ids})
            if patch:
                self._update(conn, user_id, "workouts", patch, [("id", "eq", workout_id)])
        logger.info("saved sets of workout %s", workout_id)
        return {"id": workout_id, "exercises": saved}


    def replace_template_exercises(self, user_id: str, params: dict) -> dict:
        template_id = params.get("template_id")
        with self._connection() as conn:
            self._require_visible(conn, user_id, "templates", template_id)
            rows = self._template_rows(template_id, params.get("exercises") or [])
            if not rows:
                raise ValueError("Add at least one valid exercise before saving.")
            self._delete(conn, user_id, "template_exercises", [("template_id", "eq", template_id)])
            self._insert(conn, user_id, "template_exercises", rows)
        return {"id": template_id, "count": len(rows)}

    def create_template(self, user_id: str, params: dict) -> dict:
        name = (params.get("name") or "").strip()
        if not name:
            raise ValueError("template name required")
        with self._connection() as conn:
            template = self._insert(
                conn,
                user_id,
                "templates",
                [
                    {
                        "name": name,
                        "source_workout_id": params.get("source_workout_id"),
                        "created_at": _now(),
                    }
                ],
            )[0]
            rows = self._template_rows(template["id"], params.get("exercises") or [])
            if not rows:
                raise ValueError("Add at least one valid exercise before saving.")
            self._insert(conn, user_id, "template_exercises", rows)
        return {"id": template["id"]}

    def create_template_from_workout(self, user_id: str, params: dict) -> dict:
        """Stamp a template from a workout's exercise list."""
        workout_id = params.get("workout_id")
        with self._connection() as conn:
            found = self._select(
                conn,
                user_id,
                "workouts",
                filters=[("id", "eq", workout_id)],
                embed={"workout_exercises": {"workout_sets": {}}},
            )
        if not found:
            raise LookupError("workout not found")
        exercises = []
        for we in found[0]["workout_exercises"]:
            sets = we["workout_sets"]
            exercises.append(
                {
                    "exercise_id": we["exercise_id"],
                    "sets": len(sets) if sets else we["sets"],
                    "reps": sets[0]["reps"] if sets else (we["reps"] or 8),
                }
            )
        name = params.get("name") or f"Workout {workout_id}"
        return self.create_template(
            user_id,
            {"name": name, "source_workout_id": workout_id, "exercises": exercises},
        )
