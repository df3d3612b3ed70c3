import json
import logging
import os
import sqlite3
import time
from fastapi import (
    FastAPI,
    HTTPException,
    Response,
    Body,
    Request,
    Header,
    Depends,
)
from db import UserRepository, SessionRepository, ProcedureRepository

logger = logging.getLogger(__name__)

FILTER_OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "is", "in"}
RESERVED_PARAMS = {"select", "embed", "order", "limit", "count", "on_conflict"}


class RateLimiter:
    """Simple in-memory rate limiter."""

    def __init__(self, limit: int = 60, window: int = 60) -> None:
        self.limit = limit
        self.window = window
        self.requests: dict[str, list[float]] = {}

    async def __call__(self, request: Request, call_next):
        ip = request.client.host if request.client else "anon"
        now = time.time()
        history = [t for t in self.requests.pop(ip, []) if now - t < self.window]
        for stale in [k for k, v in self.requests.items() if now - v[-1] >= self.window]:
            del self.requests[stale]
        if len(history) >= self.limit:
            self.requests[ip] = history
            return Response("rate limit exceeded", status_code=429)
        history.append(now)
        self.requests[ip] = history
        return await call_next(request)


def parse_filters(items) -> list[tuple]:
    """Decode ``column=op.value`` query parameters into filter triples."""
    filters = []
    for column, raw in items:
        if column in RESERVED_PARAMS:
            continue
        op, sep, value = raw.partition(".")
        if not sep or op not in FILTER_OPERATORS:
            raise ValueError(f"invalid filter {column}={raw}")
        if op == "is":
            if value != "null":
                raise ValueError("'is' filters only support null")
            value = None
        elif op == "in":
            value = [v for v in value.strip("()").split(",") if v != ""]
        filters.append((column, op, value))
    return filters


def parse_order(raw: str | None) -> list[tuple]:
    if not raw:
        return []
    order = []
    for part in raw.split(","):
        column, _, direction = part.strip().partition(".")
        if direction not in ("", "asc", "desc"):
            raise ValueError(f"invalid order {part}")
        order.append((column, direction == "desc"))
    return order


class GymAPI:
    """Provides the auth, table and procedure endpoints of the workout backend."""

    def __init__(
        self,
        db_path: str = "workout.db",
        api_key: str = "local-dev-key",
        *,
        require_confirmation: bool = False,
        rate_limit: int | None = None,
        rate_window: int = 60,
    ) -> None:
        self.db_path = db_path
        self.api_key = api_key
        self.require_confirmation = require_confirmation
        self.users = UserRepository(db_path)
        self.sessions = SessionRepository(db_path)
        self.rows = ProcedureRepository(db_path)
        self.app = FastAPI(
            title="Lift Planner API",
            description="Authentication, row storage and workout procedures",
        )
        self.limiter: RateLimiter | None = None
        if rate_limit is not None:
            self.limiter = RateLimiter(limit=rate_limit, window=rate_window)
            self.app.middleware("http")(self.limiter)
        self._setup_routes()

    @staticmethod
    def _call(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PermissionError as e:
            raise HTTPException(status_code=403, detail=str(e))
        except LookupError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except (ValueError, sqlite3.IntegrityError) as e:
            raise HTTPException(status_code=400, detail=str(e))

    def _setup_routes(self) -> None:
        def require_key(apikey: str | None = Header(None)) -> None:
            if apikey != self.api_key:
                raise HTTPException(status_code=401, detail="Invalid API key")

        def bearer_token(authorization: str | None = Header(None)) -> str:
            scheme, _, token = (authorization or "").partition(" ")
            if scheme.lower() != "bearer" or not token:
                raise HTTPException(status_code=401, detail="missing bearer token")
            return token

        def current_user(
            _key: None = Depends(require_key), token: str = Depends(bearer_token)
        ) -> dict:
            user = self.sessions.resolve(token)
            if user is None:
                raise HTTPException(status_code=401, detail="invalid or expired token")
            return user

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.rows.fetch_all("SELECT 1;")
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/auth/signup", dependencies=[Depends(require_key)])
        def signup(payload: dict = Body(...)):
            user = self._call(
                self.users.create,
                payload.get("email", ""),
                payload.get("password", ""),
                confirmed=not self.require_confirmation,
            )
            logger.info("registered user %s", user["id"])
            if not user["confirmed"]:
                token = self.users.confirmation_token(user["id"])
                logger.info(
                    "confirmation link for %s: /auth/confirm?token=%s", user["email"], token
                )
                return {"user": user, "session": None}
            return {"user": user, "session": self.sessions.create(user)}

        @self.app.post("/auth/token", dependencies=[Depends(require_key)])
        def token(payload: dict = Body(...)):
            try:
                user = self.users.authenticate(
                    payload.get("email", ""), payload.get("password", "")
                )
            except ValueError as e:
                raise HTTPException(status_code=401, detail=str(e))
            return self.sessions.create(user)

        @self.app.post("/auth/logout", dependencies=[Depends(require_key)])
        def logout(token: str = Depends(bearer_token)):
            self.sessions.revoke(token)
            return {"status": "signed out"}

        @self.app.get("/auth/user")
        def auth_user(user: dict = Depends(current_user)):
            return user

        @self.app.post("/auth/confirm", dependencies=[Depends(require_key)])
        def confirm(token: str):
            user = self._call(self.users.confirm, token)
            logger.info("confirmed user %s", user["id"])
            return {"status": "confirmed"}

        @self.app.get("/rest/{table}")
        def select_rows(
            table: str,
            request: Request,
            select: str = "*",
            embed: str | None = None,
            order: str | None = None,
            limit: int | None = None,
            count: bool = False,
            user: dict = Depends(current_user),
        ):
            try:
                columns = None if select.strip() == "*" else [
                    c.strip() for c in select.split(",") if c.strip()
                ]
                embedded = json.loads(embed) if embed else None
                filters = parse_filters(request.query_params.multi_items())
                ordering = parse_order(order)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            rows = self._call(
                self.rows.select,
                user["id"],
                table,
                columns,
                filters,
                ordering,
                limit,
                embedded,
            )
            result = {"data": rows}
            if count:
                result["count"] = self._call(self.rows.count, user["id"], table, filters)
            return result

        @self.app.post("/rest/{table}")
        def insert_rows(
            table: str,
            payload: list[dict] | dict = Body(...),
            on_conflict: str | None = None,
            user: dict = Depends(current_user),
        ):
            rows = payload if isinstance(payload, list) else [payload]
            if on_conflict:
                data = self._call(self.rows.upsert, user["id"], table, rows, on_conflict)
            else:
                data = self._call(self.rows.insert, user["id"], table, rows)
            return {"data": data}

        @self.app.patch("/rest/{table}")
        def update_rows(
            table: str,
            request: Request,
            payload: dict = Body(...),
            user: dict = Depends(current_user),
        ):
            try:
                filters = parse_filters(request.query_params.multi_items())
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            changed = self._call(self.rows.update, user["id"], table, payload, filters)
            return {"count": changed}

        @self.app.delete("/rest/{table}")
        def delete_rows(
            table: str,
            request: Request,
            user: dict = Depends(current_user),
        ):
            try:
                filters = parse_filters(request.query_params.multi_items())
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            removed = self._call(self.rows.delete, user["id"], table, filters)
            return {"count": removed}

        @self.app.post("/rpc/{name}")
        def call_procedure(
            name: str,
            payload: dict | None = Body(None),
            user: dict = Depends(current_user),
        ):
            return self._call(self.rows.call, user["id"], name, payload or {})


api = GymAPI(
    db_path=os.environ.get("LIFTPLAN_DB_PATH", "workout.db"),
    api_key=os.environ.get("LIFTPLAN_API_KEY", "local-dev-key"),
    require_confirmation=os.environ.get("LIFTPLAN_REQUIRE_CONFIRMATION") == "1",
)
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
