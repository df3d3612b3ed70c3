import datetime
import json
import logging
from typing import Callable, Iterable, Optional

import requests

from config import ConnectionSettings, YamlConfig, load_connection_settings
from exceptions import APIError, AuthenticationError, NotFoundError

logger = logging.getLogger(__name__)

OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "is", "in"}
OWNED_TABLES = {"workouts", "templates"}
TO_ONE_RELATIONS = {"exercise"}

INITIAL_SESSION = "INITIAL_SESSION"
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


def unwrap_one(value):
    """Return a to-one relation as a single object or ``None``.

    The backend embeds related rows as lists, so a to-one relation arrives as
    an empty or one element list. Plain objects pass through unchanged.
    """
    if isinstance(value, list):
        return value[0] if value else None
    return value


def normalize_rows(rows: list, embed: Optional[dict]) -> list:
    """Apply ``unwrap_one`` to every to-one relation named in ``embed``."""
    if not embed:
        return rows
    for row in rows:
        for name, sub_embed in embed.items():
            if name not in row:
                continue
            if name in TO_ONE_RELATIONS:
                row[name] = unwrap_one(row[name])
            nested = row[name]
            if nested is None:
                continue
            normalize_rows(nested if isinstance(nested, list) else [nested], sub_embed)
    return rows


def _encode_value(op: str, value) -> str:
    if op == "in":
        return "(" + ",".join(str(_plain(v)) for v in value) + ")"
    if value is None:
        return "null"
    return str(_plain(value))


def _plain(value):
    if isinstance(value, bool):
        return int(value)
    return value


def encode_filters(filters) -> list[tuple[str, str]]:
    """Turn a mapping or ``(column, op, value)`` triples into query params."""
    if not filters:
        return []
    if isinstance(filters, dict):
        items = [(column, "eq", value) for column, value in filters.items()]
    else:
        items = list(filters)
    params = []
    for column, op, value in items:
        if op not in OPERATORS:
            raise ValueError(f"unsupported filter operator {op}")
        if op == "eq" and value is None:
            op = "is"
        params.append((column, f"{op}.{_encode_value(op, value)}"))
    return params


class Subscription:
    """Handle returned by ``GatewayClient.on_auth_state_change``."""

    def __init__(self, client: "GatewayClient", callback: Callable) -> None:
        self._client = client
        self.callback = callback

    def unsubscribe(self) -> None:
        if self.callback in self._client._listeners:
            self._client._listeners.remove(self.callback)


class GatewayClient:
    """Table, procedure and auth client for the workout backend."""

    def __init__(
        self,
        settings: ConnectionSettings | None = None,
        *,
        http=None,
        storage: YamlConfig | None = None,
    ) -> None:
        self.settings = settings or load_connection_settings()
        self.http = http or requests.Session()
        self.storage = storage
        self._listeners: list[Callable] = []
        self._session: Optional[dict] = self._restore_session()

    # auth -----------------------------------------------------------------

    def _restore_session(self) -> Optional[dict]:
        if self.storage is None:
            return None
        data = self.storage.load()
        if not data.get("access_token") or not data.get("user"):
            return None
        expires_at = data.get("expires_at")
        if expires_at and datetime.datetime.fromisoformat(expires_at) <= datetime.datetime.now():
            self.storage.clear()
            return None
        return {
            "access_token": data["access_token"],
            "expires_at": expires_at,
            "user": data["user"],
        }

    def _set_session(self, session: Optional[dict], event: str) -> None:
        self._session = session
        if self.storage is not None:
            if session is None:
                self.storage.clear()
            else:
                self.storage.save(
                    {
                        "access_token": session["access_token"],
                        "expires_at": session.get("expires_at"),
                        "user": session["user"],
                    }
                )
        self._emit(event)

    def _emit(self, event: str) -> None:
        for callback in list(self._listeners):
            callback(event, self._session)

    def on_auth_state_change(self, callback: Callable) -> Subscription:
        """Register ``callback(event, session)``; it fires once immediately."""
        self._listeners.append(callback)
        callback(INITIAL_SESSION, self._session)
        return Subscription(self, callback)

    def get_session(self) -> Optional[dict]:
        return self._session

    @property
    def user_id(self) -> Optional[str]:
        return self._session["user"]["id"] if self._session else None

    def sign_up(self, email: str, password: str) -> dict:
        try:
            data = self._request(
                "POST", "/auth/signup", json={"email": email, "password": password}
            )
        except APIError as e:
            raise AuthenticationError(str(e)) from e
        if data.get("session"):
            self._set_session(data["session"], SIGNED_IN)
        return data

    def sign_in_with_password(self, email: str, password: str) -> dict:
        try:
            session = self._request(
                "POST", "/auth/token", json={"email": email, "password": password}
            )
        except APIError as e:
            raise AuthenticationError(str(e)) from e
        self._set_session(session, SIGNED_IN)
        logger.info("signed in as %s", session["user"]["email"])
        return session

    def sign_out(self) -> None:
        if self._session is not None:
            try:
                self._request("POST", "/auth/logout")
            except APIError as e:
                raise AuthenticationError(str(e)) from e
        self._set_session(None, SIGNED_OUT)

    def get_user(self) -> dict:
        return self._request("GET", "/auth/user")

    # transport ------------------------------------------------------------

    def _headers(self) -> dict:
        headers = {"apikey": self.settings.api_key}
        if self._session:
            headers["Authorization"] = f"Bearer {self._session['access_token']}"
        return headers

    def _request(self, method: str, path: str, **kwargs):
        self.settings.require()
        resp = self.http.request(
            method, f"{self.settings.url}{path}", headers=self._headers(), **kwargs
        )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise APIError(f"{method} {path} failed: {detail}", status_code=resp.status_code)
        return resp.json()

    def _owner(self) -> str:
        if self.user_id is None:
            raise AuthenticationError("Not signed in.")
        return self.user_id

    def _scoped(self, table: str, filters) -> list[tuple[str, str]]:
        params = encode_filters(filters)
        if table in OWNED_TABLES:
            params.append(("user_id", f"eq.{self._owner()}"))
        return params

    # tables ---------------------------------------------------------------

    def select(
        self,
        table: str,
        columns: str | Iterable[str] = "*",
        filters=None,
        order: str | Iterable[str] | None = None,
        *,
        embed: Optional[dict] = None,
        single: bool = False,
        count: bool = False,
        limit: Optional[int] = None,
    ):
        """Read rows of ``table``.

        Returns the row list, the only matching row when ``single`` is set,
        or ``(rows, total)`` when ``count`` is set.
        """
        params = [("select", columns if isinstance(columns, str) else ",".join(columns))]
        if embed:
            params.append(("embed", json.dumps(embed)))
        if order:
            params.append(("order", order if isinstance(order, str) else ",".join(order)))
        if limit is not None:
            params.append(("limit", str(limit)))
        if count:
            params.append(("count", "true"))
        params.extend(self._scoped(table, filters))
        body = self._request("GET", f"/rest/{table}", params=params)
        rows = normalize_rows(body["data"], embed)
        if single:
            if not rows:
                raise NotFoundError(f"no {table} row matches")
            if len(rows) > 1:
                raise APIError(f"multiple {table} rows match", status_code=406)
            return rows[0]
        if count:
            return rows, body["count"]
        return rows

    def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        rows = [dict(r) for r in (rows if isinstance(rows, list) else [rows])]
        if table in OWNED_TABLES:
            for row in rows:
                row["user_id"] = self._owner()
        return self._request("POST", f"/rest/{table}", json=rows)["data"]

    def upsert(
        self, table: str, rows: dict | list[dict], on_conflict: str = "id"
    ) -> list[dict]:
        rows = [dict(r) for r in (rows if isinstance(rows, list) else [rows])]
        if table in OWNED_TABLES:
            for row in rows:
                row["user_id"] = self._owner()
        return self._request(
            "POST", f"/rest/{table}", params={"on_conflict": on_conflict}, json=rows
        )["data"]

    def update(self, table: str, patch: dict, filters) -> int:
        return self._request(
            "PATCH", f"/rest/{table}", params=self._scoped(table, filters), json=patch
        )["count"]

    def delete(self, table: str, filters) -> int:
        return self._request(
            "DELETE", f"/rest/{table}", params=self._scoped(table, filters)
        )["count"]

    def rpc(self, name: str, params: Optional[dict] = None) -> dict:
        return self._request("POST", f"/rpc/{name}", json=params or {})
