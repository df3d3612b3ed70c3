import logging
from typing import Optional

from client import GatewayClient, Subscription, SIGNED_OUT
from exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class AuthContext:
    """Application-lifetime holder of the signed-in identity.

    ``start`` subscribes to the gateway's auth-state stream, which delivers the
    stored session as ``INITIAL_SESSION``; ``close`` unsubscribes. Until the
    first event arrives ``loading`` is true and callers issue no fetches.
    """

    def __init__(self, gateway: GatewayClient) -> None:
        self.gateway = gateway
        self._session: Optional[dict] = None
        self._loading = True
        self._subscription: Optional[Subscription] = None

    def __enter__(self) -> "AuthContext":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.gateway.on_auth_state_change(self._on_change)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_change(self, event: str, session: Optional[dict]) -> None:
        logger.debug("auth event %s", event)
        self._session = None if event == SIGNED_OUT else session
        self._loading = False

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def session(self) -> Optional[dict]:
        return self._session

    @property
    def user(self) -> Optional[dict]:
        return self._session["user"] if self._session else None

    @property
    def user_id(self) -> Optional[str]:
        return self.user["id"] if self.user else None

    def require_user(self) -> dict:
        if self.user is None:
            raise AuthenticationError("Not signed in.")
        return self.user

    def sign_in(self, email: str, password: str) -> dict:
        session = self.gateway.sign_in_with_password(email.strip(), password.strip())
        self._session = session
        return session["user"]

    def sign_up(self, email: str, password: str) -> bool:
        """Register an account; return whether a session was issued right away."""
        data = self.gateway.sign_up(email.strip(), password.strip())
        if data.get("session"):
            self._session = data["session"]
            return True
        return False

    def sign_out(self) -> None:
        self.gateway.sign_out()
        self._session = None
