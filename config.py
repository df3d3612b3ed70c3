import os
import yaml
import keyring
from keyring.errors import PasswordDeleteError

from exceptions import ConfigurationError

API_URL_ENV = "LIFTPLAN_API_URL"
API_KEY_ENV = "LIFTPLAN_API_KEY"


class YamlConfig:
    """Load and save settings to a YAML file with optional encryption."""

    SENSITIVE_KEYS = {
        "access_token",
    }

    def __init__(self, path: str = "session.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "liftplanner"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key in self.SENSITIVE_KEYS:
                    secret = keyring.get_password(self.service, key)
                    if secret is not None:
                        data[key] = secret
                    else:
                        data.pop(key, None)
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key in out:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)

    def clear(self) -> None:
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                try:
                    keyring.delete_password(self.service, key)
                except PasswordDeleteError:
                    pass
        if os.path.exists(self.path):
            os.remove(self.path)


class ConnectionSettings:
    """Endpoint URL and public API key of the workout backend."""

    def __init__(self, url: str | None, api_key: str | None) -> None:
        self.url = url.rstrip("/") if url else None
        self.api_key = api_key

    @property
    def missing(self) -> list[str]:
        names = []
        if not self.url:
            names.append(API_URL_ENV)
        if not self.api_key:
            names.append(API_KEY_ENV)
        return names

    def require(self) -> None:
        """Raise ``ConfigurationError`` naming every missing variable."""
        if self.missing:
            raise ConfigurationError(
                "Missing backend environment variables: "
                + ", ".join(self.missing)
                + ". Set them and restart the application."
            )


def load_connection_settings() -> ConnectionSettings:
    return ConnectionSettings(
        os.environ.get(API_URL_ENV),
        os.environ.get(API_KEY_ENV),
    )
