import yaml
from dataclasses import dataclass, fields, replace
from typing import Optional

WILDCARD_HOSTS = ("0.0.0.0", "::", "")


@dataclass
class SessionConfig:
    # Server binding
    host: str = "127.0.0.1"
    port: int = 8081
    server_start_timeout: float = 10.0

    # Readiness wait (seconds). Page script may need to download/compile before it
    # signals readiness, so keep this generous.
    timeout: float = 60.0
    poll_interval: float = 0.01

    # HTTP probe issued before every navigation and after shutdown
    probe_timeout: float = 3.0

    # Browser shell
    headless: bool = True
    browser: str = "chromium"  # "chromium", "firefox" or "webkit"

    # wait_for defaults
    wait_for_timeout: float = 10.0
    wait_for_interval: float = 0.01

    @property
    def url(self) -> str:
        host = "localhost" if self.host in WILDCARD_HOSTS else self.host
        return f"http://{host}:{self.port}"

    def with_overrides(self, **overrides) -> "SessionConfig":
        """Returns a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "SessionConfig":
        if not path:
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise TypeError(f"Unknown session config keys in {path}: {', '.join(unknown)}")
        return cls(**data)
