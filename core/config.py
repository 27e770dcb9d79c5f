"""Transfer configuration loaded from environment variables."""

import os
from dataclasses import dataclass, fields
from typing import Mapping

# Environment variable -> TransferConfig field
ENV_FIELDS = {
    "RATE_LIMIT_REQUESTS": "requests_per_window",
    "RATE_LIMIT_WINDOW_MS": "window_ms",
    "RATE_LIMIT_BUFFER_MS": "rate_limit_buffer_ms",
    "MUTATION_DELAY_MS": "mutation_delay_ms",
    "RATE_LIMIT_COOLDOWN_MS": "rate_limit_cooldown_ms",
    "COOLDOWN_POLL_MS": "cooldown_poll_ms",
    "SUPERSEDE_GRACE_MS": "supersede_grace_ms",
    "REQUEST_TIMEOUT": "request_timeout",
}


@dataclass(frozen=True)
class TransferConfig:
    """Rate limiting and pacing options for a transfer."""
    requests_per_window: int = 60
    window_ms: int = 60000
    rate_limit_buffer_ms: int = 100
    mutation_delay_ms: int = 1000
    rate_limit_cooldown_ms: int = 5000
    cooldown_poll_ms: int = 500
    supersede_grace_ms: int = 100
    request_timeout: int = 30

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{f.name} must be an integer, got {value!r}")
            if f.name in ("requests_per_window", "window_ms", "cooldown_poll_ms",
                          "request_timeout") and value < 1:
                raise ValueError(f"{f.name} must be positive, got {value}")
            if value < 0:
                raise ValueError(f"{f.name} must not be negative, got {value}")

    @property
    def cooldown_polls(self) -> int:
        """Number of poll slices making up one rate-limit cool-down."""
        return -(-self.rate_limit_cooldown_ms // self.cooldown_poll_ms)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TransferConfig":
        environ = os.environ if environ is None else environ
        overrides = {}
        for var, name in ENV_FIELDS.items():
            raw = environ.get(var)
            if raw is None or raw.strip() == "":
                continue
            try:
                overrides[name] = int(raw)
            except ValueError:
                raise ValueError(f"{var} must be an integer, got {raw!r}") from None
        return cls(**overrides)
