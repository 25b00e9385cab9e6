"""Engine settings — backoff, retry, dedup, rate-limit and worker knobs.

Resolution order: built-in defaults, then the ``[custom.delivery]`` table of the
active domain config, then ``COURIER_*`` environment variables.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

DEFAULT_CATEGORY_LIMITS = {
    "marketing": 10,
    "transactional": 100,
    "system": 1000,
}

DEFAULT_CHANNEL_TIMEOUTS = {
    "email": 30.0,
    "sms": 15.0,
    "push": 10.0,
    "in_app": 5.0,
}


@dataclass(frozen=True)
class EngineSettings:
    # Retry / backoff
    max_retries: int = 5
    backoff_base_seconds: float = 30.0
    backoff_cap_seconds: float = 3600.0
    backoff_jitter_ratio: float = 0.1

    # Admission
    dedup_window_seconds: int = 86400
    schedule_skew_seconds: int = 60

    # Rate limiting
    rate_window_seconds: int = 3600
    rate_limits: dict = field(default_factory=lambda: dict(DEFAULT_CATEGORY_LIMITS))

    # Dispatcher
    batch_size: int = 100
    worker_count: int = 8
    poll_interval_seconds: float = 5.0
    dispatch_lease_seconds: int = 300
    channel_timeouts: dict = field(default_factory=lambda: dict(DEFAULT_CHANNEL_TIMEOUTS))

    # External events that withdraw consent for the channel
    opt_out_event_kinds: tuple = ("complained",)

    def limit_for(self, channel: str, category: str) -> int | None:
        """Max sends per rate window for (channel, category), None for unlimited.

        A ``channel.category`` entry wins over a bare ``category`` entry.
        """
        specific = self.rate_limits.get(f"{channel}.{category}")
        if specific is not None:
            return int(specific)
        general = self.rate_limits.get(category)
        return int(general) if general is not None else None

    def timeout_for(self, channel: str) -> float:
        return float(self.channel_timeouts.get(channel, 30.0))

    def with_overrides(self, **overrides) -> "EngineSettings":
        return replace(self, **overrides)


_ENV_PREFIX = "COURIER_"


def _coerce(name: str, value: Any, current: Any) -> Any:
    if isinstance(current, bool):
        return str(value).lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, tuple):
        if isinstance(value, str):
            return tuple(item.strip() for item in value.split(",") if item.strip())
        return tuple(value)
    if isinstance(current, dict):
        if isinstance(value, str):
            # "marketing=5,sms.marketing=2"
            parsed = {}
            for pair in value.split(","):
                if "=" in pair:
                    key, raw = pair.split("=", 1)
                    parsed[key.strip()] = float(raw) if name == "channel_timeouts" else int(raw)
            return {**current, **parsed}
        return {**current, **dict(value)}
    return value


def _domain_overrides() -> dict:
    """Read the ``[custom.delivery]`` table from the active domain, if any."""
    from protean.utils.globals import current_domain

    try:
        custom = current_domain.config.get("custom", {}) or {}
    except Exception:
        # No active domain context (e.g. settings built at import time)
        return {}
    delivery = custom.get("delivery", {}) if hasattr(custom, "get") else {}
    return dict(delivery or {})


def load_settings(**overrides) -> EngineSettings:
    """Build settings from defaults, domain config, environment and explicit overrides."""
    base = EngineSettings()
    resolved = {}

    for source in (_domain_overrides(), _env_overrides()):
        for f in fields(EngineSettings):
            if f.name in source:
                current = resolved.get(f.name, getattr(base, f.name))
                resolved[f.name] = _coerce(f.name, source[f.name], current)

    resolved.update(overrides)
    return replace(base, **resolved)


def _env_overrides() -> dict:
    values = {}
    for f in fields(EngineSettings):
        raw = os.getenv(f"{_ENV_PREFIX}{f.name.upper()}")
        if raw is not None:
            values[f.name] = raw
    return values
