import os
from typing import Dict, Optional

from andar_bahar.models import SchedulerConfig

# 4 concurrent games, 1-30 allowed, ticking every 500 ms (50-2000 ms allowed).
DEFAULT_SCHEDULER_CONFIG = SchedulerConfig()

# Card statistics table opens sorted by card, ascending.
DEFAULT_SORT = {"sort_key": "card", "descending": False}

# Environment overrides for the scheduler, applied on top of the defaults.
ENV_OVERRIDES = {
    "ANDAR_BAHAR_INTERVAL_MS": "interval_ms",
    "ANDAR_BAHAR_INITIAL_SLOTS": "initial_slots",
    "ANDAR_BAHAR_SEED": "seed",
    "ANDAR_BAHAR_AUTOSTART": "autostart",
}


def load_scheduler_config(environ: Optional[Dict[str, str]] = None) -> SchedulerConfig:
    """Defaults plus any ANDAR_BAHAR_* overrides, validated by the model."""
    environ = os.environ if environ is None else environ
    values = DEFAULT_SCHEDULER_CONFIG.model_dump()
    for env_name, field_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if field_name == "autostart":
            values[field_name] = raw.strip().lower() in {"1", "true", "yes", "on"}
        else:
            values[field_name] = raw
    return SchedulerConfig(**values)
