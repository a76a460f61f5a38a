"""threadweave configuration via Pydantic."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger("threadweave.config")

_ENV_PREFIX = "THREADWEAVE_"


class ThreadConfig(BaseModel):
    """Tunables shared by every thread view in a process."""

    # Store access
    fetch_limit: int = Field(
        default=250,
        ge=1,
        le=5000,
        description="Maximum messages returned by a single list call",
    )
    store_timeout: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Seconds to wait for a store call before failing the post",
    )

    # Presentation hints
    max_indent_level: int = Field(
        default=4,
        ge=0,
        le=32,
        description="Replies deeper than this are rendered at this indent",
    )

    # Provisional messages
    provisional_prefix: str = Field(
        default="provisional:",
        min_length=1,
        description="Namespace for locally generated ids; never issued by a store",
    )
    trim_text: bool = Field(
        default=True,
        description="Strip surrounding whitespace from submitted text",
    )

    # Events
    event_history: int = Field(
        default=500,
        ge=1,
        le=50_000,
        description="Events retained per bus for late subscribers",
    )

    @model_validator(mode="after")
    def resolve_defaults(self) -> ThreadConfig:
        """Apply ``THREADWEAVE_*`` environment overrides.

        An override only applies while the field still holds its default,
        so explicit constructor arguments always win.  Unparseable values
        are ignored.
        """
        overrides: dict[str, tuple[Any, type]] = {
            "fetch_limit": (250, int),
            "store_timeout": (10.0, float),
            "max_indent_level": (4, int),
            "provisional_prefix": ("provisional:", str),
            "event_history": (500, int),
        }
        for field_name, (default_val, cast) in overrides.items():
            if getattr(self, field_name) != default_val:
                continue
            env_val = os.environ.get(_ENV_PREFIX + field_name.upper())
            if env_val is None or env_val == "":
                continue
            with contextlib.suppress(ValueError):
                value = cast(env_val)
                if cast is not str and value <= 0:
                    logger.warning("Ignoring non-positive %s%s", _ENV_PREFIX, field_name.upper())
                    continue
                object.__setattr__(self, field_name, value)

        # Bool flag override
        if self.trim_text:  # still at default
            env_trim = os.environ.get(_ENV_PREFIX + "TRIM_TEXT")
            if env_trim is not None and env_trim.strip().lower() in ("0", "false", "no"):
                object.__setattr__(self, "trim_text", False)

        return self


def load_config_file(path: Path | None) -> dict[str, Any]:
    """Load a JSON config file and return its contents as a dict.

    Returns an empty dict if the file is missing, unreadable, or invalid.
    """
    if path is None:
        return {}
    try:
        data = json.loads(path.read_text())
        if not isinstance(data, dict):
            logger.warning("Config file %s does not contain a JSON object", path)
            return {}
        return data
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}


def config_from_file(path: Path | None) -> ThreadConfig:
    """Build a :class:`ThreadConfig` from *path*, ignoring unknown keys."""
    values = load_config_file(path)
    known = {k: v for k, v in values.items() if k in ThreadConfig.model_fields}
    return ThreadConfig(**known)
