"""Configuration for the REPL environment."""

from __future__ import annotations

import os
from typing import Any, Mapping

from pydantic import BaseModel, Field

from weasel_repl.payload import DeliveryStrategy

ENV_PREFIX = "WEASEL_"


class BridgeConfig(BaseModel):
    """Options recognized by ``ReplEnvironment``."""

    host: str = Field(default="127.0.0.1", description="Address the server listens on")
    port: int = Field(default=9001, ge=0, le=65535, description="Port the server listens on")
    preloaded_units: list[str] = Field(
        default_factory=list,
        description="Extra units to treat as already loaded in the client",
    )
    source_root: str = Field(default="src/", description="Root analyzed once at setup")
    delivery_strategy: DeliveryStrategy = Field(
        default=DeliveryStrategy.INLINE, description="How code reaches the client"
    )
    init_namespace: str = Field(
        default="cljs.user", description="Namespace declared when a client becomes ready"
    )
    output_dir: str = Field(
        default="target/weasel/repl",
        description="Build output holding the compiled REPL client",
    )
    staging_dir: str | None = Field(
        default=None, description="Directory for staged files (system temp dir if unset)"
    )
    eval_timeout: float | None = Field(
        default=None, gt=0, description="Seconds to wait for a reply; None waits forever"
    )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> BridgeConfig:
        """Build a config from ``WEASEL_*`` environment variables.

        Keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for field_name in ("host", "port", "source_root", "delivery_strategy", "eval_timeout"):
            raw = environ.get(ENV_PREFIX + field_name.upper())
            if raw:
                values[field_name] = raw

        preloaded = environ.get(f"{ENV_PREFIX}PRELOADED_UNITS")
        if preloaded:
            values["preloaded_units"] = [u.strip() for u in preloaded.split(",") if u.strip()]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
