from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_TRIGGER_NODE_TYPES = [
    "INITIAL",
    "MANUAL_TRIGGER",
    "GOOGLE_FORM_TRIGGER",
    "STRIPE_TRIGGER",
    "CALENDAR_TRIGGER",
    "WEBHOOK_TRIGGER",
    "SCHEDULED_TRIGGER",
]


class RedisConfig(BaseModel):
    """Configuration for the Redis event channel."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    max_events: int = Field(default=1000, gt=0)
    event_ttl_seconds: int = Field(default=3600, gt=0)


class EventsConfig(BaseModel):
    """Event channel configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class ExecutionConfig(BaseModel):
    """Scheduler settings."""

    workflow_timeout_ms: int = Field(default=30000, gt=0)
    cycle_policy: Literal["allow", "reject"] = "allow"
    trigger_node_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TRIGGER_NODE_TYPES)
    )


class GraphrunConfig(BaseModel):
    """Top-level configuration model."""

    execution: ExecutionConfig = ExecutionConfig()
    events: EventsConfig = EventsConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> GraphrunConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GRAPHRUN_CONFIG env
            variable or 'graphrun.yaml' in the current directory.
    """

    config_path = path or os.getenv("GRAPHRUN_CONFIG", "graphrun.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = GraphrunConfig(**data)
    else:
        config = GraphrunConfig()

    env_db_url = os.getenv("GRAPHRUN_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_timeout = os.getenv("GRAPHRUN_WORKFLOW_TIMEOUT_MS")
    if env_timeout:
        config.execution.workflow_timeout_ms = int(env_timeout)
    return config
