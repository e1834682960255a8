"""Immutable configuration threaded into the sync engine."""

from __future__ import annotations

from dataclasses import dataclass

from tasksync.core.settings import Settings, settings


@dataclass(frozen=True)
class SyncConfig:
    """Immutable configuration for sync operations."""

    base_url: str
    batch_size: int = 50
    max_retries: int = 3
    batch_timeout_seconds: float = 15.0
    probe_timeout_seconds: float = 5.0
    client_id: str = "tasksync-local"
    shared_secret: str | None = None
    token_ttl_seconds: int = 300

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")


def load_sync_config(source: Settings | None = None) -> SyncConfig:
    """Build configuration object from global settings."""
    source = source or settings
    return SyncConfig(
        base_url=source.remote_base_url,
        batch_size=source.sync_batch_size,
        max_retries=source.sync_retry_attempts,
        batch_timeout_seconds=float(source.sync_batch_timeout_seconds),
        probe_timeout_seconds=float(source.sync_probe_timeout_seconds),
        client_id=source.sync_client_id,
        shared_secret=source.sync_shared_secret,
        token_ttl_seconds=source.sync_token_ttl_seconds,
    )
