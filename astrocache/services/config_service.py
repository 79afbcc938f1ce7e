"""Logic helpers for the `astrocache config` command."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import (
    Config,
    load_config,
    set_api_url,
    set_recency_policy,
    set_recent_limit,
    set_timeout,
)


@dataclass(slots=True)
class ConfigUpdateResult:
    api_url_set: bool = False
    api_url_cleared: bool = False
    timeout_set: bool = False
    recent_limit_set: bool = False
    recency_policy_set: bool = False

    @property
    def changed(self) -> bool:
        return any(
            (
                self.api_url_set,
                self.api_url_cleared,
                self.timeout_set,
                self.recent_limit_set,
                self.recency_policy_set,
            )
        )


def apply_config_updates(
    *,
    api_url: str | None = None,
    clear_api_url: bool = False,
    timeout: float | None = None,
    recent_limit: int | None = None,
    recency_policy: str | None = None,
) -> ConfigUpdateResult:
    """Apply config mutations and report which fields were updated."""

    result = ConfigUpdateResult()
    if api_url is not None:
        set_api_url(api_url)
        result.api_url_set = True
    if clear_api_url:
        set_api_url(None)
        result.api_url_cleared = True
    if timeout is not None:
        set_timeout(timeout)
        result.timeout_set = True
    if recent_limit is not None:
        set_recent_limit(recent_limit)
        result.recent_limit_set = True
    if recency_policy is not None:
        set_recency_policy(recency_policy)
        result.recency_policy_set = True
    return result


def get_config_snapshot() -> Config:
    """Return the current configuration dataclass."""

    return load_config()
