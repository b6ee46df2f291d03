from enum import Enum
from typing import Any

import msgspec

from loopwright.domain.value_object import LaunchOptions


class RunMode(Enum):
    """Supported session lifecycles."""

    SINGLE = "single"
    PERSISTENT = "persistent"


class SingleRunConfig(
    msgspec.Struct, tag_field="mode", tag=RunMode.SINGLE.value, kw_only=True, forbid_unknown_fields=True
):
    """Run the script once against a fresh browser session, closed afterwards."""

    launch: LaunchOptions = msgspec.field(default_factory=LaunchOptions)
    settings_overrides: dict[str, Any] = {}


class PersistentRunConfig(
    msgspec.Struct, tag_field="mode", tag=RunMode.PERSISTENT.value, kw_only=True, forbid_unknown_fields=True
):
    """Keep the browser session open and rerun the script whenever the rerun trigger fires.

    ``poll_interval`` is how often, in seconds, the run checks whether it was stopped.
    """

    launch: LaunchOptions = msgspec.field(default_factory=LaunchOptions)
    settings_overrides: dict[str, Any] = {}
    poll_interval: float = 1.0


RunConfig = SingleRunConfig | PersistentRunConfig


def load_config(data: dict[str, Any] | RunConfig | None = None) -> RunConfig:
    """
    Decodes a run configuration from a Python dictionary.

    A dictionary without a ``mode`` key describes a single run.

    :param data: The configuration as a dictionary, or an already decoded configuration
    :type data: dict[str, Any] | RunConfig | None
    :returns: The decoded configuration
    :rtype: RunConfig
    :raises ValueError: If the configuration is malformed or names an unknown mode
    """
    if isinstance(data, (SingleRunConfig, PersistentRunConfig)):
        return data
    data = {"mode": RunMode.SINGLE.value, **(data or {})}
    try:
        return msgspec.convert(data, type=RunConfig)
    except msgspec.ValidationError as e:
        raise ValueError(f"Invalid run configuration: {e}") from None
