"""Relay configuration and configuration file parsing."""
from __future__ import annotations

import logging
import pathlib
import sys
from typing import Optional
from typing import Union

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from streamroute.utils.config import dump
from streamroute.utils.config import load

DEFAULT_MESSAGE_SIZE = 1456
DEFAULT_RECONNECT_INTERVAL = 1.0


class RouteLoggingConfig(BaseModel):
    """Relay logging configuration.

    Attributes:
        log_file: Optional file to write logs to in addition to stdout.
        level: Logging level for the root logger.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    log_file: Optional[str] = None  # noqa: UP007
    level: Union[int, str] = logging.INFO  # noqa: UP007


class RouteConfig(BaseModel):
    """Relay configuration.

    Instances are immutable. Use
    [`model_copy(update=...)`][pydantic.BaseModel.model_copy] to derive
    a modified configuration.

    Attributes:
        message_size: Size in bytes of the buffer each pump reads into.
        bidir: Also forward data from the destination back to the source.
        reconnect: Reconnect automatically after the relay ends or fails.
        reconnect_interval: Minimum seconds between consecutive connection
            attempts.
        stats_file: Optional file that socket statistics are appended to.
        stats_freq_ms: Milliseconds between statistics reports. Statistics
            are only written if this is positive and `stats_file` is set.
        logging: Logging configuration.

    Raises:
        ValueError: If `message_size` or `reconnect_interval` is not
            positive or `stats_freq_ms` is negative.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    message_size: int = DEFAULT_MESSAGE_SIZE
    bidir: bool = False
    reconnect: bool = False
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    stats_file: Optional[str] = None  # noqa: UP007
    stats_freq_ms: int = 0
    logging: RouteLoggingConfig = Field(default_factory=RouteLoggingConfig)

    @field_validator('message_size')
    @classmethod
    def _message_size_validator(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f'Message size must be >= 1. Got {v}.')
        return v

    @field_validator('reconnect_interval')
    @classmethod
    def _reconnect_interval_validator(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f'Reconnect interval must be > 0. Got {v}.')
        return v

    @field_validator('stats_freq_ms')
    @classmethod
    def _stats_freq_validator(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f'Stats frequency must be >= 0. Got {v}.')
        return v

    @property
    def stats_enabled(self) -> bool:
        """Statistics reporting is configured."""
        return bool(self.stats_file) and self.stats_freq_ms > 0

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="route.toml"
            message_size = 1316
            bidir = true
            reconnect = true
            stats_file = "stats.jsonl"
            stats_freq_ms = 1000

            [logging]
            log_file = "route.log"
            level = "INFO"
            ```

            ```python
            from streamroute.config import RouteConfig

            config = RouteConfig.from_toml('route.toml')
            ```

        Note:
            Omitted values will be set to their defaults.
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)

    def write_toml(self, filepath: str | pathlib.Path) -> None:
        """Write the configuration to a TOML file."""
        with open(filepath, 'wb') as f:
            dump(self, f)
