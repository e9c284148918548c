"""`streamroute` command-line interface."""
from __future__ import annotations

import logging
import logging.handlers
import os
import re
import signal
import sys
import threading
from types import FrameType
from typing import Any

import click
import pydantic

import streamroute
from streamroute.config import RouteConfig
from streamroute.connect import is_supported
from streamroute.endpoints import Endpoint
from streamroute.endpoints import parse_endpoints
from streamroute.route import run
from streamroute.stats import StatsWriter

logger = logging.getLogger(__name__)

_UNITS_TO_MS = {'ms': 1, 's': 1000}


class DurationMs(click.ParamType):
    """Duration with an optional `s` or `ms` unit converted to milliseconds.

    A number without a unit is interpreted as milliseconds.
    """

    name = 'duration'

    def convert(
        self,
        value: Any,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> int:
        if isinstance(value, int):
            return value

        match = re.fullmatch(r'\s*(\d+)\s*(ms|s)?\s*', str(value))
        if match is None:
            self.fail(
                f'{value!r} is not a duration such as 500ms or 2s.',
                param,
                ctx,
            )
        number, unit = match.groups()
        return int(number) * _UNITS_TO_MS[unit or 'ms']


def _parse_endpoints(
    ctx: click.Context,
    param: click.Parameter,
    value: tuple[str, ...],
) -> tuple[Endpoint, ...]:
    try:
        endpoints = parse_endpoints(value)
    except (ValueError, pydantic.ValidationError) as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param) from e
    for endpoint in endpoints:
        if not is_supported(endpoint.scheme):
            raise click.BadParameter(
                f'Unsupported scheme {endpoint.scheme!r} in {endpoint}.',
                ctx=ctx,
                param=param,
            )
    return endpoints


def configure_logging(level: int | str, log_file: str | None) -> None:
    """Configure the root logger for the CLI.

    Args:
        level: Minimum logging level.
        log_file: Optional file to also log to. The file is rotated at
            midnight.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                log_file,
                when='midnight',
            ),
        )

    logging.basicConfig(
        format=(
            '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: '
            '%(message)s'
        ),
        datefmt='%Y-%m-%d %H:%M:%S',
        level=level,
        handlers=handlers,
    )


def install_signal_handlers(cancel: threading.Event) -> None:
    """Set `cancel` on the first SIGINT or SIGTERM.

    A second signal raises [`KeyboardInterrupt`][KeyboardInterrupt] to
    force an exit when a read is blocked.
    """

    def _handler(signum: int, frame: FrameType | None) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.info(
            f'Received {signal.Signals(signum).name}, stopping '
            '(repeat to force)',
        )
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


@click.group()
@click.version_option(version=streamroute.__version__)
def cli() -> None:
    """Relay data streams between network endpoints."""
    pass


@cli.command('route')
@click.option(
    '-i',
    '--input',
    'src_endpoints',
    multiple=True,
    required=True,
    callback=_parse_endpoints,
    metavar='URI',
    help='Source URIs, tried in order.',
)
@click.option(
    '-o',
    '--output',
    'dst_endpoints',
    multiple=True,
    required=True,
    callback=_parse_endpoints,
    metavar='URI',
    help='Destination URIs, tried in order.',
)
@click.option(
    '--msgsize',
    type=click.IntRange(min=1),
    help='Size of a buffer to receive message payload.',
)
@click.option(
    '--bidir',
    is_flag=True,
    help='Enable bidirectional transmission.',
)
@click.option(
    '--reconnect',
    is_flag=True,
    help='Reconnect automatically.',
)
@click.option('--statsfile', metavar='PATH', help='Stats report filename.')
@click.option(
    '--statsfreq',
    type=DurationMs(),
    help='Stats report frequency (e.g., 500ms or 1s).',
)
@click.option(
    '--config',
    '-c',
    'config_path',
    type=click.Path(exists=True, dir_okay=False),
    help='TOML configuration file.',
)
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
@click.option('--log-file', metavar='PATH', help='Also log to this file.')
def route_command(
    src_endpoints: tuple[Endpoint, ...],
    dst_endpoints: tuple[Endpoint, ...],
    msgsize: int | None,
    bidir: bool,
    reconnect: bool,
    statsfile: str | None,
    statsfreq: int | None,
    config_path: str | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Route data between source and destination endpoints.

    If a configuration file is given, the remaining options override the
    values it contains.
    """
    try:
        config = (
            RouteConfig()
            if config_path is None
            else RouteConfig.from_toml(config_path)
        )
    except (ValueError, pydantic.ValidationError) as e:
        raise click.UsageError(f'Invalid config file: {e}') from e

    overrides: dict[str, Any] = {
        'message_size': msgsize,
        'bidir': True if bidir else None,
        'reconnect': True if reconnect else None,
        'stats_file': statsfile,
        'stats_freq_ms': statsfreq,
    }
    logging_overrides = {'level': log_level, 'log_file': log_file}

    data = config.model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    data['logging'].update(
        {k: v for k, v in logging_overrides.items() if v is not None},
    )
    try:
        config = RouteConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise click.UsageError(str(e)) from e

    level = config.logging.level
    configure_logging(
        level.upper() if isinstance(level, str) else level,
        config.logging.log_file,
    )

    cancel = threading.Event()
    install_signal_handlers(cancel)

    logger.info(
        f'Routing {", ".join(map(str, src_endpoints))} -> '
        f'{", ".join(map(str, dst_endpoints))}',
    )

    stats: StatsWriter | None = None
    if config.stats_enabled:
        assert config.stats_file is not None
        stats = StatsWriter(config.stats_file, config.stats_freq_ms / 1000)

    try:
        run(src_endpoints, dst_endpoints, config, cancel, stats=stats)
    finally:
        if stats is not None:
            stats.close()
