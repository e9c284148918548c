"""Endpoint descriptors and URI parsing.

Endpoints are given as URIs of the form
`scheme://[host]:port[?key=value&...]`, for example:

* `udp://239.0.0.1:4200` sends to (connects to) a remote host.
* `udp://:4200` binds to a local port and receives.
* `tcp://example.com:5000?timeout=10` connects with a 10 second timeout.
* `tcp://:5000` or `tcp://0.0.0.0:5000?mode=listener` listens for a peer.
"""
from __future__ import annotations

import math
import urllib.parse
from typing import Dict
from typing import Iterable
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

DEFAULT_CONNECT_TIMEOUT = 3.0

EndpointMode = Literal['caller', 'listener']


class Endpoint(BaseModel):
    """Immutable descriptor of one candidate endpoint.

    Attributes:
        scheme: Transport scheme (e.g., `udp` or `tcp`).
        host: Host name or address. Empty for all local interfaces.
        port: Port number.
        mode: Connect to the host (`caller`) or listen for a peer
            (`listener`).
        params: Remaining query parameters of the URI.
    """

    model_config = ConfigDict(frozen=True)

    scheme: str
    host: str = ''
    port: int
    mode: EndpointMode = 'caller'
    params: Dict[str, str] = Field(default_factory=dict)  # noqa: UP006

    @field_validator('scheme')
    @classmethod
    def _scheme_validator(cls, v: str) -> str:
        if not v:
            raise ValueError('Endpoint scheme must not be empty.')
        return v.lower()

    @field_validator('port')
    @classmethod
    def _port_validator(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError(f'Port must be in [0, 65535]. Got {v}.')
        return v

    @field_validator('params')
    @classmethod
    def _params_validator(
        cls,
        v: Dict[str, str],  # noqa: UP006
    ) -> Dict[str, str]:  # noqa: UP006
        timeout = v.get('timeout')
        if timeout is not None:
            try:
                seconds = float(timeout)
            except ValueError:
                seconds = math.nan
            if not (math.isfinite(seconds) and seconds > 0):
                raise ValueError(
                    f'Timeout must be a positive number. Got {timeout!r}.',
                )
        return v

    def __str__(self) -> str:
        host = f'[{self.host}]' if ':' in self.host else self.host
        uri = f'{self.scheme}://{host}:{self.port}'
        query = dict(self.params)
        if self.mode == 'listener' and self.host:
            query['mode'] = self.mode
        if query:
            uri = f'{uri}?{urllib.parse.urlencode(query)}'
        return uri

    @property
    def connect_timeout(self) -> float:
        """Seconds to wait when connecting or binding."""
        return float(self.params.get('timeout', DEFAULT_CONNECT_TIMEOUT))

    @property
    def bind_address(self) -> str:
        """Local interface to bind to in listener mode."""
        return self.params.get('bind', self.host)


def parse_endpoint(uri: str) -> Endpoint:
    """Parse an endpoint URI.

    The `mode` query parameter selects between `caller` and `listener`.
    If omitted, URIs without a host are listeners and all others callers.

    Args:
        uri: URI to parse.

    Returns:
        Endpoint descriptor.

    Raises:
        ValueError: If the URI does not have a scheme or port, the port is
            out of range, the mode is unknown, or the `timeout` parameter
            is not a positive number.
    """
    parts = urllib.parse.urlsplit(uri)
    if not parts.scheme or not parts.netloc:
        raise ValueError(
            f'Endpoint must have the form scheme://host:port. Got {uri!r}.',
        )

    try:
        port = parts.port
    except ValueError as e:
        raise ValueError(f'Invalid port in endpoint {uri!r}: {e}') from e
    if port is None:
        raise ValueError(f'Endpoint {uri!r} is missing a port.')

    host = parts.hostname or ''
    params = dict(urllib.parse.parse_qsl(parts.query))
    mode = params.pop('mode', 'listener' if not host else 'caller')
    if mode not in ('caller', 'listener'):
        raise ValueError(
            f'Endpoint mode must be caller or listener. Got {mode!r}.',
        )

    return Endpoint(
        scheme=parts.scheme,
        host=host,
        port=port,
        mode=mode,
        params=params,
    )


def parse_endpoints(uris: Iterable[str]) -> tuple[Endpoint, ...]:
    """Parse a sequence of endpoint URIs, preserving order."""
    return tuple(parse_endpoint(uri) for uri in uris)
