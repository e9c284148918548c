"""Socket implementations relayed by streamroute."""
from __future__ import annotations

from streamroute.sockets.protocols import Listener
from streamroute.sockets.protocols import Socket
from streamroute.sockets.tcp import TcpListener
from streamroute.sockets.tcp import TcpSocket
from streamroute.sockets.udp import UdpSocket
