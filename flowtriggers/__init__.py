"""Event triggers for flow engines: REST with CORS, CLI, TCP, timer, channel and load testing."""

__version__ = "0.9.0"

__all__ = [
    "channel",
    "cli",
    "cors",
    "loadtester",
    "rest",
    "rest_server",
    "tcpudp",
    "timer",
]