# deployment_engine/infrastructure/network.py
"""Local network helpers."""

import socket

DEFAULT_ROUTE_IP = "198.41.0.4"


def get_local_ip_address(route_ip_address: str = DEFAULT_ROUTE_IP) -> str:
    """
    IP the OS uses to reach ``route_ip_address``.

    Useful on hosts with several interfaces; pointing at an interface
    address returns that address. No packet is sent.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect((route_ip_address, 1))
        return sock.getsockname()[0]


def grab_ephemeral_port() -> int:
    """A port that was free at the time of the call."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("", 0))
        return sock.getsockname()[1]
