"""Active reachability checks for service ports."""

import logging
import socket

logger = logging.getLogger(__name__)

SOCKET_TYPES = {
    "TCP": socket.SOCK_STREAM,
    "UDP": socket.SOCK_DGRAM,
}


def probe_port(address, port, protocol="TCP", timeout=0.1):
    """Try to connect to address:port; True if the connection was established.

    Never raises. Headless services (clusterIP "None"), missing addresses and
    protocols without a socket type (SCTP) report unhealthy.
    """
    if not address or address == "None" or not port:
        return False
    sock_type = SOCKET_TYPES.get((protocol or "TCP").upper())
    if sock_type is None:
        logger.debug(f"No probe for protocol {protocol}, reporting {address}:{port} unhealthy")
        return False

    try:
        with socket.socket(_family(address), sock_type) as sock:
            sock.settimeout(timeout)
            sock.connect((address, int(port)))
        return True
    except (OSError, OverflowError, ValueError) as e:
        logger.debug(f"Probe {protocol} {address}:{port} failed: {e}")
        return False


def _family(address):
    return socket.AF_INET6 if ":" in address else socket.AF_INET
