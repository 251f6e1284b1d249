import socket
import time

from .errors import ProbeError, ProbeTimeoutError

WIREGUARD_PORT = 443


def tcp_ping(host: str, port: int, max_latency: float) -> float:
    """Measure how long it takes to open a TCP connection to host:port.

    Nothing is exchanged over the connection: it is closed as soon as the
    handshake is done.

    Args:
        host: IP address or hostname of the server
        port: TCP port to connect to
        max_latency: maximum time to wait for the connection, in seconds

    Returns:
        The connection time in milliseconds.

    Raises:
        ProbeTimeoutError: If the server did not answer within max_latency
        ProbeError: If the connection failed for any other reason
    """
    if not host:
        raise ProbeError("server has no address")

    start = time.perf_counter()
    try:
        sock = socket.create_connection((host, port), timeout=max_latency)
    except socket.timeout as e:
        raise ProbeTimeoutError(f"{host}:{port} did not answer in time") from e
    # Hostnames the IDNA codec rejects raise UnicodeError.
    except (OSError, ValueError) as e:
        raise ProbeError(f"could not connect to {host}:{port}: {e}") from e
    elapsed = (time.perf_counter() - start) * 1000.0
    sock.close()

    # Name resolution is not covered by the socket timeout.
    if elapsed > max_latency * 1000.0:
        raise ProbeTimeoutError(f"{host}:{port} answered in {elapsed:.1f} ms")
    return elapsed
