"""
Reachability probe.

Opens and immediately closes a TCP connection to the server so that
network problems (firewall, DNS, routing) are reported separately from
authentication problems, before any credential material is used.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

from rolodex.events import EventEmitter, EventType

DEFAULT_PROBE_TIMEOUT = 10.0


def format_address(host: str, port: int) -> str:
    """Render host:port, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a reachability probe."""
    reachable: bool
    address: str
    duration_ms: float
    error: str | None = None


async def probe(
    host: str,
    port: int,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    emitter: EventEmitter | None = None,
) -> ProbeResult:
    """
    Check that a TCP connection to host:port can be opened.

    Never raises for network failures; they are reported in the result.
    A reachable result does not guarantee the following handshake works.

    Args:
        host: Server hostname or IP address
        port: Server TCP port
        timeout: Upper bound on the connect attempt, in seconds
        emitter: Diagnostics sink

    Returns:
        ProbeResult describing the outcome
    """
    assert timeout > 0, f"Probe timeout must be positive, got {timeout}"

    address = format_address(host, port)
    if emitter is None:
        emitter = EventEmitter()

    with emitter.timed_event(EventType.PROBE, address=address) as data:
        error: str | None = None
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except asyncio.TimeoutError:
            error = f"timed out after {timeout:g}s"
        except OSError as e:
            error = e.strerror or str(e) or type(e).__name__
        else:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                # The server may reset a connection that sends nothing
                pass

        data["reachable"] = error is None
        if error:
            data["error"] = error

    return ProbeResult(
        reachable=error is None,
        address=address,
        duration_ms=data["duration_ms"],
        error=error,
    )
