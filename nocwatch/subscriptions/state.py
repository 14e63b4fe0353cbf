"""Observer link state machine.

``transition`` is a pure function over an immutable ``LinkState``:
applying a trigger that is not valid in the current state returns the
state unchanged, so replaying a trigger is harmless.

    CONNECTING --handshake_ok--> CONNECTED
    CONNECTING --handshake_failed / transport_error--> DISCONNECTED
    CONNECTED  --link_lost / transport_error--> DEGRADED
    DEGRADED   --handshake_ok--> CONNECTED
    DEGRADED   --handshake_failed / transport_error--> DISCONNECTED
    DISCONNECTED --retry--> CONNECTING
    any        --teardown--> TERMINATED   (absorbing)
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from nocwatch.core.types import Transport


class LinkStatus(StrEnum):
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DEGRADED = "DEGRADED"
    DISCONNECTED = "DISCONNECTED"
    TERMINATED = "TERMINATED"


class LinkTrigger(StrEnum):
    HANDSHAKE_OK = "HANDSHAKE_OK"
    HANDSHAKE_FAILED = "HANDSHAKE_FAILED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    LINK_LOST = "LINK_LOST"
    RETRY = "RETRY"
    TEARDOWN = "TEARDOWN"


class LinkState(BaseModel):
    """Snapshot of one observer's link."""

    model_config = ConfigDict(frozen=True)

    status: LinkStatus = LinkStatus.CONNECTING
    transport: Transport = Transport.PRIMARY
    # Consecutive handshake failures on the current transport, capped at the
    # fallback threshold.
    failures: int = 0
    max_failures: int = 3


_MOVES: dict[tuple[LinkStatus, LinkTrigger], LinkStatus] = {
    (LinkStatus.CONNECTING, LinkTrigger.HANDSHAKE_OK): LinkStatus.CONNECTED,
    (LinkStatus.CONNECTING, LinkTrigger.HANDSHAKE_FAILED): LinkStatus.DISCONNECTED,
    (LinkStatus.CONNECTING, LinkTrigger.TRANSPORT_ERROR): LinkStatus.DISCONNECTED,
    (LinkStatus.CONNECTED, LinkTrigger.LINK_LOST): LinkStatus.DEGRADED,
    (LinkStatus.CONNECTED, LinkTrigger.TRANSPORT_ERROR): LinkStatus.DEGRADED,
    (LinkStatus.DEGRADED, LinkTrigger.HANDSHAKE_OK): LinkStatus.CONNECTED,
    (LinkStatus.DEGRADED, LinkTrigger.HANDSHAKE_FAILED): LinkStatus.DISCONNECTED,
    (LinkStatus.DEGRADED, LinkTrigger.TRANSPORT_ERROR): LinkStatus.DISCONNECTED,
    (LinkStatus.DISCONNECTED, LinkTrigger.RETRY): LinkStatus.CONNECTING,
}


def transition(state: LinkState, trigger: LinkTrigger) -> LinkState:
    """Apply *trigger* to *state* and return the resulting state."""
    if state.status is LinkStatus.TERMINATED:
        return state
    if trigger is LinkTrigger.TEARDOWN:
        return state.model_copy(update={"status": LinkStatus.TERMINATED})

    status = _MOVES.get((state.status, trigger))
    if status is None:
        return state

    transport, failures = state.transport, state.failures
    if trigger is LinkTrigger.HANDSHAKE_OK:
        failures = 0
    elif trigger is LinkTrigger.TRANSPORT_ERROR:
        transport, failures = Transport.FALLBACK, 0
    elif trigger is LinkTrigger.HANDSHAKE_FAILED:
        failures = min(failures + 1, state.max_failures)
        if transport is Transport.PRIMARY and failures >= state.max_failures:
            transport, failures = Transport.FALLBACK, 0

    return state.model_copy(
        update={"status": status, "transport": transport, "failures": failures}
    )
