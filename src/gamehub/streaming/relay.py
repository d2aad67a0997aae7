"""Console and metrics relays for an accepted client WebSocket."""

import asyncio
import logging

from starlette.websockets import WebSocket, WebSocketDisconnect

from gamehub.config import StreamingConfig
from gamehub.core.errors import GameHubError, StreamDetachError
from gamehub.core.interfaces.runtime import AttachedStream
from gamehub.logging_schema import LogEvent
from gamehub.streaming.channel import ChannelOverflowError, Detached, SessionChannel
from gamehub.streaming.registry import StreamSession
from gamehub.telemetry import MetricsSampler, Subscription

logger = logging.getLogger(__name__)

# RFC 6455 close codes
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


async def send_detach(websocket: WebSocket, instance_id: str, reason: str) -> None:
    """Tell the client the upstream is gone, then close with 1011."""
    logger.info(
        "Stream detached",
        extra={
            "event": LogEvent.STREAM_DETACHED,
            "instance_id": instance_id,
            "reason": reason,
        },
    )
    try:
        await websocket.send_json(
            {"type": "stream_detach", "instance_id": instance_id, "reason": reason}
        )
        await websocket.close(code=CLOSE_INTERNAL_ERROR, reason=reason[:120])
    except (WebSocketDisconnect, RuntimeError):
        # Client already gone
        return


async def watch_client(websocket: WebSocket) -> None:
    """Discard client frames until the client disconnects."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))


# =============================================================================
# Console
# =============================================================================


async def relay_upstream_to_channel(stream: AttachedStream, channel: SessionChannel) -> None:
    """Reader: push upstream output into the session channel.

    Upstream failures end the session with a detach, never a bare close.
    """
    try:
        async for chunk in stream:
            channel.put(chunk)
    except ChannelOverflowError:
        raise
    except GameHubError as exc:
        channel.close(exc.message)
        return
    except Exception as exc:
        logger.warning(
            "Console upstream read failed",
            extra={"event": LogEvent.STREAM_DETACHED, "error": str(exc)},
        )
        channel.close(f"Console stream error: {exc}")
        return
    channel.close("Console stream ended")


async def relay_channel_to_client(websocket: WebSocket, channel: SessionChannel) -> None:
    """Writer: drain the channel to the client in order."""
    while True:
        frame = await channel.get()
        if isinstance(frame, Detached):
            raise StreamDetachError(frame.reason)
        await websocket.send_bytes(frame)


async def relay_client_to_upstream(websocket: WebSocket, stream: AttachedStream) -> None:
    """Input: forward client frames to the server's stdin."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        if message.get("bytes") is not None:
            await stream.send(message["bytes"])
        elif message.get("text") is not None:
            await stream.send(message["text"].encode())


async def close_on_termination(session: StreamSession, channel: SessionChannel) -> None:
    """End the session after already-queued output when the instance terminates."""
    reason = await session.wait_terminated()
    channel.close(reason)


async def run_console(
    websocket: WebSocket,
    stream: AttachedStream,
    session: StreamSession,
    config: StreamingConfig,
) -> None:
    """Relay an accepted console session until either side goes away."""
    channel = SessionChannel(
        config.console_buffer_size, config.console_overflow, session.kind.value
    )
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(relay_upstream_to_channel(stream, channel))
            tg.create_task(relay_channel_to_client(websocket, channel))
            tg.create_task(relay_client_to_upstream(websocket, stream))
            tg.create_task(close_on_termination(session, channel))
    except* WebSocketDisconnect:
        pass  # Normal client disconnect
    except* StreamDetachError as eg:
        await send_detach(websocket, session.instance_id, eg.exceptions[0].message)
    except* ChannelOverflowError as eg:
        logger.warning(
            "Console client too slow, disconnecting",
            extra={
                "event": LogEvent.STREAM_OVERFLOW,
                "instance_id": session.instance_id,
                "session_id": session.id,
                "error": str(eg.exceptions[0]),
            },
        )
        try:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Client too slow")
        except RuntimeError:
            pass


# =============================================================================
# Metrics
# =============================================================================


async def relay_samples_to_client(websocket: WebSocket, subscription: Subscription) -> None:
    async for sample in subscription:
        await websocket.send_json(sample.model_dump(mode="json"))
    raise StreamDetachError(subscription.detach_reason or "Metrics stream ended")


async def detach_on_termination(session: StreamSession) -> None:
    raise StreamDetachError(await session.wait_terminated())


async def run_metrics(
    websocket: WebSocket,
    sampler: MetricsSampler,
    session: StreamSession,
) -> None:
    """Relay normalized samples to an accepted client until detach or disconnect."""
    subscription = sampler.subscribe(session.instance_id)
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(relay_samples_to_client(websocket, subscription))
            tg.create_task(watch_client(websocket))
            tg.create_task(detach_on_termination(session))
    except* WebSocketDisconnect:
        pass  # Normal client disconnect
    except* StreamDetachError as eg:
        await send_detach(websocket, session.instance_id, eg.exceptions[0].message)
    finally:
        await sampler.unsubscribe(subscription)
