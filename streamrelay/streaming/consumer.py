"""Drive decoder, classifier and accumulator over a live byte stream."""

import logging
from collections.abc import AsyncIterable, Awaitable, Callable

from streamrelay.streaming.accumulator import AccumulatedState, StreamAccumulator
from streamrelay.streaming.classifier import classify
from streamrelay.streaming.decoder import FrameDecoder

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[AccumulatedState], Awaitable[None] | None]


async def consume(
    chunks: AsyncIterable[bytes],
    seed: AccumulatedState | str | None = None,
    on_update: UpdateCallback | None = None,
    transport_errors: tuple[type[BaseException], ...] = (OSError, TimeoutError),
) -> AccumulatedState:
    """Fold an event stream into its final state.

    ``on_update`` receives a snapshot after every decoded record and once
    more when the stream ends. A failure while reading chunks (connection reset, read
    timeout) ends the fold with a ``transport_error`` marker instead of
    raising, so content received so far is kept and the caller can resume.
    Client libraries pass their own exception types in ``transport_errors``.
    """
    decoder = FrameDecoder()
    accumulator = StreamAccumulator(seed)

    async def _notify(state: AccumulatedState) -> None:
        if on_update is None:
            return
        result = on_update(state)
        if result is not None:
            await result

    try:
        async for chunk in chunks:
            for record in decoder.feed(chunk):
                await _notify(accumulator.apply_all(classify(record)))
                if accumulator.done:
                    return accumulator.state
            if decoder.done:
                break
    except transport_errors as exc:
        logger.warning("Stream read failed: %s", exc)
        state = accumulator.fail("transport_error", str(exc) or type(exc).__name__)
        await _notify(state)
        return state

    state = accumulator.finish()
    await _notify(state)
    return state
