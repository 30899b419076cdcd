"""Event-stream decoding, classification and accumulation."""

from streamrelay.streaming.accumulator import (
    AccumulatedState,
    StreamAccumulator,
    StreamError,
    ToolUse,
    citation_key,
    fold,
)
from streamrelay.streaming.classifier import classify, classify_payload
from streamrelay.streaming.consumer import consume
from streamrelay.streaming.decoder import FrameDecoder, iter_records
from streamrelay.streaming.translator import UpstreamEventTranslator

__all__ = [
    "AccumulatedState",
    "StreamAccumulator",
    "StreamError",
    "ToolUse",
    "citation_key",
    "fold",
    "classify",
    "classify_payload",
    "consume",
    "FrameDecoder",
    "iter_records",
    "UpstreamEventTranslator",
]
