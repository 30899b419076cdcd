"""Unit tests for the stream accumulator merge rules."""

import pytest

from streamrelay.models import (
    UNRECOGNIZED,
    CitationDelta,
    ContentDelta,
    ErrorEvent,
    ImageDelta,
    JobStatus,
    JobStatusEvent,
    ReasoningDelta,
    ToolPhase,
    ToolUseEvent,
)
from streamrelay.streaming.accumulator import (
    AccumulatedState,
    StreamAccumulator,
    citation_key,
    fold,
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _aiter(items):
    for item in items:
        yield item


class TestContent:
    def test_content_is_appended_verbatim(self):
        acc = StreamAccumulator()
        acc.apply(ContentDelta("Hel"))
        state = acc.apply(ContentDelta("lo "))
        assert state.content == "Hello "

    def test_content_never_shrinks(self):
        acc = StreamAccumulator()
        lengths = []
        for delta in [
            ContentDelta("a"),
            ReasoningDelta("r"),
            UNRECOGNIZED,
            ImageDelta("https://img/1"),
            ContentDelta("bc"),
            ToolUseEvent("search", ToolPhase.START),
            ContentDelta("d"),
        ]:
            lengths.append(len(acc.apply(delta).content))
        assert lengths == sorted(lengths)
        assert acc.state.content == "abcd"

    def test_reasoning_is_a_separate_channel(self):
        acc = StreamAccumulator()
        acc.apply(ReasoningDelta("think "))
        acc.apply(ContentDelta("answer"))
        state = acc.apply(ReasoningDelta("more"))
        assert state.reasoning == "think more"
        assert state.content == "answer"

    def test_snapshots_are_independent(self):
        acc = StreamAccumulator()
        first = acc.apply(ContentDelta("one"))
        acc.apply(ContentDelta(" two"))
        acc.apply(ImageDelta("https://img/1"))
        assert first.content == "one"
        assert first.images == []


class TestResume:
    def test_seed_from_partial_output(self):
        # Job record at cursor 42 holds "Hello, wo"; the resumed stream sends "rld!"
        acc = StreamAccumulator("Hello, wo")
        state = acc.apply(ContentDelta("rld!"))
        assert state.content == "Hello, world!"

    def test_seed_from_previous_state(self):
        previous = StreamAccumulator()
        previous.apply(ReasoningDelta("plan"))
        previous.apply(ContentDelta("first half"))
        interrupted = previous.fail("transport_error", "connection reset")
        assert interrupted.done

        resumed = StreamAccumulator(interrupted)
        state = resumed.apply(ContentDelta(", second half"))
        assert state.content == "first half, second half"
        assert state.reasoning == "plan"
        assert state.error is None
        assert not state.done

    def test_seeded_citations_still_deduplicate(self):
        citation = {"type": "web_search_result_location", "url": "https://a.example"}
        first = StreamAccumulator()
        seed = first.apply(CitationDelta(citation))

        resumed = StreamAccumulator(seed)
        state = resumed.apply(CitationDelta(dict(citation)))
        assert state.citations == [citation]

    def test_split_fold_matches_single_pass(self):
        a = {"type": "web_search_result_location", "url": "https://a.example"}
        b = {"type": "web_search_result_location", "url": "https://b.example"}
        events = [
            ContentDelta("Hello"),
            ReasoningDelta("look it up"),
            CitationDelta(a),
            ContentDelta(", world"),
            CitationDelta(dict(a)),
            CitationDelta(b),
            ReasoningDelta(", then answer"),
        ]

        single = StreamAccumulator()
        single.apply_all(events)

        first = StreamAccumulator()
        checkpoint = first.apply_all(events[:3])
        resumed = StreamAccumulator(checkpoint)
        resumed.apply_all(events[3:])

        assert resumed.state.content == single.state.content == "Hello, world"
        assert resumed.state.reasoning == single.state.reasoning
        assert resumed.state.citations == single.state.citations == [a, b]

    def test_split_fold_from_partial_output(self):
        events = [ContentDelta("Hel"), ContentDelta("lo, wo"), ContentDelta("rld"), ContentDelta("!")]

        single = StreamAccumulator()
        single.apply_all(events)

        checkpoint = StreamAccumulator()
        partial_output = checkpoint.apply_all(events[:2]).content
        resumed = StreamAccumulator(partial_output)
        resumed.apply_all(events[2:])

        assert resumed.state.content == single.state.content == "Hello, world!"

    async def test_fold_seeded(self):
        snapshots = [s async for s in fold(_aiter([ContentDelta("b"), ContentDelta("c")]), seed="a")]
        assert [s.content for s in snapshots] == ["ab", "abc"]


class TestImages:
    def test_image_cap_keeps_first(self):
        acc = StreamAccumulator()
        acc.apply(ImageDelta("https://img/1"))
        state = acc.apply(ImageDelta("https://img/2"))
        assert state.images == ["https://img/1"]

    def test_duplicate_image_is_ignored(self):
        acc = StreamAccumulator()
        acc.apply(ImageDelta("https://img/1"))
        state = acc.apply(ImageDelta("https://img/1"))
        assert state.images == ["https://img/1"]


class TestToolUses:
    def test_end_supersedes_start(self):
        acc = StreamAccumulator()
        acc.apply(ToolUseEvent("web_search", ToolPhase.START, {"details": "Searching..."}))
        state = acc.apply(ToolUseEvent("web_search", ToolPhase.END, {"details": "Done"}))
        assert len(state.tool_uses) == 1
        assert state.tool_uses[0].phase is ToolPhase.END
        assert state.tool_uses[0].payload == {"details": "Done"}

    def test_different_tools_coexist(self):
        acc = StreamAccumulator()
        acc.apply(ToolUseEvent("web_search", ToolPhase.START))
        acc.apply(ToolUseEvent("image_generation", ToolPhase.START))
        state = acc.apply(ToolUseEvent("web_search", ToolPhase.END))
        assert [(t.name, t.phase) for t in state.tool_uses] == [
            ("web_search", ToolPhase.END),
            ("image_generation", ToolPhase.START),
        ]

    def test_repeated_start_does_not_stack(self):
        acc = StreamAccumulator()
        acc.apply(ToolUseEvent("web_search", ToolPhase.START))
        state = acc.apply(ToolUseEvent("web_search", ToolPhase.START))
        assert len(state.tool_uses) == 1

    def test_second_run_after_end_is_appended(self):
        acc = StreamAccumulator()
        acc.apply(ToolUseEvent("web_search", ToolPhase.START))
        acc.apply(ToolUseEvent("web_search", ToolPhase.END))
        state = acc.apply(ToolUseEvent("web_search", ToolPhase.START))
        assert [t.phase for t in state.tool_uses] == [ToolPhase.END, ToolPhase.START]


class TestCitations:
    def test_dedup_preserves_first_seen_order(self):
        a = {"type": "web_search_result_location", "url": "https://a.example", "title": "A"}
        b = {"type": "web_search_result_location", "url": "https://b.example"}
        a_again = {"type": "web_search_result_location", "url": "https://a.example", "title": "A2"}

        acc = StreamAccumulator()
        for citation in (a, b, a_again):
            acc.apply(CitationDelta(citation))
        assert acc.state.citations == [a, b]

    @pytest.mark.parametrize(
        "citation,expected",
        [
            (
                {"type": "web_search_result_location", "url": "https://x"},
                "url:https://x",
            ),
            (
                {
                    "type": "search_result_location",
                    "source": "kb",
                    "startBlockIndex": 1,
                    "endBlockIndex": 3,
                },
                "source:kb:1-3",
            ),
            (
                {"type": "char_location", "documentIndex": 0, "citedText": "x" * 80},
                "char_location:0:" + "x" * 50,
            ),
        ],
    )
    def test_citation_key(self, citation, expected):
        assert citation_key(citation) == expected

    def test_document_citations_differ_by_excerpt(self):
        acc = StreamAccumulator()
        acc.apply(CitationDelta({"type": "char_location", "documentIndex": 0, "citedText": "alpha"}))
        acc.apply(CitationDelta({"type": "char_location", "documentIndex": 0, "citedText": "beta"}))
        assert len(acc.state.citations) == 2


class TestThinkingDuration:
    def test_measured_on_first_content(self):
        clock = FakeClock(100.0)
        acc = StreamAccumulator(clock=clock)
        clock.now = 103.7
        acc.apply(ReasoningDelta("hmm"))
        state = acc.apply(ContentDelta("a"))
        assert state.thinking_duration_seconds == 3

    def test_never_changes_after_first_measurement(self):
        clock = FakeClock(0.0)
        acc = StreamAccumulator(clock=clock)
        clock.now = 2.0
        acc.apply(ContentDelta("a"))
        clock.now = 50.0
        state = acc.apply(ContentDelta("b"))
        assert state.thinking_duration_seconds == 2

    def test_not_measured_when_seeded_with_content(self):
        acc = StreamAccumulator("already streamed")
        state = acc.apply(ContentDelta(" more"))
        assert state.thinking_duration_seconds is None


class TestTermination:
    def test_terminal_status_ends_fold(self):
        acc = StreamAccumulator()
        acc.apply(ContentDelta("done"))
        state = acc.apply(JobStatusEvent(JobStatus.COMPLETED, job_id="resp_1"))
        assert state.done
        assert state.job_status is JobStatus.COMPLETED
        assert acc.apply(ContentDelta("ignored")).content == "done"

    def test_active_status_is_advisory(self):
        acc = StreamAccumulator()
        state = acc.apply(JobStatusEvent(JobStatus.IN_PROGRESS, job_id="resp_1"))
        assert not state.done
        assert state.job_id == "resp_1"
        assert state.content == ""

    def test_error_is_a_marker_and_keeps_content(self):
        acc = StreamAccumulator()
        acc.apply(ContentDelta("partial"))
        state = acc.apply(ErrorEvent("failed", "boom"))
        assert state.done
        assert state.content == "partial"
        assert state.error.type == "failed"
        assert state.error.message == "boom"

    def test_apply_all_stops_at_terminal(self):
        acc = StreamAccumulator()
        state = acc.apply_all(
            [ContentDelta("a"), ErrorEvent("x", "y"), ContentDelta("b")]
        )
        assert state.content == "a"

    def test_to_dict_uses_wire_names(self):
        acc = StreamAccumulator()
        acc.apply(ToolUseEvent("web_search", ToolPhase.END, {"details": "Done"}))
        data = acc.finish().to_dict()
        assert data["toolUses"] == [{"name": "web_search", "status": "end", "details": "Done"}]
        assert data["done"] is True
        assert data["error"] is None

    def test_empty_state_defaults(self):
        state = AccumulatedState()
        assert state.content == "" and state.images == [] and not state.done
