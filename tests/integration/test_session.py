"""End-to-end tests for the coding session state machine."""

import logging

import pytest

from deductive_coder.errors import (
    CrossParagraphSpanError,
    InvalidSpanError,
    NoPendingSelectionError,
    SuggestionError,
)
from deductive_coder.models import CodedSpan, TextRange
from deductive_coder.selection import OffsetMapper, Selection, SelectionPoint
from deductive_coder.session import CodingSession, SessionState
from deductive_coder.suggestions import Suggestion

TEAMS = TextRange(25, 30)
IDEAS = TextRange(48, 57)


class StaticProvider:
    def __init__(self, selection):
        self.selection = selection

    def get_current_selection(self):
        return self.selection


# -----------------------------------------------------------------------
# Select / confirm / cancel
# -----------------------------------------------------------------------


class TestStateMachine:
    def test_starts_idle(self, make_session):
        session = make_session()
        assert session.state is SessionState.IDLE
        assert session.pending is None
        assert session.spans == []

    def test_select_opens_picker(self, make_session):
        session = make_session()
        pending = session.select_text(TEAMS)
        assert session.state is SessionState.SELECTION_PENDING
        assert pending.text == "Teams"
        assert pending.selected_codes == []
        assert pending.suggestions == []

    def test_confirm_creates_span(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        span = session.confirm_codes(["code_2", "code_3"])
        assert session.state is SessionState.IDLE
        assert span.id == "span-1"
        assert span.text == "Teams"
        assert span.codes == ("code_2", "code_3")
        assert (span.start, span.end) == (25, 30)
        assert session.spans == [span]

    def test_confirm_uses_toggled_codes(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        session.toggle_code("code_2")
        session.toggle_code("code_1")
        assert session.toggle_code("code_2") == ["code_1"]
        span = session.confirm_codes()
        assert span.codes == ("code_1",)

    def test_toggle_unknown_code(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        with pytest.raises(InvalidSpanError):
            session.toggle_code("code_99")

    def test_cancel_discards_selection(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        session.cancel()
        assert session.state is SessionState.IDLE
        assert session.spans == []

    def test_cancel_when_idle_is_noop(self, make_session):
        session = make_session()
        session.cancel()
        assert session.state is SessionState.IDLE

    def test_new_selection_replaces_pending(self, make_session):
        session = make_session()
        first = session.select_text(TEAMS)
        session.toggle_code("code_1")
        second = session.select_text(IDEAS)
        assert session.pending is second
        assert second.generation > first.generation
        assert second.selected_codes == []
        assert session.confirm_codes(["code_3"]).text == "new ideas"

    def test_operations_need_pending_selection(self, make_session):
        session = make_session()
        with pytest.raises(NoPendingSelectionError):
            session.confirm_codes(["code_1"])
        with pytest.raises(NoPendingSelectionError):
            session.toggle_code("code_1")
        with pytest.raises(NoPendingSelectionError):
            session.request_suggestions()

    def test_context_window(self, make_session, document):
        session = make_session(context_window=5)
        pending = session.select_text(TEAMS)
        assert pending.context == document[20:35]
        assert session.context_for(TextRange(0, 3)) == document[0:8]


class TestValidationKeepsSelection:
    def test_no_codes(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        with pytest.raises(InvalidSpanError, match="at least one code"):
            session.confirm_codes()
        assert session.state is SessionState.SELECTION_PENDING
        assert session.spans == []

    def test_unknown_code(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        with pytest.raises(InvalidSpanError, match="Unknown"):
            session.confirm_codes(["code_1", "code_99"])
        assert session.state is SessionState.SELECTION_PENDING

    def test_duplicate_codes(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        with pytest.raises(InvalidSpanError):
            session.confirm_codes(["code_1", "code_1"])
        assert session.state is SessionState.SELECTION_PENDING

    def test_out_of_range_selection(self, make_session, document):
        session = make_session()
        session.select_text(TextRange(80, len(document) + 5))
        with pytest.raises(InvalidSpanError):
            session.confirm_codes(["code_1"])
        assert session.state is SessionState.SELECTION_PENDING

    def test_retry_after_fix(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        with pytest.raises(InvalidSpanError):
            session.confirm_codes([])
        assert session.confirm_codes(["code_2"]).codes == ("code_2",)


class TestSpanIds:
    def test_colliding_ids_suffixed(self, make_session):
        session = make_session(id_factory=lambda: "1700000000000")
        for text_range in (TEAMS, IDEAS, TEAMS):
            session.select_text(text_range)
            session.confirm_codes(["code_1"])
        assert [s.id for s in session.spans] == [
            "1700000000000",
            "1700000000000-1",
            "1700000000000-2",
        ]

    def test_default_ids_are_timestamps(self, codebook, document, executor):
        session = CodingSession(document, codebook, executor=executor)
        session.select_text(TEAMS)
        assert session.confirm_codes(["code_1"]).id.isdigit()

    def test_remove_span(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        span = session.confirm_codes(["code_1"])
        assert session.remove_span(span.id) is True
        assert session.remove_span(span.id) is False
        assert session.spans == []


# -----------------------------------------------------------------------
# Suggestions
# -----------------------------------------------------------------------


SUGGESTION_PAYLOAD = {
    "suggestions": [
        {"codeName": "Collaboration", "explanation": "teams", "confidence": 6},
        {"codeName": "Leadership", "explanation": "maybe", "confidence": 9},
    ]
}


class TestSuggestions:
    def test_delivered_to_pending_selection(self, make_session, executor, stub_suggester):
        suggester = stub_suggester(SUGGESTION_PAYLOAD)
        session = make_session(suggester=suggester)
        pending = session.select_text(TEAMS)
        future = session.request_suggestions()
        assert pending.suggestions_loading is True
        assert pending.suggestions == []

        executor.run_all()
        assert future.done()
        assert pending.suggestions_loading is False
        assert [s.code_id for s in pending.suggestions] == ["code_1", "code_2"]
        description, text, context = suggester.calls[0]
        assert text == "Teams"
        assert "- Collaboration: Teamwork and cooperation" in description
        assert "Teams" in context

    def test_suggestions_never_create_spans(self, make_session, executor, stub_suggester):
        session = make_session(suggester=stub_suggester(SUGGESTION_PAYLOAD))
        session.select_text(TEAMS)
        session.request_suggestions()
        executor.run_all()
        assert session.spans == []
        assert session.state is SessionState.SELECTION_PENDING

    def test_accept_suggestion(self, make_session, executor, stub_suggester):
        session = make_session(suggester=stub_suggester(SUGGESTION_PAYLOAD))
        pending = session.select_text(TEAMS)
        session.request_suggestions()
        executor.run_all()
        session.accept_suggestion(pending.suggestions[1])
        assert session.accept_suggestion(pending.suggestions[1]) == ["code_2"]
        assert session.confirm_codes().codes == ("code_2",)

    def test_stale_after_cancel(self, make_session, executor, stub_suggester, caplog):
        session = make_session(suggester=stub_suggester(SUGGESTION_PAYLOAD))
        first = session.select_text(TEAMS)
        session.request_suggestions()
        session.cancel()
        with caplog.at_level(logging.DEBUG, logger="deductive_coder.session"):
            executor.run_all()
        assert first.suggestions == []
        assert session.pending is None
        assert "stale" in caplog.text

    def test_stale_after_reselect(self, make_session, executor, stub_suggester):
        session = make_session(suggester=stub_suggester(SUGGESTION_PAYLOAD))
        session.select_text(TEAMS)
        session.request_suggestions()
        second = session.select_text(IDEAS)
        executor.run_all()
        assert second.suggestions == []
        assert second.suggestions_loading is False

    def test_stale_after_confirm(self, make_session, executor, stub_suggester):
        session = make_session(suggester=stub_suggester(SUGGESTION_PAYLOAD))
        session.select_text(TEAMS)
        session.request_suggestions()
        session.confirm_codes(["code_2"])
        executor.run_all()
        assert session.state is SessionState.IDLE
        assert len(session.spans) == 1

    def test_same_range_reselected_is_still_stale(self, make_session, executor, stub_suggester):
        session = make_session(suggester=stub_suggester(SUGGESTION_PAYLOAD))
        session.select_text(TEAMS)
        session.request_suggestions()
        again = session.select_text(TEAMS)
        executor.run_all()
        assert again.suggestions == []

    def test_failure_means_no_suggestions(self, make_session, executor, stub_suggester):
        error = SuggestionError("API request failed: 500 - boom")
        session = make_session(suggester=stub_suggester(error=error))
        pending = session.select_text(TEAMS)
        session.request_suggestions()
        executor.run_all()
        assert pending.suggestions == []
        assert pending.suggestion_error == "API request failed: 500 - boom"
        assert session.state is SessionState.SELECTION_PENDING

    def test_unmatched_payload_is_failure(self, make_session, executor, stub_suggester):
        session = make_session(suggester=stub_suggester({"unexpected": True}))
        pending = session.select_text(TEAMS)
        session.request_suggestions()
        executor.run_all()
        assert pending.suggestions == []
        assert pending.suggestion_error

    def test_retry_clears_error(self, make_session, executor, stub_suggester):
        suggester = stub_suggester(SUGGESTION_PAYLOAD, error=SuggestionError("down"))
        session = make_session(suggester=suggester)
        pending = session.select_text(TEAMS)
        session.request_suggestions()
        executor.run_all()
        assert pending.suggestion_error == "down"

        suggester.error = None
        session.request_suggestions()
        assert pending.suggestion_error is None
        executor.run_all()
        assert len(pending.suggestions) == 2

    def test_late_older_request_dropped(self, make_session, executor, stub_suggester):
        suggester = stub_suggester()
        responses = [{"suggestions": []}, SUGGESTION_PAYLOAD]
        suggester.suggest = lambda *args: responses.pop(0)
        session = make_session(suggester=suggester)
        pending = session.select_text(TEAMS)
        older = session.request_suggestions()
        newer = session.request_suggestions()

        # newer job runs first and gets the empty payload
        executor.run_all(reverse=True)
        assert len(older.result()) == 2
        assert newer.result() == []
        assert pending.suggestions == []
        assert pending.suggestions_loading is False

    def test_late_older_failure_ignored(self, make_session, executor, stub_suggester):
        suggester = stub_suggester(SUGGESTION_PAYLOAD)
        calls = []

        def suggest(*args):
            calls.append(args)
            if len(calls) == 2:
                raise SuggestionError("timed out")
            return SUGGESTION_PAYLOAD

        suggester.suggest = suggest
        session = make_session(suggester=suggester)
        pending = session.select_text(TEAMS)
        session.request_suggestions()
        session.request_suggestions()
        executor.run_all(reverse=True)
        assert len(pending.suggestions) == 2
        assert pending.suggestion_error is None

    def test_not_configured(self, make_session):
        session = make_session()
        pending = session.select_text(TEAMS)
        assert session.request_suggestions() is None
        assert pending.suggestion_error == "Suggestions are not configured"
        assert pending.suggestions == []

    def test_real_executor(self, codebook, document, stub_suggester):
        with CodingSession(
            document, codebook, suggester=stub_suggester(SUGGESTION_PAYLOAD)
        ) as session:
            session.select_text(TEAMS)
            future = session.request_suggestions()
            suggestions = future.result(timeout=5)
        assert [s.code_name for s in suggestions] == ["Leadership", "Collaboration"]
        assert isinstance(suggestions[0], Suggestion)


# -----------------------------------------------------------------------
# Derived views
# -----------------------------------------------------------------------


class TestViews:
    def test_render_cached_until_change(self, make_session):
        session = make_session()
        first = session.render()
        assert session.render() is first
        session.select_text(TEAMS)
        assert session.render() is first
        session.confirm_codes(["code_2"])
        rendered = session.render()
        assert rendered is not first
        highlighted = [seg for seg in rendered[0].segments if seg.highlighted]
        assert [(seg.text, seg.color) for seg in highlighted] == [("Teams", "#10b981")]

    def test_stats_follow_index(self, make_session):
        session = make_session()
        assert session.summary().most_used is None
        session.select_text(TEAMS)
        span = session.confirm_codes(["code_2"])
        stats = {s.id: s for s in session.code_stats()}
        assert stats["code_2"].count == 1
        assert stats["code_2"].percentage == 100.0
        session.remove_span(span.id)
        assert all(s.count == 0 for s in session.code_stats())

    def test_summary(self, make_session):
        session = make_session()
        for text_range, codes in ((TEAMS, ["code_2"]), (IDEAS, ["code_3", "code_2"])):
            session.select_text(text_range)
            session.confirm_codes(codes)
        summary = session.summary()
        assert summary.total_segments == 2
        assert summary.codes_used == 2
        assert summary.most_used.name == "Collaboration"

    def test_results_shape(self, make_session):
        session = make_session()
        session.select_text(TEAMS)
        session.confirm_codes(["code_2"])
        session.index.add(CodedSpan("ghost", "Clear", ("code_9",), 60, 65))
        results = session.results()
        assert results[0] == {
            "text": "Teams",
            "codes": [
                {
                    "id": "code_2",
                    "name": "Collaboration",
                    "definition": "Teamwork and cooperation",
                    "color": "#10b981",
                }
            ],
            "position": {"start": 25, "end": 30},
        }
        assert results[1]["codes"][0] == {
            "id": "code_9",
            "name": "Unknown",
            "definition": "",
            "color": "#000000",
        }

    def test_select_from_mapper(self, make_session):
        session = make_session()
        # flat render has a single plain segment; "Teams" sits at 25..30
        provider = StaticProvider(Selection(SelectionPoint(0, 0, 25), SelectionPoint(0, 0, 31)))
        pending = session.select_from(OffsetMapper(provider))
        assert pending.range == TEAMS
        assert pending.text == "Teams"

    def test_select_from_without_selection(self, make_session):
        session = make_session()
        assert session.select_from(OffsetMapper(StaticProvider(None))) is None
        assert session.state is SessionState.IDLE


class TestParagraphSession:
    def test_render_blocks(self, make_session):
        session = make_session(paragraphs=True)
        assert session.paragraphs is True
        assert [(b.start, b.end) for b in session.render()] == [(0, 23), (25, 58), (60, 88)]

    def test_cross_paragraph_rejected(self, make_session):
        session = make_session(paragraphs=True)
        session.select_text(TextRange(16, 30))
        with pytest.raises(CrossParagraphSpanError):
            session.confirm_codes(["code_1"])
        assert session.state is SessionState.SELECTION_PENDING
        assert session.spans == []

    def test_flat_session_accepts_cross_paragraph(self, make_session):
        session = make_session()
        session.select_text(TextRange(16, 30))
        assert session.confirm_codes(["code_1"]).text == "vision.\n\nTeams"

    def test_select_in_second_paragraph(self, make_session):
        session = make_session(paragraphs=True)
        provider = StaticProvider(Selection(SelectionPoint(1, 0, 0), SelectionPoint(1, 0, 5)))
        pending = session.select_from(OffsetMapper(provider))
        assert pending.range == TEAMS
        session.confirm_codes(["code_2"])
        block = session.render()[1]
        assert [seg.text for seg in block.segments if seg.highlighted] == ["Teams"]
