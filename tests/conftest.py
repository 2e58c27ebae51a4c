"""Shared test fixtures for deductive-coder."""

import itertools
from concurrent.futures import Executor, Future

import pytest

from deductive_coder.models import CodedSpan, CodeDefinition
from deductive_coder.session import CodingSession

DOCUMENT = (
    "Leaders set the vision.\n\n"
    "Teams work together on new ideas.\n\n"
    "Clear communication matters."
)


def build_span(span_id, start, end, *codes, document=DOCUMENT):
    return CodedSpan(
        id=span_id,
        text=document[start:end],
        codes=tuple(codes),
        start=start,
        end=end,
    )


class ManualExecutor(Executor):
    """Executor that runs submitted jobs only when told to."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run_all(self, reverse=False):
        jobs, self.jobs = self.jobs, []
        if reverse:
            jobs.reverse()
        for future, fn, args, kwargs in jobs:
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)


class StubSuggester:
    """Suggestion service returning a canned payload (or raising)."""

    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else {"suggestions": []}
        self.error = error
        self.calls = []

    def suggest(self, codebook_description, selected_text, context):
        self.calls.append((codebook_description, selected_text, context))
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture
def document():
    return DOCUMENT


@pytest.fixture
def codebook():
    return [
        CodeDefinition("code_1", "Leadership", "References to leading people", "#3b82f6"),
        CodeDefinition("code_2", "Collaboration", "Teamwork and cooperation", "#10b981"),
        CodeDefinition("code_3", "Innovation", "New ideas and creative solutions", "#f59e0b"),
    ]


@pytest.fixture
def make_span():
    """Factory for spans over the shared document."""
    return build_span


@pytest.fixture
def stub_suggester():
    return StubSuggester


@pytest.fixture
def executor():
    return ManualExecutor()


@pytest.fixture
def make_session(codebook, executor):
    """Factory for sessions with deterministic span ids and a manual executor."""

    def factory(document=DOCUMENT, **kwargs):
        counter = itertools.count(1)
        kwargs.setdefault("executor", executor)
        kwargs.setdefault("id_factory", lambda: f"span-{next(counter)}")
        return CodingSession(document, codebook, **kwargs)

    return factory
