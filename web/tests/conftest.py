"""Shared test fixtures for the web test suite."""

import threading

import pytest

from ingest.models import RunReport, RunState, RunStats


class BlockingPipeline:
    """Pipeline stand-in that runs until released."""

    def __init__(self, options):
        self.options = options
        self.release = threading.Event()
        self.started = threading.Event()

    def run(self):
        self.started.set()
        self.release.wait(5)
        return RunReport(stats=RunStats(), state=RunState.COMPLETED)


class PipelineFactory:
    """Records the options of every pipeline it builds."""

    def __init__(self):
        self.built = []

    def __call__(self, options):
        pipeline = BlockingPipeline(options)
        self.built.append(pipeline)
        return pipeline

    def release_all(self):
        for pipeline in self.built:
            pipeline.release.set()


@pytest.fixture
def factory():
    factory = PipelineFactory()
    yield factory
    factory.release_all()


@pytest.fixture
def import_runner(monkeypatch, factory):
    from web import api

    runner = api.ImportRunner(factory)
    monkeypatch.setattr(api, "runner", runner)
    yield runner
    factory.release_all()
    runner.join(5)


@pytest.fixture
def client(monkeypatch, import_runner):
    """Create Flask test client with auth disabled."""
    monkeypatch.delenv("ADMIN_USER", raising=False)
    monkeypatch.delenv("ADMIN_PASS", raising=False)

    from web.app import app
    app.config["TESTING"] = True

    with app.test_client() as test_client:
        yield test_client
