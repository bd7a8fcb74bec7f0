"""Pytest fixtures shared across the test suite."""

import os
import tempfile

os.environ.setdefault('LOG_DIR', tempfile.mkdtemp(prefix='games-logs-'))
os.environ.setdefault('UPLOAD_DIR', tempfile.mkdtemp(prefix='games-uploads-'))
os.environ.pop('TWITCH_CLIENT_ID', None)
os.environ.pop('TWITCH_CLIENT_SECRET', None)

import pytest

from ingestion.deadline import Deadline
from sources.http import HttpFetcher
from tests.app_helpers import FakeOpener, make_services


@pytest.fixture
def opener():
    return FakeOpener()


@pytest.fixture
def fetcher(opener):
    return HttpFetcher(opener=opener)


@pytest.fixture
def deadline():
    return Deadline(10.0)


@pytest.fixture
def services(tmp_path, opener):
    built = make_services(tmp_path, opener)
    yield built
    built.store._db.dispose()
