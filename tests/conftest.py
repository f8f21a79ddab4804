import pathlib

import httpx
import pytest

from trendwatch.config import Settings
from trendwatch.store.files import OutputStore
from trendwatch.utils.http import FetchClient

FIXTURES = pathlib.Path(__file__).parent / "fixtures" / "http"


def load_fixture(path: str) -> str:
    return (FIXTURES / path).read_text()


@pytest.fixture()
def fixture_text():
    return load_fixture


@pytest.fixture()
def store(tmp_path):
    return OutputStore(tmp_path / "data")


@pytest.fixture()
def env(tmp_path):
    sources = tmp_path / "sources.yml"
    sources.write_text("[]\n")
    return {
        "TRENDWATCH_DATA_DIR": str(tmp_path / "data"),
        "TRENDWATCH_SOURCES": str(sources),
        "CRAWL_DELAY_MS": "0",
        "FETCH_BACKOFF_MS": "0",
        "FETCH_RETRIES": "1",
    }


@pytest.fixture()
def settings(env):
    return Settings.from_env(env)


@pytest.fixture()
def make_client():
    def _make(**kwargs) -> FetchClient:
        kwargs.setdefault("backoff", 0)
        kwargs.setdefault("retries", 1)
        return FetchClient(session=httpx.AsyncClient(), **kwargs)

    return _make
