import pathlib

import pytest

from trendwatch.config import PACKAGED_SOURCES, ConfigError, Settings
from trendwatch.ingest import load_sources
from trendwatch.ingest.models import NEWS, STOREFRONT, TREND


def test_defaults(env):
    settings = Settings.from_env({"TRENDWATCH_DATA_DIR": env["TRENDWATCH_DATA_DIR"]})
    assert settings.crawl.max_pages == 200
    assert settings.crawl.depth == 3
    assert settings.crawl.delay_seconds == pytest.approx(0.6)
    assert settings.crawl.concurrency == 2
    assert not settings.crawl.respect_robots
    assert settings.weights.trend == 0.6
    assert settings.top_n == 10
    assert settings.superset_n == 200
    assert settings.sources_path == PACKAGED_SOURCES
    assert settings.seeds == ()


def test_overrides(env):
    env.update(
        {
            "MAX_PAGES": "5",
            "CRAWL_DEPTH": "0",
            "RESPECT_ROBOTS": "yes",
            "ONLY_PLATFORM_HOSTS": "true",
            "SEEDS": "https://a.test, b.test",
            "TREND_KEYWORDS": "air fryer, yoga mat",
            "WEIGHT_TREND": "0.5",
            "WEIGHT_SALES": "0.25",
            "WEIGHT_REVENUE": "0.25",
        }
    )
    settings = Settings.from_env(env)
    assert settings.crawl.max_pages == 5
    assert settings.crawl.depth == 0
    assert settings.crawl.respect_robots
    assert settings.crawl.only_platform_hosts
    assert settings.seeds == ("https://a.test", "b.test")
    assert settings.keywords == ("air fryer", "yoga mat")
    assert settings.weights.sales == 0.25
    assert settings.fetch_backoff == 0


def test_seeds_from_file(env, tmp_path):
    seeds = tmp_path / "seeds.txt"
    seeds.write_text("https://one.test\n\nhttps://two.test\n")
    env["SEEDS"] = str(seeds)
    assert Settings.from_env(env).seeds == ("https://one.test", "https://two.test")


@pytest.mark.parametrize(
    "key, value",
    [
        ("WEIGHT_TREND", "0.9"),
        ("WEIGHT_SALES", "-0.3"),
        ("MAX_PAGES", "lots"),
        ("MAX_PAGES", "0"),
        ("RESPECT_ROBOTS", "maybe"),
        ("KEEP_SNAPSHOTS", "1"),
        ("SUPERSET_N", "3"),
    ],
)
def test_invalid_values_fail_fast(env, key, value):
    env[key] = value
    with pytest.raises(ConfigError):
        Settings.from_env(env)


def _write_sources(tmp_path: pathlib.Path, body: str) -> pathlib.Path:
    path = tmp_path / "sources.yml"
    path.write_text(body)
    return path


def test_load_sources_resolves_credentials(tmp_path):
    path = _write_sources(
        tmp_path,
        """
- id: hexco
  url: https://hexco.test
  token_env: HEXCO_TOKEN
- id: lumi
  kind: storefront
  url: lumi.test
- id: serp
  kind: trend
  url: https://serpapi.com/search.json
- id: news
  kind: news
  url: https://newsapi.org/v2/everything
""",
    )
    environ = {"HEXCO_TOKEN": "shpat_1", "SERP_API_KEY": "serp", "NEWS_API_KEY": "news"}
    sources = load_sources(path, environ=environ)
    assert [s.kind for s in sources] == [STOREFRONT, STOREFRONT, TREND, NEWS]
    assert sources[0].token == "shpat_1"
    assert sources[1].token is None
    assert sources[1].base_url == "https://lumi.test"
    assert sources[1].host == "lumi.test"
    assert sources[2].token == "serp"


def test_load_sources_accepts_mapping_form(tmp_path):
    path = _write_sources(tmp_path, "sources:\n  - id: a\n    url: https://www.a.test/\n")
    [source] = load_sources(path, environ={})
    assert source.host == "a.test"


@pytest.mark.parametrize(
    "body",
    [
        "- id: serp\n  kind: trend\n  url: https://serpapi.com/search.json\n",
        "- id: x\n  kind: carrier-pigeon\n  url: https://x.test\n",
        "- id: x\n  url: https://x.test\n- id: x\n  url: https://y.test\n",
        "- url: https://x.test\n",
        "just a string\n",
        "- [unclosed\n",
    ],
)
def test_load_sources_rejects_bad_config(tmp_path, body):
    with pytest.raises(ConfigError):
        load_sources(_write_sources(tmp_path, body), environ={})


def test_packaged_sources_load():
    assert load_sources(PACKAGED_SOURCES, environ={}) == []
