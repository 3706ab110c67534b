import pytest
import requests

from powerband import data_providers
from powerband.data_providers import (
    CoinGeckoProvider,
    PriceDbProvider,
    ProviderError,
    fetch_daily_closes,
    iso_date,
    parse_date_utc,
    pick_daily_close,
)

DAY_MS = 86_400_000
JAN1_MS = 1_577_836_800_000


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.headers = headers or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._payload


class _FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(data_providers.time, "sleep", sleeps.append)
    return sleeps


def _write_table(path):
    path.write_text(
        "date,close_eur,close_usd\n"
        "2020-01-01,6400,7200\n"
        "2020-01-02,6500,7300\n"
        "2020-01-03,6600,\n"
        "2020-01-04,6700,7500\n"
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_parse_date_utc():
    assert parse_date_utc("2020-01-01") == 1_577_836_800
    assert parse_date_utc("2020-01-01T06:00:00Z") == 1_577_836_800 + 6 * 3600
    with pytest.raises(ValueError):
        parse_date_utc("01/02/2020")


def test_iso_date():
    assert iso_date(JAN1_MS) == "2020-01-01"
    assert iso_date(JAN1_MS + DAY_MS - 1) == "2020-01-01"
    assert iso_date(JAN1_MS + DAY_MS) == "2020-01-02"


def test_pick_daily_close_takes_last_point_of_each_day():
    points = [
        (JAN1_MS + DAY_MS + 3_600_000, 20.0),
        (JAN1_MS + 23 * 3_600_000, 11.0),
        (JAN1_MS, 10.0),
        (JAN1_MS + DAY_MS, 19.0),
    ]
    assert pick_daily_close(points) == {"2020-01-01": 11.0, "2020-01-02": 20.0}
    assert pick_daily_close([]) == {}


# ---------------------------------------------------------------------------
# CoinGecko
# ---------------------------------------------------------------------------


def test_coingecko_request_and_parse(no_sleep):
    session = _FakeSession([_FakeResponse(payload={"prices": [[JAN1_MS, 7200.5], [JAN1_MS + DAY_MS, 7300]]})])
    provider = CoinGeckoProvider(session=session)

    points = provider.fetch("usd", "2020-01-01", "2020-01-05")

    assert points == [(JAN1_MS, 7200.5), (JAN1_MS + DAY_MS, 7300.0)]
    url, params = session.calls[0]
    assert url == "https://api.coingecko.com/api/v3/coins/bitcoin/market_chart/range"
    assert params == {"vs_currency": "usd", "from": 1_577_836_800, "to": 1_577_836_800 + 4 * 86_400}
    assert no_sleep == []


def test_coingecko_backs_off_on_rate_limit(no_sleep):
    session = _FakeSession(
        [
            _FakeResponse(status_code=429, headers={"Retry-After": "3"}),
            _FakeResponse(payload={"prices": [[JAN1_MS, 1.0]]}),
        ]
    )
    points = CoinGeckoProvider(session=session).fetch("eur", "2020-01-01", "2020-01-02")

    assert points == [(JAN1_MS, 1.0)]
    assert len(session.calls) == 2
    assert no_sleep == [3.0]


def test_coingecko_gives_up_with_provider_error(no_sleep):
    session = _FakeSession([_FakeResponse(status_code=500)])
    with pytest.raises(ProviderError):
        CoinGeckoProvider(session=session, max_retries=3).fetch("eur", "2020-01-01", "2020-01-02")
    assert len(session.calls) == 3

    limited = _FakeSession([_FakeResponse(status_code=429)])
    with pytest.raises(ProviderError):
        CoinGeckoProvider(session=limited, max_retries=2).fetch("eur", "2020-01-01", "2020-01-02")


# ---------------------------------------------------------------------------
# Offline price table
# ---------------------------------------------------------------------------


def test_price_db_provider_filters_range(tmp_path):
    path = tmp_path / "prices.csv"
    _write_table(path)
    provider = PriceDbProvider(path)

    assert provider.fetch("eur", "2020-01-02", "2020-01-03") == [(JAN1_MS + DAY_MS, 6500.0), (JAN1_MS + 2 * DAY_MS, 6600.0)]
    # empty cells are skipped
    assert [ts for ts, _ in provider.fetch("usd", "2020-01-01")] == [JAN1_MS, JAN1_MS + DAY_MS, JAN1_MS + 3 * DAY_MS]


def test_price_db_provider_errors(tmp_path):
    with pytest.raises(ProviderError):
        PriceDbProvider(tmp_path / "absent.csv").fetch("eur", "2020-01-01")
    path = tmp_path / "prices.csv"
    _write_table(path)
    with pytest.raises(ProviderError):
        PriceDbProvider(path).fetch("gbp", "2020-01-01")


def test_fetch_daily_closes(tmp_path):
    path = tmp_path / "prices.csv"
    _write_table(path)

    daily = fetch_daily_closes(PriceDbProvider(path), ["eur", "usd"], "2020-01-03")

    assert daily == {
        "eur": {"2020-01-03": 6600.0, "2020-01-04": 6700.0},
        "usd": {"2020-01-04": 7500.0},
    }


def test_coingecko_non_object_payload_is_provider_error(no_sleep):
    session = _FakeSession([_FakeResponse(payload=["not", "an", "object"])])
    with pytest.raises(ProviderError):
        CoinGeckoProvider(session=session, max_retries=2).fetch("usd", "2020-01-01", "2020-01-02")
    assert len(session.calls) == 2
