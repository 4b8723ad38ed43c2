import random
import ssl
import urllib.error

import pytest

from wherelocate.client import HttpExchange, WpsClient, WpsError
from wherelocate.types import Config, WifiInput
from wherelocate.wire import ApLocation

MAC_A = "aa:bb:cc:dd:ee:ff"
MAC_B = "11:22:33:44:55:66"
MAC_C = "02:00:00:00:00:01"


class FakeExchange:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, bssids, max_additional):
        self.calls.append((list(bssids), max_additional))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def varint(n):
    n &= (1 << 64) - 1
    out = bytearray()
    while True:
        low = n & 0x7F
        n >>= 7
        if n:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def field_bytes(number, data):
    return varint((number << 3) | 2) + varint(len(data)) + data


def field_varint(number, value):
    return varint(number << 3) + varint(value)


class FakeResponse:
    def __init__(self, status, data):
        self.status = status
        self._data = data

    def read(self):
        return self._data

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeUrlopen:
    def __init__(self, status=200, data=b"\x00" * 10, error=None):
        self.status = status
        self.data = data
        self.error = error
        self.requests = []
        self.kwargs = []

    def __call__(self, request, **kwargs):
        self.requests.append(request)
        self.kwargs.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status, self.data)


def located(lat, lon=0, acc=20):
    return ApLocation(latitude=lat, longitude=lon, accuracy=acc)


def test_missing_bssids_are_reported_without_location():
    exchange = FakeExchange([(MAC_A, located(4712345678, 812345678, 25))])
    client = WpsClient(Config(), exchange)
    results = {r.bssid: r for r in client.fetch_nearby_ap_positioning_data([MAC_A, MAC_B])}
    assert set(results) == {MAC_A, MAC_B}
    assert results[MAC_A].positioning_data.latitude == pytest.approx(47.12345678)
    assert results[MAC_A].positioning_data.accuracy == 25
    assert results[MAC_B].positioning_data is None


def test_request_is_truncated_to_max_networks():
    config = Config()
    config.request.max_request_networks = 2
    exchange = FakeExchange([])
    client = WpsClient(config, exchange)
    results = client.fetch_nearby_ap_positioning_data([MAC_A, MAC_B, MAC_C])
    assert exchange.calls[0][0] == [MAC_A, MAC_B]
    assert sorted(r.bssid for r in results) == sorted([MAC_A, MAC_B])


def test_throttle_reduces_additional_results_until_cooldown_passes():
    config = Config()
    many = [(f"02:00:00:00:00:{i:02x}", None) for i in range(config.throttle.trigger_result_count)]
    exchange = FakeExchange(many, [], [])
    clock = FakeClock()
    client = WpsClient(config, exchange, clock=clock)

    client.fetch_nearby_ap_positioning_data([MAC_A])
    client.fetch_nearby_ap_positioning_data([MAC_A])
    clock.now += config.throttle.cooldown + 1
    client.fetch_nearby_ap_positioning_data([MAC_A])

    assert [call[1] for call in exchange.calls] == [
        config.throttle.max_additional_results,
        config.throttle.throttled_additional_results,
        config.throttle.max_additional_results,
    ]


def test_small_response_does_not_throttle():
    config = Config()
    exchange = FakeExchange([(MAC_A, None)], [])
    client = WpsClient(config, exchange, clock=FakeClock())
    client.fetch_nearby_ap_positioning_data([MAC_A])
    client.fetch_nearby_ap_positioning_data([MAC_A])
    assert exchange.calls[1][1] == config.throttle.max_additional_results


def test_response_bssids_are_normalized_and_invalid_ones_skipped():
    exchange = FakeExchange([("a:b:c:d:e:f", located(100)), ("not-a-mac", located(200))])
    client = WpsClient(Config(), exchange)
    results = client.fetch_nearby_ap_positioning_data([])
    assert [r.bssid for r in results] == ["0a:0b:0c:0d:0e:0f"]


def test_first_occurrence_of_duplicate_wins():
    exchange = FakeExchange([(MAC_A, located(100)), (MAC_A.upper(), located(900))])
    client = WpsClient(Config(), exchange)
    results = client.fetch_nearby_ap_positioning_data([MAC_A])
    assert len(results) == 1
    assert results[0].positioning_data.latitude == pytest.approx(100 * 0.00000001)


def test_exchange_error_is_wrapped():
    exchange = FakeExchange(WpsError("boom"))
    client = WpsClient(Config(), exchange)
    with pytest.raises(WpsError, match="failed to fetch positioning data: boom"):
        client.fetch_nearby_ap_positioning_data([MAC_A])


def test_all_weak_signals_raise():
    exchange = FakeExchange()
    client = WpsClient(Config(), exchange)
    with pytest.raises(WpsError, match="no WiFi access points remaining"):
        client.fetch_positioning_data_with_rssi([WifiInput(MAC_A, -95)])
    assert exchange.calls == []


def test_weak_signals_are_not_requested_and_rssi_is_merged():
    exchange = FakeExchange([(MAC_A, located(100)), (MAC_B, located(200))])
    client = WpsClient(Config(), exchange, rng=random.Random(3))
    data, result = client.fetch_positioning_data_with_rssi(
        [WifiInput(MAC_A, -50), WifiInput(MAC_B, None), WifiInput(MAC_C, -95)]
    )
    assert exchange.calls[0][0] == [MAC_A, MAC_B]
    rssi = {ap.bssid: ap.rssi for ap in data}
    assert rssi == {MAC_A: -50, MAC_B: None}
    assert 0.0 <= result.confidence_score <= 1.0
    assert result.used_access_points <= 2


def test_single_located_ap_triangulates_to_its_position():
    exchange = FakeExchange([(MAC_A, located(4700000000, 800000000, 20))])
    client = WpsClient(Config(), exchange, rng=random.Random(0))
    data, result = client.fetch_positioning_data_with_rssi([WifiInput(MAC_A, -60)])
    assert result.used_access_points == 1
    assert result.confidence_score == pytest.approx(0.3)
    assert result.position.lat == pytest.approx(data[0].positioning_data.latitude)
    assert result.position.lon == pytest.approx(data[0].positioning_data.longitude)


def test_no_located_aps_gives_no_triangulation():
    exchange = FakeExchange([])
    client = WpsClient(Config(), exchange)
    data, result = client.fetch_positioning_data_with_rssi([WifiInput(MAC_A, -60)])
    assert result is None
    assert [(ap.bssid, ap.rssi, ap.positioning_data) for ap in data] == [(MAC_A, -60, None)]


def test_http_exchange_sends_framed_request_and_decodes():
    location = field_varint(1, 4700000000) + field_varint(2, 800000000) + field_varint(3, 15)
    ap = field_bytes(1, MAC_A.encode()) + field_bytes(2, location)
    opener = FakeUrlopen(data=b"\x00" * 10 + field_bytes(2, ap))
    config = Config()
    exchange = HttpExchange(config, urlopen=opener)

    result = exchange([MAC_A], 8)

    assert result == [(MAC_A, ApLocation(latitude=4700000000, longitude=800000000, accuracy=15))]
    request = opener.requests[0]
    assert request.full_url == config.server.url
    assert request.get_method() == "POST"
    assert request.get_header("User-agent") == config.request.user_agent
    assert request.get_header("Content-type") == "application/x-www-form-urlencoded"
    assert request.get_header("Accept") == "*/*"
    assert request.data.startswith(b"\x00\x01\x00\x08en-US_US")
    assert MAC_A.encode() in request.data
    assert config.request.software_build.encode() in request.data
    assert opener.kwargs[0]["timeout"] == pytest.approx(
        (config.server.connect_timeout + config.server.read_timeout) / 1000
    )
    assert opener.kwargs[0]["context"].minimum_version == ssl.TLSVersion.TLSv1_2


def test_http_exchange_modern_tls():
    config = Config()
    config.server.enforce_modern_tls = True
    opener = FakeUrlopen()
    HttpExchange(config, urlopen=opener)([MAC_A], 8)
    assert opener.kwargs[0]["context"].minimum_version == ssl.TLSVersion.TLSv1_3


def test_http_exchange_http_error():
    error = urllib.error.HTTPError("https://example.com", 503, "unavailable", None, None)
    exchange = HttpExchange(Config(), urlopen=FakeUrlopen(error=error))
    with pytest.raises(WpsError, match="non-200 response code: 503"):
        exchange([MAC_A], 8)


def test_http_exchange_non_ok_status():
    exchange = HttpExchange(Config(), urlopen=FakeUrlopen(status=204))
    with pytest.raises(WpsError, match="non-200 response code: 204"):
        exchange([MAC_A], 8)


def test_http_exchange_connection_error():
    exchange = HttpExchange(Config(), urlopen=FakeUrlopen(error=urllib.error.URLError("refused")))
    with pytest.raises(WpsError, match="failed to send request"):
        exchange([MAC_A], 8)


def test_http_exchange_short_response():
    exchange = HttpExchange(Config(), urlopen=FakeUrlopen(data=b"\x00\x01"))
    with pytest.raises(WpsError, match="response too short: 2 bytes"):
        exchange([MAC_A], 8)


def test_client_wraps_http_failure():
    config = Config()
    client = WpsClient(config, HttpExchange(config, urlopen=FakeUrlopen(status=500)))
    with pytest.raises(WpsError, match="failed to fetch positioning data: non-200 response code: 500"):
        client.fetch_nearby_ap_positioning_data([MAC_A])