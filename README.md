# wherelocate

Estimate where you are from the WiFi access points around you.

`wherelocate` asks a wireless positioning service for the known
positions of WiFi access points, identified by their BSSIDs (MAC
addresses). When signal strengths (RSSI, in dBm) are known, it turns them
into distance estimates and runs an expectation-maximisation
multilateration to give one estimated position with an accuracy radius
and a confidence score.

## Modules

- `wherelocate.types` – the data model: `PositioningData`,
  `WifiApPositioningData`, `WifiInput` (each with `to_dict()`), and the
  configuration classes `ServerConfig`, `ThrottleConfig`,
  `RequestConfig` and `Config`. `Config.from_mapping()` builds a
  configuration from nested sections, and `default_config()` returns
  the built-in defaults.
- `wherelocate.wire` – input parsing and the binary message format:
  `parse_wifi_inputs`, `normalize_bssid`, `is_valid_bssid`,
  `convert_positioning_data`, `encode_request_body`,
  `decode_response_body`, and the `ApLocation` record.
- `wherelocate.client` – `WpsClient`, which queries the service,
  applies throttling and merges RSSI values into the results, and
  `HttpExchange`, which sends one request over HTTPS. Failures are
  raised as `WpsError`.
- `wherelocate.triangulation` – `estimate_distance_from_rssi`,
  `haversine_distance`, `convert_to_measurements`,
  `em_multilateration` and `triangulate_position`, returning a
  `TriangulationResult`; `TriangulationError` when nothing can be
  estimated.
- `wherelocate.config` – `load_config`, which layers a YAML file,
  environment variables and explicit overrides on top of the defaults.
- `wherelocate.output` – renderers returning text: tables, JSON and the
  `args` form of scanned BSSIDs.

## Giving access points

Each access point is a BSSID, optionally followed by its RSSI:

```python
from wherelocate.wire import parse_wifi_inputs

inputs = parse_wifi_inputs([
    "aa:bb:cc:dd:ee:ff:-45",
    "aa:bb:cc:dd:ee:01:-60",
    "aa:bb:cc:dd:ee:02",
])
```

BSSIDs must have six two-digit hex octets and are normalised to lower
case. RSSI values must lie between -100 and -10 dBm. Anything else
raises `WifiInputError`.

## Configuration

```python
from wherelocate.config import load_config

config = load_config("config.yaml", {}, {"request.min_rssi": -80})
```

Later sources win: defaults, then the YAML file, then environment
variables, then overrides. Without a path, `config.yaml` or
`config.yml` is looked for in `$XDG_CONFIG_HOME/where-am-i` (or
`~/.config/where-am-i`) and then in the current directory; a file that
cannot be read or parsed counts as empty.

Keys use dotted names such as `server.url`, `server.connect_timeout`,
`throttle.cooldown`, `request.max_request_networks` and
`request.min_rssi`. Environment variables take the same names in upper
case, prefixed `WHERE_AM_I_`, with dots replaced by underscores, for
example `WHERE_AM_I_REQUEST_MIN_RSSI`. An unknown override key raises
`ValueError`. `throttle.cooldown` takes seconds or a duration string
such as `10s` or `1m30s`.

By default at most 40 networks are sent per request, access points
weaker than -90 dBm are dropped when RSSI is known, and the connection
and read timeouts are 10000 ms each.

## Looking up and triangulating

A `WpsClient` built from a `Config` offers two lookups:

- `fetch_nearby_ap_positioning_data(bssids)` returns one
  `WifiApPositioningData` per access point, including extra nearby
  ones the service adds, with `positioning_data` set to `None` for
  those it does not know.
- `fetch_positioning_data_with_rssi(wifi_inputs)` drops weak signals,
  performs the lookup, attaches RSSI values and returns the results
  together with a `TriangulationResult`, or `None` when triangulation
  is not possible.

When the service returns many access points, the client asks for fewer
additional ones until the throttle cooldown has passed. The client
takes an optional `exchange` callable in place of `HttpExchange`, and
`clock` and `rng` keyword arguments.

Triangulation can also be run on results you already have:

```python
import random
from wherelocate.triangulation import triangulate_position

estimate = triangulate_position(results, random.Random(1))
print(estimate.google_maps_link())
```

The algorithm picks measurements at random, so pass a seeded
`random.Random` for repeatable output.

## Rendering

```python
from wherelocate.output import render_triangulation

print(render_triangulation(results, estimate, "table", True))
```

`render_results`, `render_triangulation` and `render_simple_location`
accept `json` or `yaml` (both produce JSON); any other format gives a
table. `render_simple_location` gives the plain centroid of the located
access points and raises `OutputError` when none has a location.
`render_scan_results` accepts `json`, `args` (BSSIDs ready to pass to
`parse_wifi_inputs`) or a table.

## What the package does not do

- It has no command-line program; everything is used from Python.
- It does not scan for WiFi networks. BSSIDs and RSSI values must be
  supplied by the caller.