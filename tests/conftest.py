"""Shared fixtures for the SoundScout test suite.

Provides a Flask test client wired to a temporary SQLite database, plus
small builders for synthetic features and feature indexes.
"""

import atexit
import os
import tempfile

import pytest

# Point the DB at a temp file BEFORE importing app/models (they read DB_PATH at import time)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["SOUNDSCOUT_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.pop("SENTRY_DSN", None)

from app import app, limiter  # noqa: E402
from facility_aggregator import index_features  # noqa: E402
from geometry import parse_elements  # noqa: E402
from models import init_db, _get_db  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_db():
    """Reset the analyses table before every test."""
    init_db()
    conn = _get_db()
    conn.execute("DELETE FROM analyses")
    conn.commit()
    conn.close()
    yield


@pytest.fixture()
def client():
    """Flask test client with rate limiting disabled."""
    app.config["TESTING"] = True
    limiter.enabled = False
    with app.test_client() as c:
        yield c
    limiter.enabled = True


# Downtown Vancouver, near Granville & Georgia.
CENTER_LAT = 49.2827
CENTER_LON = -123.1207


def node(node_id, lat, lon, **tags):
    """Overpass-style node element."""
    element = {"type": "node", "id": node_id, "lat": lat, "lon": lon}
    if tags:
        element["tags"] = tags
    return element


def way(way_id, nodes=(), center=None, **tags):
    element = {"type": "way", "id": way_id, "nodes": list(nodes)}
    if center is not None:
        element["center"] = {"lat": center[0], "lon": center[1]}
    if tags:
        element["tags"] = tags
    return element


def build_index(elements):
    return index_features(parse_elements(elements))


@pytest.fixture()
def downtown_index():
    """A small index around CENTER with one facility per common category."""
    return build_index([
        node(1, 49.2830, -123.1207, amenity="hospital", name="St. Paul's"),
        node(2, 49.2840, -123.1207, amenity="fire_station", name="Hall 2"),
        node(3, 49.2827, -123.1190, amenity="school", name="Lord Roberts"),
        node(4, 49.2900, -123.1207, amenity="police", name="VPD HQ"),
        node(5, 49.2827, -123.1215, highway="bus_stop", name="Granville Stn"),
    ])
