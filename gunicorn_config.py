"""
Gunicorn config. Warms the facility store in each worker process
(post_fork) so the first scouting request does not pay for the city-wide
Overpass fetch. With --workers 2, each process holds its own in-memory
facility index.

when_ready hook logs the bound port once the server is accepting
connections.
"""

import logging
import os
import threading


def when_ready(server):
    port = os.environ.get("PORT", "8000")
    logging.getLogger("gunicorn.error").info("SoundScout ready on port %s", port)


def post_fork(server, worker):
    """Load the facility index in a background thread of this worker."""

    def _warm():
        logger = logging.getLogger(__name__)
        try:
            from facility_source import FacilityDataUnavailable, facility_store
        except ImportError:
            logger.exception("Failed to import facility store")
            return
        try:
            facility_store.get_index()
        except FacilityDataUnavailable as e:
            # The store stays empty; the first request retries the fetch.
            logger.warning("Facility warm-up failed: %s", e)

    t = threading.Thread(target=_warm, daemon=True)
    t.start()
