import logging
import os
import uuid

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

from facility_aggregator import aggregate_facilities, validate_radius
from facility_source import FacilityDataUnavailable, facility_store
from geocode import GeocodeError, reverse_lookup, search_address
from models import get_analysis, init_db, save_analysis
from scout_trace import TraceContext, clear_trace, set_trace
from scouting_config import DEFAULT_CONFIG, OutOfBoundsError
from scouting_session import FETCH_TRAFFIC, FETCH_WEATHER, ScoutingSession
from time_window import TimeInputState, parse_time_input, time_input_state
from traffic import get_traffic_flow, traffic_unavailable_reason
from traffic import serialize_for_result as _serialize_traffic
from weather import get_current_weather
from weather import serialize_for_result as _serialize_weather

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote expected upstream failures to breadcrumbs."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            if exc_type is not None and issubclass(
                exc_type, (FacilityDataUnavailable, GeocodeError, OutOfBoundsError)
            ):
                sentry_sdk.add_breadcrumb(
                    category="upstream",
                    message=str(exc_value),
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("SOUNDSCOUT_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "soundscout-dev-key")

# Behind a reverse proxy, ProxyFix rewrites request.remote_addr to the real
# client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting. In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "120/minute")
RATE_LIMIT_ANALYZE = os.environ.get("RATE_LIMIT_ANALYZE", "30/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

if traffic_unavailable_reason():
    logger.warning("TOMTOM_API_KEY is not set. Traffic lookups will be skipped.")


class InputError(ValueError):
    """Invalid request parameters (rendered as HTTP 400)."""

    pass


@app.before_request
def _set_request_context():
    g.request_id = uuid.uuid4().hex[:10]


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


# ---------------------------------------------------------------------------
# Parameter parsing
# ---------------------------------------------------------------------------

def _float_param(source, name: str) -> float:
    raw = source.get(name)
    if raw is None or str(raw).strip() == "":
        raise InputError(f"{name} is required")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise InputError(f"{name} must be a number")


def _point_param(source):
    lat = _float_param(source, "lat")
    lon = _float_param(source, "lon")
    # OutOfBoundsError propagates to its own handler
    return DEFAULT_CONFIG.bounds.point(lat, lon)


def _radius_param(source) -> float:
    raw = source.get("radius")
    if raw is None or str(raw).strip() == "":
        return DEFAULT_CONFIG.default_radius_m
    try:
        radius = validate_radius(float(raw))
    except (TypeError, ValueError):
        raise InputError("radius must be a non-negative number of meters")
    if not DEFAULT_CONFIG.min_radius_m <= radius <= DEFAULT_CONFIG.max_radius_m:
        raise InputError(
            f"radius must be between {DEFAULT_CONFIG.min_radius_m} "
            f"and {DEFAULT_CONFIG.max_radius_m} meters"
        )
    return radius


def _hidden_param(raw) -> list:
    """Category keys to hide, from "a,b" or a JSON list."""
    if raw is None or raw == "":
        return []
    keys = raw if isinstance(raw, list) else str(raw).split(",")
    keys = [str(k).strip() for k in keys if str(k).strip()]
    known = set(DEFAULT_CONFIG.category_keys())
    unknown = [k for k in keys if k not in known]
    if unknown:
        raise InputError(f"unknown categories: {', '.join(unknown)}")
    return keys


def _time_payload(hour, minute, period) -> dict:
    state = time_input_state(hour, minute, period)
    selection = parse_time_input(hour, minute, period)
    payload = {
        "state": state.value,
        "selection": selection.to_dict() if selection else None,
    }
    if state is TimeInputState.INVALID:
        payload["message"] = "Enter a valid time (1-12 hours, 0-59 minutes)."
    return payload


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/categories")
def categories():
    return jsonify({
        "categories": [
            {
                "key": c.key,
                "label": c.label,
                "icon_key": c.icon_key,
                "color": c.color,
                "type_label": c.type_label,
            }
            for c in DEFAULT_CONFIG.categories
        ],
    })


@app.route("/api/facilities")
def facilities():
    """Counts and the nearest facilities around a point."""
    point = _point_param(request.args)
    radius = _radius_param(request.args)
    hidden = _hidden_param(request.args.get("hide"))

    index = facility_store.get_index()
    aggregation = aggregate_facilities(
        index, point, radius, {key: False for key in hidden},
    )
    payload = aggregation.to_dict(limit=DEFAULT_CONFIG.top_facilities_limit)
    payload["point"] = point.to_dict()
    payload["radius_m"] = radius
    return jsonify(payload)


@app.route("/api/analyze", methods=["POST"])
@limiter.limit(RATE_LIMIT_ANALYZE)
def analyze():
    """Run a full analysis for a point and store the snapshot.

    Accepts JSON: {"lat", "lon", "radius", "hour", "minute", "period",
    "hidden": [...], "include_conditions": bool}
    """
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InputError("request body must be a JSON object")
    point = _point_param(data)
    radius = _radius_param(data)
    hidden = _hidden_param(data.get("hidden"))
    hour = data.get("hour", "")
    minute = data.get("minute", "")
    period = data.get("period", "PM")

    trace_ctx = TraceContext(trace_id=g.request_id)
    set_trace(trace_ctx)
    try:
        with trace_ctx.stage("load_facilities"):
            index = facility_store.get_index()

        with trace_ctx.stage("aggregate"):
            session = ScoutingSession(index, DEFAULT_CONFIG)
            session.select_point(point.lat, point.lon)
            session.set_radius(radius)
            session.set_time_fields(hour, minute, period)
            for key in hidden:
                session.set_visibility(key, False)

        if data.get("include_conditions"):
            with trace_ctx.stage("conditions"):
                weather_token = session.begin_fetch(FETCH_WEATHER)
                session.apply_weather(weather_token, get_current_weather(point.lat, point.lon))
                if session.time_selection is not None:
                    traffic_token = session.begin_fetch(FETCH_TRAFFIC)
                    session.apply_traffic(
                        traffic_token,
                        get_traffic_flow(point.lat, point.lon, session.time_selection),
                    )

        with trace_ctx.stage("compose"):
            result = session.analyze()
            record = result.to_dict()
            record["counts"] = dict(session.aggregation.counts)
            record["point"] = point.to_dict()
            record["stages"] = trace_ctx.stages_to_list()
            analysis_id = save_analysis(point.lat, point.lon, record)

        trace_ctx.log_summary()
        return jsonify({
            "analysis_id": analysis_id,
            "analysis": result.to_dict(),
            "counts": dict(session.aggregation.counts),
            "facilities": [
                f.to_dict()
                for f in session.aggregation.top(DEFAULT_CONFIG.top_facilities_limit)
            ],
            "time_input": _time_payload(hour, minute, period),
            "narrative_context": session.narrative_context(),
        })
    except Exception:
        trace_ctx.log_summary()
        raise
    finally:
        clear_trace()


@app.route("/api/analysis/<analysis_id>")
def analysis_snapshot(analysis_id):
    snapshot = get_analysis(analysis_id)
    if not snapshot:
        return jsonify({"error": "Analysis not found"}), 404
    return jsonify(snapshot)


@app.route("/api/time")
def parse_time():
    return jsonify(_time_payload(
        request.args.get("hour", ""),
        request.args.get("minute", ""),
        request.args.get("period", "PM"),
    ))


@app.route("/api/geocode")
def geocode():
    point = search_address(request.args.get("q", ""))
    return jsonify({"point": point.to_dict()})


@app.route("/api/reverse")
def reverse():
    point = _point_param(request.args)
    return jsonify({
        "point": point.to_dict(),
        "display_name": reverse_lookup(point.lat, point.lon),
    })


@app.route("/api/weather")
def weather():
    point = _point_param(request.args)
    return jsonify({"weather": _serialize_weather(get_current_weather(point.lat, point.lon))})


@app.route("/api/traffic")
def traffic():
    point = _point_param(request.args)
    hour = request.args.get("hour", "")
    minute = request.args.get("minute", "")
    period = request.args.get("period", "PM")

    time_info = _time_payload(hour, minute, period)
    if time_info["state"] == TimeInputState.INVALID.value:
        return jsonify({"traffic": None, "time_input": time_info, "error": time_info["message"]}), 400
    if time_info["state"] == TimeInputState.EMPTY.value:
        # No time chosen, so there is no window to look up.
        return jsonify({"traffic": None, "time_input": time_info})

    reason = traffic_unavailable_reason()
    if reason:
        return jsonify({"traffic": None, "time_input": time_info, "error": reason})

    flow = get_traffic_flow(point.lat, point.lon, parse_time_input(hour, minute, period))
    return jsonify({"traffic": _serialize_traffic(flow), "time_input": time_info})


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    return jsonify({
        "status": "ok",
        "facilities_loaded": facility_store.loaded,
        "traffic_configured": traffic_unavailable_reason() is None,
    })


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(InputError)
def bad_input(e):
    return jsonify({"error": str(e), "request_id": g.get("request_id")}), 400


@app.errorhandler(OutOfBoundsError)
def out_of_bounds(e):
    return jsonify({
        "error": f"Selected point is outside {DEFAULT_CONFIG.area_name} city limits.",
        "request_id": g.get("request_id"),
    }), 400


@app.errorhandler(GeocodeError)
def geocode_failed(e):
    return jsonify({"error": str(e), "request_id": g.get("request_id")}), 400


@app.errorhandler(FacilityDataUnavailable)
def facilities_unavailable(e):
    logger.warning("Facility data unavailable [request_id=%s]: %s", g.get("request_id"), e)
    return jsonify({
        "error": "Unable to load facility data. Try again in a moment.",
        "request_id": g.get("request_id"),
    }), 503


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({"error": "Too many requests. Please wait and try again."}), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

# Initialize database on import (safe to call repeatedly)
init_db()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
