"""Flask application serving the survey analytics API.

``create_app`` wires the record store, the response cache, the analytics
service and the record writers into a Flask app. Importing this module has
no side-effects beyond logging setup; the background scheduler that sweeps
the cache is only started when an app is created without an explicit one.
"""
from __future__ import annotations

import atexit
import datetime
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, url_for
from pydantic import ValidationError

from src.analytics import config
from src.analytics.service import AnalyticsService
from src.cache import ResponseCache
from src.exceptions import (
    InvalidRecordError,
    RecordExpiredError,
    RecordNotFoundError,
    UnknownExportError,
)
from src.record_store import RecordStore, is_valid_record_id
from src.record_writer import RecordWriter, link_expires_at
from src.records import format_timestamp
from src.reporting.render import render_not_available, render_shared_result
from src.scheduler import Scheduler
from src.schemas import AnalyticsQuery, EmailRecordPayload, SurveyResultPayload

# Load environment variables from .env file
load_dotenv()

# Set up logging
logging_level = os.environ.get("LOG_LEVEL", "INFO")
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging_level
)
logger = logging.getLogger(__name__)

# Shared thread pool and scheduler, created on first use
executor: Optional[ThreadPoolExecutor] = None
scheduler: Optional[Scheduler] = None


def get_scheduler() -> Scheduler:
    """Return the process-wide scheduler, starting it on first call."""
    global executor, scheduler
    if scheduler is None:
        executor = ThreadPoolExecutor(max_workers=2)
        scheduler = Scheduler(executor)
        atexit.register(shutdown_executor)
    return scheduler


def shutdown_executor() -> None:
    """Gracefully shut down scheduler and thread pool executor."""
    global executor, scheduler
    if scheduler is None:
        return
    logger.info("Shutting down scheduler and thread pool executor...")
    # Stop scheduler first so it doesn't submit new tasks while executor is shutting down
    try:
        scheduler.shutdown()
    except Exception:  # pragma: no cover – ensure shutdown continues
        logger.exception("Error shutting down scheduler")

    if executor is not None:
        executor.shutdown(wait=True)
    executor = None
    scheduler = None
    logger.info("Scheduler and thread pool executor shut down gracefully.")


# ------------------------------------------------------------------
# Response helpers
# ------------------------------------------------------------------


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _envelope(message: str, data: Any = None, *, success: bool = True) -> Dict[str, Any]:
    return {
        "success": success,
        "timestamp": format_timestamp(_utcnow()),
        "message": message,
        "data": data,
    }


def _validation_error(exc: ValidationError) -> Tuple[Response, int]:
    detail = exc.errors(include_url=False, include_context=False)
    return jsonify({"error": "validation_error", "detail": detail}), 400


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or ""


def _parse_query() -> AnalyticsQuery:
    return AnalyticsQuery.model_validate(request.args.to_dict())


# ------------------------------------------------------------------
# Application factory
# ------------------------------------------------------------------


def create_app(
    data_dir: Optional[str] = None,
    *,
    cache: Optional[ResponseCache] = None,
    scheduler: Optional[Scheduler] = None,
    now: Optional[Callable[[], datetime.datetime]] = None,
) -> Flask:
    """Build the Flask app.

    Args:
        data_dir: Directory holding response records; email records live in
            its ``email-recipients`` sub-directory. Defaults to
            ``SURVEY_DATA_DIR``.
        cache: Response cache; a fresh one with the configured TTL if omitted.
        scheduler: Scheduler used for the periodic cache sweep. The shared
            process scheduler is started when omitted.
        now: Clock used for filtering, share-link expiry and record
            timestamps; tests inject a fixed one.
    """
    store = RecordStore(data_dir or config.DATA_DIR)
    cache = cache if cache is not None else ResponseCache()
    clock_kwargs = {"now": now} if now is not None else {}
    service = AnalyticsService(store, cache, **clock_kwargs)
    writer = RecordWriter(store, cache, **clock_kwargs)
    cache.start_sweeper(scheduler if scheduler is not None else get_scheduler())
    current_time = now or _utcnow

    app = Flask(__name__)
    app.config["ANALYTICS_SERVICE"] = service
    app.config["RECORD_WRITER"] = writer
    app.config["RESPONSE_CACHE"] = cache

    def _cached_json(payload: Any, hit: bool) -> Response:
        response = jsonify(payload)
        response.headers["X-Cache"] = "HIT" if hit else "MISS"
        response.headers["Cache-Control"] = f"public, max-age={int(cache.default_ttl)}"
        return response

    # -- error mapping -------------------------------------------------

    @app.errorhandler(ValidationError)
    def _on_validation_error(exc: ValidationError):
        return _validation_error(exc)

    @app.errorhandler(InvalidRecordError)
    def _on_invalid_record(exc: InvalidRecordError):
        return jsonify(_envelope(str(exc), success=False)), 400

    @app.errorhandler(UnknownExportError)
    def _on_unknown_export(exc: UnknownExportError):
        return jsonify({"error": "unknown_export", "detail": str(exc)}), 404

    # -- read side -----------------------------------------------------

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "timestamp": format_timestamp(_utcnow())})

    @app.get("/analytics/responses")
    def analytics_responses():
        payload, hit = service.responses(_parse_query().to_query())
        return _cached_json(payload, hit)

    @app.get("/analytics/emails")
    def analytics_emails():
        payload, hit = service.emails(_parse_query().to_query())
        return _cached_json(payload, hit)

    @app.get("/analytics/summary")
    def analytics_summary():
        payload, hit = service.summary(_parse_query().to_query())
        return _cached_json(payload, hit)

    @app.get("/analytics/export/<kind>")
    def analytics_export(kind: str):
        content, mimetype, filename = service.export(kind, _parse_query().to_query())
        return Response(
            content,
            mimetype=mimetype,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # -- write side ----------------------------------------------------

    @app.post("/survey/results")
    def store_survey_result():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "invalid_json", "detail": "Body must be a JSON object"}), 400
        payload = SurveyResultPayload.model_validate(body)
        record = writer.save_response(
            payload.survey_title,
            payload.results,
            ip=_client_ip(),
            user_agent=request.headers.get("User-Agent"),
        )
        data = {
            "id": record.id,
            "shareUrl": url_for("shared_result", record_id=record.id, _external=True),
            "expiresAt": format_timestamp(link_expires_at(record)),
        }
        return jsonify(_envelope("Survey results stored", data)), 201

    @app.post("/survey/email-records")
    def store_email_record():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "invalid_json", "detail": "Body must be a JSON object"}), 400
        payload = EmailRecordPayload.model_validate(body)
        record = writer.save_email(
            payload.recipient_email,
            payload.survey_title,
            payload.results,
            ip=_client_ip(),
            user_agent=request.headers.get("User-Agent"),
            method=payload.method,
        )
        return jsonify(_envelope("Email record stored", {"id": record.id})), 201

    # -- shared result page --------------------------------------------

    @app.get("/shared/<record_id>")
    def shared_result(record_id: str):
        if not is_valid_record_id(record_id):
            html = render_not_available("Invalid Link", "This results link is not valid.")
            return Response(html, status=400, mimetype="text/html")
        try:
            record = store.get_response(record_id)
            html = render_shared_result(record, now=current_time())
        except RecordNotFoundError:
            html = render_not_available(
                "Results Not Found", "These survey results could not be found."
            )
            return Response(html, status=404, mimetype="text/html")
        except RecordExpiredError:
            html = render_not_available(
                "Results Expired",
                f"Shared results are available for {config.SHARED_RESULT_MAX_AGE_DAYS} days.",
            )
            return Response(html, status=410, mimetype="text/html")
        except ValueError as exc:
            logger.warning("Stored result %s is unreadable: %s", record_id, exc)
            html = render_not_available(
                "Results Not Found", "These survey results could not be found."
            )
            return Response(html, status=404, mimetype="text/html")
        return Response(html, mimetype="text/html")

    logger.info("Analytics app created (data_dir=%s)", store.responses_dir)
    return app
