"""Render shared survey results and analytics reports using Jinja2 templates."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from src.records import SurveyResponseRecord
from src.reporting.context import (
    build_shared_result_context,
    build_summary_report_context,
)

logger = logging.getLogger(__name__)

_TEMPLATE_DIR = Path(__file__).parent / "templates"

# HTML pages are escaped; the markdown report must keep apostrophes etc.
_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
    trim_blocks=True,
    lstrip_blocks=True,
)


def _fmt_number(value: Optional[float], digits: int = 1) -> str:
    if value is None:
        return "N/A"
    return f"{value:.{digits}f}".rstrip("0").rstrip(".") if digits else f"{value:.0f}"


_env.filters["num"] = _fmt_number


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render_shared_result(record: SurveyResponseRecord, **context_kwargs: Any) -> str:
    """Render the public results page for a shared survey result.

    Keyword arguments are forwarded to
    :func:`src.reporting.context.build_shared_result_context` (``now``,
    ``max_age_days``, ``thresholds``); it raises ``RecordExpiredError`` for
    links past their lifetime.
    """
    context = build_shared_result_context(record, **context_kwargs)
    template = _env.get_template("shared_result.html.j2")
    html = template.render(**context.to_dict())
    logger.debug("Rendered shared result %s (len=%d)", record.id, len(html))
    return html


def render_not_available(title: str, message: str) -> str:
    """Render the small error page shown for missing or expired results."""
    template = _env.get_template("not_available.html.j2")
    return template.render(title=title, message=message)


def render_summary_report(
    summary: Mapping[str, Any],
    *,
    filters: Optional[Mapping[str, Any]] = None,
) -> str:
    """Render a markdown analytics report from a summary payload."""
    context = build_summary_report_context(summary, filters=filters)
    template = _env.get_template("summary_report.md.j2")
    return template.render(**context.to_dict())
