"""Report-To endpoint validation and serialization."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from csp_builder.models.report_endpoint import ReportEndpoint

logger = structlog.get_logger()

REPORT_TO_HEADER = "Report-To"


def validate_report_endpoint(endpoint: Any) -> Mapping[str, Any] | None:
    """Return *endpoint* if it matches the endpoint schema, otherwise None."""
    if not isinstance(endpoint, Mapping):
        return None
    try:
        ReportEndpoint.model_validate(endpoint)
    except ValidationError as exc:
        logger.debug(
            "report_endpoint_dropped",
            group=endpoint.get("group"),
            errors=exc.error_count(),
        )
        return None
    return endpoint


def _as_json(value: Any) -> Any:
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_report_endpoint(endpoint: Mapping[str, Any]) -> str | None:
    """Compact JSON for one endpoint group, or None if it cannot be encoded.

    Nested mappings of any type are encoded as objects.
    """
    try:
        return json.dumps(endpoint, separators=(",", ":"), default=_as_json)
    except (TypeError, ValueError) as exc:
        logger.debug("report_endpoint_dropped", group=endpoint.get("group"), error=str(exc))
        return None


def compile_report_endpoints(endpoints: Iterable[Any]) -> str:
    """Serialize endpoint groups for the Report-To header.

    Invalid entries are dropped rather than failing the batch. Valid entries
    are encoded as compact JSON objects and joined with commas.
    """
    compiled: list[str] = []
    for endpoint in endpoints:
        if not isinstance(endpoint, Mapping):
            logger.debug("report_endpoint_dropped", error="not a mapping")
            continue
        encoded = encode_report_endpoint(endpoint)
        # Validate the encoded form so nested mappings are checked as objects.
        if encoded is not None and validate_report_endpoint(json.loads(encoded)) is not None:
            compiled.append(encoded)
    return ",".join(compiled)
