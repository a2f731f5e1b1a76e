"""
Best-effort detection of what kind of API lives at a URL.

Order of attempts:
1. GraphQL introspection (POST to the URL itself)
2. well-known OpenAPI / Swagger document paths on the URL's origin
3. hints in the URL text
Anything else is reported as plain REST with low confidence.
"""

import logging
from datetime import datetime
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)
from urllib.parse import urlsplit

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from agentdesk.core.schema import (
    ApiKind,
    utcnow,
)

logger = logging.getLogger(__name__)

GRAPHQL_INTROSPECTION = """
query {
  __schema {
    queryType {
      fields {
        name
        description
        args { name type { name kind } }
        type { name kind ofType { name } }
      }
    }
  }
}
"""

OPENAPI_PATHS = (
    "/openapi.json",
    "/swagger.json",
    "/api-docs",
    "/v1/openapi.json",
    "/v2/swagger.json",
    "/api/openapi.json",
)

GRAPHQL_TIMEOUT = 10.0
OPENAPI_TIMEOUT = 5.0
MAX_GRAPHQL_FIELDS = 20
MAX_OPENAPI_PATHS = 15
HTTP_METHODS = ("get", "post", "put", "delete", "patch")

Confidence = Literal["high", "medium", "low"]


class DetectionResult(BaseModel):
    """Outcome of :func:`detect_api`."""

    api_type: ApiKind = ApiKind.REST
    schema_text: Optional[str] = None
    confidence: Confidence = "low"
    message: str = "Defaulting to REST API"
    detected_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------
def describe_graphql_fields(fields: List[Dict[str, Any]]) -> str:
    """``name(args): Type - description`` per query field."""
    lines = []
    for field in fields[:MAX_GRAPHQL_FIELDS]:
        args = ", ".join(
            f"{arg.get('name')}: {(arg.get('type') or {}).get('name') or (arg.get('type') or {}).get('kind')}"
            for arg in field.get("args") or []
        )
        ftype = field.get("type") or {}
        return_type = ftype.get("name") or (ftype.get("ofType") or {}).get("name") or ftype.get("kind")
        line = f"{field.get('name')}({args}): {return_type}"
        if field.get("description"):
            line += f" - {field['description']}"
        lines.append(line)
    return "GraphQL Query Types:\n" + "\n".join(lines)


def describe_openapi_paths(document: Dict[str, Any]) -> str:
    """Path plus ``METHOD: summary`` lines for the first few paths."""
    paths = document.get("paths") or {}
    endpoints = []
    for path in list(paths)[:MAX_OPENAPI_PATHS]:
        operations = paths[path] or {}
        details = [
            f"{method.upper()}: {(op or {}).get('summary') or (op or {}).get('description') or ''}"
            for method, op in operations.items()
            if method in HTTP_METHODS
        ]
        endpoints.append(f"{path}\n  " + "\n  ".join(details))
    return "OpenAPI Endpoints:\n" + "\n\n".join(endpoints)


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------
async def _probe_graphql(
    client: httpx.AsyncClient, url: str, headers: Dict[str, str]
) -> Optional[DetectionResult]:
    logger.info("Trying GraphQL introspection for %s", url)
    try:
        response = await client.post(
            url, json={"query": GRAPHQL_INTROSPECTION}, headers=headers, timeout=GRAPHQL_TIMEOUT
        )
        if not response.is_success:
            return None
        data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.info("GraphQL introspection failed for %s: %s", url, exc)
        return None

    schema = (data.get("data") or {}).get("__schema") if isinstance(data, dict) else None
    if not schema:
        return None
    fields = (schema.get("queryType") or {}).get("fields") or []
    return DetectionResult(
        api_type=ApiKind.GRAPHQL,
        confidence="high",
        message="GraphQL API detected via introspection",
        schema_text=describe_graphql_fields(fields),
    )


async def _probe_openapi(
    client: httpx.AsyncClient, url: str, headers: Dict[str, str]
) -> Optional[DetectionResult]:
    parts = urlsplit(url)
    origin = f"{parts.scheme}://{parts.netloc}"
    for path in OPENAPI_PATHS:
        doc_url = origin + path
        logger.info("Trying OpenAPI at %s", doc_url)
        try:
            response = await client.get(
                doc_url, headers={**headers, "Accept": "application/json"}, timeout=OPENAPI_TIMEOUT
            )
            if not response.is_success:
                continue
            document = response.json()
        except (httpx.HTTPError, ValueError):
            continue

        if not isinstance(document, dict):
            continue
        version = document.get("openapi") or document.get("swagger")
        if version:
            return DetectionResult(
                api_type=ApiKind.OPENAPI,
                confidence="high",
                message=f"OpenAPI {version} specification found",
                schema_text=describe_openapi_paths(document),
            )
    return None


def _guess_from_url(url: str) -> DetectionResult:
    lowered = url.lower()
    if any(hint in lowered for hint in ("graphql", "thegraph.com", "subgraph")):
        return DetectionResult(
            api_type=ApiKind.GRAPHQL,
            confidence="medium",
            message="GraphQL API detected from URL pattern (introspection failed - may need API key)",
        )
    if "swagger" in lowered or "openapi" in lowered:
        return DetectionResult(
            api_type=ApiKind.OPENAPI,
            confidence="medium",
            message="OpenAPI detected from URL pattern",
        )
    return DetectionResult()


async def detect_api(
    url: str,
    api_key: str | None = None,
    headers: Dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DetectionResult:
    """Classify the API at *url* as GraphQL, OpenAPI or REST."""
    request_headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        **(headers or {}),
    }
    if api_key:
        request_headers["Authorization"] = f"Bearer {api_key}"

    async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
        result = await _probe_graphql(client, url, request_headers)
        if result is None:
            result = await _probe_openapi(client, url, request_headers)
    return result or _guess_from_url(url)
