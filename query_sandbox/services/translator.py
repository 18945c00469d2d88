"""Natural-language prompt to structured query translation.

Two strategies are tried in order: a keyword match against pre-vetted query
templates, then a single call to the completion provider constrained by the
agent's schema maps. The output is always re-validated by the sandbox, the
translator only guarantees the shape and that entity/action exist in a
schema map.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Literal, Mapping, Sequence

from query_sandbox.config import get_settings
from query_sandbox.models.permission_grant import PermissionGrant
from query_sandbox.models.query_template import QueryTemplate
from query_sandbox.models.schema_map import SchemaMap
from query_sandbox.schemas.query_request import QueryOptions
from query_sandbox.services.completion import CompletionProvider, CompletionUnavailable
from query_sandbox.services.permissions import grant_permits
from query_sandbox.services.schema_maps import serialize_for_prompt
from query_sandbox.services.templates import TemplateRenderError, render_template
from query_sandbox.utils.errors import TranslationError
from query_sandbox.utils.time import utcnow

logger = logging.getLogger(__name__)

ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)?)\b")
RELATIVE_RE = re.compile(r"\b(?:last|past)\s+(\d+)\s+(hour|day|week)s?\b", re.IGNORECASE)
RANGE_RE = re.compile(
    r"\b(?:between|from)\s+(\d{4}-\d{2}-\d{2})\s+(?:and|to)\s+(\d{4}-\d{2}-\d{2})\b",
    re.IGNORECASE,
)
INTEGER_RE = re.compile(r"(?<![\w.-])(\d+)(?![\w.])")
NUMBER_RE = re.compile(r"(?<![\w.])(-?\d+(?:\.\d+)?)(?![\w.])")
UUID_RE = re.compile(r"\b([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})\b")
HASH_ID_RE = re.compile(r"#([A-Za-z0-9_-]+)")
ID_WORD_RE = re.compile(r"\bid[:\s]+([A-Za-z0-9_-]+)", re.IGNORECASE)
QUOTED_RE = re.compile(r"\"([^\"]+)\"|'([^']+)'")

QUERY_GENERATOR_PROMPT = """
You are a query generator that converts natural language prompts to structured data queries.
Your task is to generate a valid query based on the user's prompt and the available schema maps.

AVAILABLE SCHEMA MAPS:
{schema_maps}

GUIDELINES:
1. Only use models and fields that are explicitly listed in the schema maps.
2. Respect the allowed actions for each model.
3. Include required fields in create operations and filter on them otherwise.
4. Use appropriate filters based on the user's intent.
5. Limit the number of results with "take" (100 by default unless specified otherwise).
6. Use "orderBy" and "skip" for sorting and pagination when relevant.
7. Supported params keys: where, select, data, orderBy, take, skip, distinct.
8. Avoid complex nested queries unless necessary.

EXAMPLES:

Example 1:
User prompt: "Show me the latest 5 system logs"
Response:
{{"targetModel": "SystemLog", "action": "findMany", "params": {{"take": 5, "orderBy": {{"timestamp": "desc"}}}}}}

Example 2:
User prompt: "Count how many active users we have"
Response:
{{"targetModel": "User", "action": "count", "params": {{"where": {{"isActive": true}}}}}}

YOUR RESPONSE FORMAT:
{{"targetModel": "<model>", "action": "<action>", "params": {{...}}}}

Only respond with valid JSON. Do not include any other text in your response.
""".strip()


@dataclass
class TranslatedQuery:
    target_entity: str
    action: str
    params: dict[str, Any]
    generated_query_text: str
    strategy: Literal["template", "generative"]
    template_id: int | None = None


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def format_query_text(entity: str, action: str, params: Mapping[str, Any]) -> str:
    return f"{entity}.{action}({canonical_json(params)})"


# -- JSON extraction ---------------------------------------------------


def extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring of ``text``.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


# -- parameter extraction ----------------------------------------------


def _relative_start(match: re.Match[str], now: datetime) -> datetime:
    amount = int(match.group(1))
    unit = match.group(2).lower()
    if unit == "hour":
        return now - timedelta(hours=amount)
    if unit == "week":
        return now - timedelta(weeks=amount)
    return now - timedelta(days=amount)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _coerce_number(raw: str, integer: bool) -> int | float | None:
    try:
        number = float(raw)
    except ValueError:
        return None
    if integer:
        return int(number) if number.is_integer() else None
    return int(number) if number.is_integer() else number


def extract_parameter(prompt: str, spec: Mapping[str, Any], *, now: datetime | None = None) -> Any:
    """Pull one typed parameter value out of the prompt, or ``None``."""

    now = now or utcnow()
    param_type = spec.get("type", "string")
    pattern = spec.get("pattern")

    if pattern:
        match = re.search(pattern, prompt, re.IGNORECASE)
        if match is None:
            return None
        raw = match.group(1) if match.groups() else match.group(0)
        if param_type in {"number", "integer"}:
            return _coerce_number(raw, param_type == "integer")
        return raw

    if param_type in {"number", "integer"}:
        regex = INTEGER_RE if param_type == "integer" else NUMBER_RE
        match = regex.search(prompt)
        return _coerce_number(match.group(1), param_type == "integer") if match else None

    if param_type == "date":
        match = ISO_DATE_RE.search(prompt)
        if match:
            return match.group(1)
        lowered = prompt.lower()
        if "yesterday" in lowered:
            return _start_of_day(now - timedelta(days=1)).isoformat()
        if "today" in lowered:
            return _start_of_day(now).isoformat()
        relative = RELATIVE_RE.search(prompt)
        return _relative_start(relative, now).isoformat() if relative else None

    if param_type == "date_range":
        match = RANGE_RE.search(prompt)
        if match:
            return {"gte": match.group(1), "lte": match.group(2)}
        relative = RELATIVE_RE.search(prompt)
        if relative:
            return {"gte": _relative_start(relative, now).isoformat(), "lte": now.isoformat()}
        return None

    if param_type == "identifier":
        for regex in (HASH_ID_RE, UUID_RE, ID_WORD_RE):
            match = regex.search(prompt)
            if match:
                return match.group(1)
        return None

    if param_type == "enum":
        lowered = prompt.lower()
        positions = []
        for option in spec.get("options") or []:
            found = re.search(rf"\b{re.escape(str(option).lower())}\b", lowered)
            if found:
                positions.append((found.start(), option))
        return min(positions)[1] if positions else None

    match = QUOTED_RE.search(prompt)
    if match:
        return match.group(1) if match.group(1) is not None else match.group(2)
    return None


def _extract_values(
    prompt: str, parameter_schema: Mapping[str, Any], now: datetime
) -> dict[str, Any] | None:
    properties = (parameter_schema or {}).get("properties", {}) or {}
    required = set((parameter_schema or {}).get("required", []) or [])
    values: dict[str, Any] = {}
    for name, spec in properties.items():
        value = extract_parameter(prompt, spec, now=now)
        if value is None:
            value = spec.get("default")
        if value is None and name in required:
            return None
        values[name] = value
    return values


def match_template(
    prompt: str,
    templates: Iterable[QueryTemplate],
    grants: Sequence[PermissionGrant],
    *,
    now: datetime | None = None,
) -> tuple[QueryTemplate, dict[str, Any]] | None:
    """Return the best matching template and its extracted values."""

    now = now or utcnow()
    lowered = prompt.lower()
    candidates: list[tuple[int, int, QueryTemplate, dict[str, Any]]] = []
    for template in templates:
        if not template.is_active or not template.keywords:
            continue
        if not any(grant_permits(grant, template.target_entity, template.action) for grant in grants):
            continue
        if not all(keyword.lower() in lowered for keyword in template.keywords):
            continue
        values = _extract_values(prompt, template.parameter_schema, now)
        if values is None:
            continue
        candidates.append((-len(template.keywords), template.id, template, values))
    if not candidates:
        return None
    candidates.sort(key=lambda item: (item[0], item[1]))
    _, _, template, values = candidates[0]
    return template, values


# -- generative path ---------------------------------------------------


def build_system_prompt(schema_maps: Sequence[SchemaMap]) -> str:
    return QUERY_GENERATOR_PROMPT.format(schema_maps=serialize_for_prompt(schema_maps))


def _entity_allows(schema_maps: Sequence[SchemaMap], entity: str, action: str) -> tuple[bool, bool]:
    """Return (entity known, action allowed) across active schema maps."""

    known = False
    for schema_map in schema_maps:
        if not schema_map.is_active:
            continue
        spec = schema_map.entity_spec(entity)
        if spec is None:
            continue
        known = True
        if action in (spec.get("allowedActions") or []):
            return True, True
    return known, False


def parse_generated_query(text: str, schema_maps: Sequence[SchemaMap]) -> tuple[str, str, dict[str, Any]]:
    """Validate the model's answer and return ``(entity, action, params)``."""

    raw = extract_json_object(text or "")
    if raw is None:
        raise TranslationError("Model response did not contain a JSON object")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TranslationError(f"Model response is not valid JSON: {exc.msg}") from exc

    entity = payload.get("targetModel", payload.get("targetEntity"))
    action = payload.get("action")
    params = payload.get("params")
    if not isinstance(entity, str) or not entity:
        raise TranslationError("Model response is missing targetModel")
    if not isinstance(action, str) or not action:
        raise TranslationError("Model response is missing action")
    if not isinstance(params, dict):
        raise TranslationError("Model response params must be an object")

    known, allowed = _entity_allows(schema_maps, entity, action)
    if not known:
        raise TranslationError(f"Model {entity} is not available in any schema map")
    if not allowed:
        raise TranslationError(f"Action {action} is not allowed for model {entity}")
    return entity, action, params


def translate(
    prompt: str,
    schema_maps: Sequence[SchemaMap],
    options: QueryOptions,
    *,
    grants: Sequence[PermissionGrant],
    templates: Iterable[QueryTemplate],
    provider: CompletionProvider | None,
    now: datetime | None = None,
) -> TranslatedQuery:
    """Translate ``prompt`` into a structured query or raise ``TranslationError``."""

    settings = get_settings()

    if options.use_templates:
        matched = match_template(prompt, templates, grants, now=now)
        if matched is not None:
            template, values = matched
            try:
                params = render_template(template.template_text, values)
            except TemplateRenderError as exc:
                logger.warning(
                    "Template render failed; falling back to generation",
                    extra={"template_id": template.id, "error": str(exc)},
                )
            else:
                logger.info(
                    "Prompt matched query template",
                    extra={"template_id": template.id, "entity": template.target_entity},
                )
                return TranslatedQuery(
                    target_entity=template.target_entity,
                    action=template.action,
                    params=params,
                    generated_query_text=format_query_text(template.target_entity, template.action, params),
                    strategy="template",
                    template_id=template.id,
                )

    active_maps = [schema_map for schema_map in schema_maps if schema_map.is_active]
    if not active_maps:
        raise TranslationError("No active schema map is available for this agent")
    if provider is None:
        raise TranslationError("No template matched and query generation is unavailable")

    try:
        completion = provider.complete(
            build_system_prompt(active_maps),
            prompt,
            max_tokens=options.max_tokens or settings.QUERY_LLM_MAX_TOKENS,
            temperature=(
                options.temperature if options.temperature is not None else settings.QUERY_LLM_TEMPERATURE
            ),
        )
    except CompletionUnavailable as exc:
        raise TranslationError(f"Query generation unavailable: {exc}") from exc

    entity, action, params = parse_generated_query(completion, active_maps)
    logger.info("Prompt translated by model", extra={"entity": entity, "action": action})
    return TranslatedQuery(
        target_entity=entity,
        action=action,
        params=params,
        generated_query_text=format_query_text(entity, action, params),
        strategy="generative",
    )


__all__ = [
    "TranslatedQuery",
    "build_system_prompt",
    "canonical_json",
    "extract_json_object",
    "extract_parameter",
    "format_query_text",
    "match_template",
    "parse_generated_query",
    "translate",
]
