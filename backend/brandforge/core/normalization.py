"""
Response Normalization

The model returns structured output in several shapes: nested or flat,
snake_case or camelCase, wrapped in an envelope key or not, fenced in
markdown or not. Each accepted shape is handled by a tagged strategy; the
strategies are tried in priority order and the first match wins. Anything
no strategy recognizes falls back to documented defaults instead of raising.
"""

import ast
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from brandforge.core.exceptions import MalformedResponseError
from brandforge.models.schemas import (
    DEFAULT_RISK_THRESHOLDS,
    StyleProfile,
    ValidationIssue,
    ValidationReport,
    default_style_profile,
)


logger = logging.getLogger(__name__)


# ============================================================================
# JSON REPAIR
# ============================================================================

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def _extract_json_block(text: str) -> str:
    start = None
    for idx, char in enumerate(text):
        if char in "{[":
            start = idx
            break
    if start is None:
        raise MalformedResponseError("No JSON object found in model response")

    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return text[start: idx + 1]
    raise MalformedResponseError("Unbalanced JSON braces in model response")


def parse_model_json(text: Optional[str]) -> Any:
    """Parse JSON from a model response with best-effort repairs."""
    if not text or not text.strip():
        raise MalformedResponseError("Empty model response")

    match = _FENCE_RE.search(text)
    stripped = match.group(1).strip() if match else text.strip()
    block = _extract_json_block(stripped)
    cleaned = re.sub(r",\s*([}\]])", r"\1", block)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    try:
        return ast.literal_eval(cleaned)
    except (ValueError, SyntaxError) as e:
        raise MalformedResponseError(f"Failed to parse model JSON: {e}") from e


def snake_keys(value: Any) -> Any:
    """Recursively convert camelCase / kebab-case keys to snake_case."""
    if isinstance(value, dict):
        return {
            re.sub(r"_+", "_", _CAMEL_RE.sub("_", str(k)).replace("-", "_").replace(" ", "_")).lower(): snake_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [snake_keys(v) for v in value]
    return value


def _unwrap(data: Any, envelopes: tuple) -> Any:
    """Peel envelope keys like {"constitution": {...}} until none remain."""
    while isinstance(data, dict) and len(data) == 1:
        (key, inner), = data.items()
        if key in envelopes and isinstance(inner, dict):
            data = inner
        else:
            break
    return data


def _first(data: Dict[str, Any], keys: tuple) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, "", []):
            return data[key]
    return None


def _as_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value).strip() or None


def _normalize_hex(colors: Optional[List[str]]) -> Optional[List[str]]:
    if colors is None:
        return None
    normalized = []
    for color in colors:
        match = _HEX_RE.match(color.strip())
        if match:
            normalized.append("#" + match.group(1).upper())
        else:
            normalized.append(color.strip())
    return normalized


# ============================================================================
# STYLE PROFILE STRATEGIES
# ============================================================================

PROFILE_ENVELOPES = ("constitution", "brand_constitution", "style_profile", "profile", "brand", "result")

PALETTE_KEYS = ("color_palette_hex", "color_palette", "palette", "colors", "brand_colors", "hex_colors")
STYLE_KEYS = ("photography_style", "style_description", "visual_style", "style", "aesthetic")
FORBIDDEN_KEYS = ("forbidden_elements", "forbidden", "avoid", "do_not_use", "banned_elements")
TONE_KEYS = ("tone", "voice_tone", "brand_voice")
KEYWORD_KEYS = ("keywords", "voice_keywords", "brand_keywords")
RISK_KEYS = ("risk_thresholds", "risk", "risks", "safety")


@dataclass(frozen=True)
class NormalizationStrategy:
    """One accepted response shape: a predicate and an extractor."""

    tag: str
    matches: Callable[[Dict[str, Any]], bool]
    extract: Callable[[Dict[str, Any]], Dict[str, Any]]


def _risk(data: Dict[str, Any]) -> Optional[Dict[str, str]]:
    raw = _first(data, RISK_KEYS)
    if not isinstance(raw, dict):
        return None
    return {str(k): str(v).upper() for k, v in raw.items() if v is not None}


def _nested_matches(data: Dict[str, Any]) -> bool:
    return isinstance(data.get("visual_identity"), dict) or isinstance(data.get("voice"), dict)


def _section_first(section: Dict[str, Any], data: Dict[str, Any], keys: tuple) -> Any:
    """Look in the nested section first, then at the top level."""
    value = _first(section, keys)
    return value if value is not None else _first(data, keys)


def _nested_extract(data: Dict[str, Any]) -> Dict[str, Any]:
    visual = data.get("visual_identity") if isinstance(data.get("visual_identity"), dict) else {}
    voice = data.get("voice") if isinstance(data.get("voice"), dict) else {}
    return {
        "palette": _normalize_hex(_as_list(_section_first(visual, data, PALETTE_KEYS))),
        "style_description": _as_text(_section_first(visual, data, STYLE_KEYS)),
        "forbidden_elements": _as_list(_section_first(visual, data, FORBIDDEN_KEYS)),
        "voice_tone": _as_text(_section_first(voice, data, TONE_KEYS)),
        "voice_keywords": _as_list(_section_first(voice, data, KEYWORD_KEYS)),
        "risk_thresholds": _risk(data),
    }


def _flat_matches(data: Dict[str, Any]) -> bool:
    return any(key in data for key in ("color_palette_hex", "photography_style", "forbidden_elements", "tone"))


def _alias_matches(data: Dict[str, Any]) -> bool:
    return any(key in data for key in PALETTE_KEYS + STYLE_KEYS + FORBIDDEN_KEYS + TONE_KEYS + ("voice",))


def _flat_extract(data: Dict[str, Any]) -> Dict[str, Any]:
    voice = data.get("voice")
    voice_section = voice if isinstance(voice, dict) else {}
    tone = _section_first(voice_section, data, TONE_KEYS)
    if tone is None and isinstance(voice, str):
        tone = voice
    return {
        "palette": _normalize_hex(_as_list(_first(data, PALETTE_KEYS))),
        "style_description": _as_text(_first(data, STYLE_KEYS)),
        "forbidden_elements": _as_list(_first(data, FORBIDDEN_KEYS)),
        "voice_tone": _as_text(tone),
        "voice_keywords": _as_list(_section_first(voice_section, data, KEYWORD_KEYS)),
        "risk_thresholds": _risk(data),
    }


PROFILE_STRATEGIES: List[NormalizationStrategy] = [
    NormalizationStrategy("nested", _nested_matches, _nested_extract),
    NormalizationStrategy("flat", _flat_matches, _flat_extract),
    NormalizationStrategy("alternate_keys", _alias_matches, _flat_extract),
]


def normalize_style_profile(raw: Any) -> StyleProfile:
    """
    Convert any accepted profile shape into the canonical StyleProfile.

    Missing fields are filled from the default profile. A payload no
    strategy recognizes yields the default profile (flagged is_default).
    """
    data = _unwrap(snake_keys(raw), PROFILE_ENVELOPES)
    if not isinstance(data, dict):
        logger.warning("[Normalize] Profile payload is %s, using default profile", type(data).__name__)
        return default_style_profile()

    for strategy in PROFILE_STRATEGIES:
        if not strategy.matches(data):
            continue
        fields = {k: v for k, v in strategy.extract(data).items() if v is not None}
        logger.debug("[Normalize] Profile matched strategy '%s'", strategy.tag)

        defaults = default_style_profile()
        risk = dict(DEFAULT_RISK_THRESHOLDS)
        risk.update(fields.pop("risk_thresholds", {}))
        merged = defaults.model_dump()
        merged.update(fields)
        merged["risk_thresholds"] = risk
        merged["is_default"] = False
        return StyleProfile(**merged)

    logger.warning("[Normalize] No profile strategy matched keys %s, using default profile", sorted(data))
    return default_style_profile()


# ============================================================================
# VALIDATION REPORT STRATEGIES
# ============================================================================

REPORT_ENVELOPES = ("audit", "audit_result", "result", "compliance", "report")
SCORE_KEYS = ("compliance_score", "score", "overall_score", "brand_score", "rating")
PASS_KEYS = ("pass", "passed", "is_compliant", "compliant")
FIX_KEYS = ("fix_instructions", "fixes", "recommendations", "fix", "suggestions")
SEVERITIES = {"low", "medium", "high"}


def _parse_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    fraction = False
    if isinstance(value, str):
        text = value.strip().rstrip("%")
        if "/" in text:
            num, _, den = text.partition("/")
            try:
                return max(0.0, min(100.0, float(num) / float(den) * 100))
            except (ValueError, ZeroDivisionError):
                return None
        fraction = "." in text
        try:
            value = float(text)
        except ValueError:
            return None
    elif isinstance(value, float):
        fraction = True
    elif not isinstance(value, int):
        return None

    score = float(value)
    # 0-1 scale reported as a fraction
    if fraction and 0.0 <= score <= 1.0:
        score *= 100
    return max(0.0, min(100.0, score))


def _parse_pass(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "yes", "no", "pass", "fail"):
        return value.strip().lower() in ("true", "yes", "pass")
    return None


def _coord(value: Any) -> Optional[float]:
    try:
        return max(0.0, min(100.0, float(value)))
    except (TypeError, ValueError):
        return None


def _issue_from_heatmap(item: Dict[str, Any]) -> Optional[ValidationIssue]:
    description = _as_text(_first(item, ("issue", "description", "problem", "reason")))
    if not description:
        return None
    severity = str(item.get("severity", "medium")).lower()
    return ValidationIssue(
        x=_coord(item.get("x")),
        y=_coord(item.get("y")),
        description=description,
        severity=severity if severity in SEVERITIES else "medium",
    )


def _issue_from_area(item: Dict[str, Any]) -> Optional[ValidationIssue]:
    issue = _issue_from_heatmap(item)
    area = _as_text(item.get("area"))
    if issue and area:
        issue = issue.model_copy(update={"description": f"{area}: {issue.description}"})
    return issue


def _normalize_issues(data: Dict[str, Any]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for item in data.get("heatmap_coordinates") or []:
        if isinstance(item, dict) and (issue := _issue_from_heatmap(item)):
            issues.append(issue)
    for item in data.get("issues") or data.get("violations") or []:
        if isinstance(item, str) and item.strip():
            issues.append(ValidationIssue(description=item.strip()))
        elif isinstance(item, dict) and (issue := _issue_from_area(item)):
            issues.append(issue)
    return issues


def normalize_validation_report(raw: Any, pass_threshold: float = 90.0) -> ValidationReport:
    """
    Convert an audit response into a ValidationReport.

    The numeric threshold decides `passed`; the model's own pass flag is
    kept as `reported_pass` and never overrides the score.

    Raises:
        MalformedResponseError: the payload carries no usable score
    """
    data = _unwrap(snake_keys(raw), REPORT_ENVELOPES)
    if not isinstance(data, dict):
        raise MalformedResponseError("Audit response is not a JSON object")

    score = _parse_score(_first(data, SCORE_KEYS))
    if score is None:
        raise MalformedResponseError(f"Audit response has no score (keys: {sorted(data)})")

    reported_pass = None
    for key in PASS_KEYS:
        if key in data:
            reported_pass = _parse_pass(data[key])
            break

    passed = score >= pass_threshold
    if reported_pass is not None and reported_pass != passed:
        logger.info(
            "[Normalize] Model pass flag %s disagrees with score %.1f (threshold %.1f); using score",
            reported_pass, score, pass_threshold,
        )

    return ValidationReport(
        score=score,
        passed=passed,
        reported_pass=reported_pass,
        issues=_normalize_issues(data),
        fix_instructions=_as_text(_first(data, FIX_KEYS)) or "",
    )
