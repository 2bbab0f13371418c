"""Profile-aware query rewriting.

The expander first asks the text-generation provider for a structured
rewrite. When no provider is configured, the call fails, or the reply is
malformed or adds nothing, it falls back to a local dictionary expansion
that is deterministic for identical inputs.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from .errors import MalformedStructuredReply, Ok, ProviderError, ProviderResult
from .generation import TextGenerator
from .schema import ExpandedQuery, UserProfile

logger = logging.getLogger(__name__)

# Every expansion keeps its abbreviation so the rewrite is a superset of the input.
ABBREVIATIONS: dict[str, str] = {
    "IRA": "Individual Retirement Account IRA",
    "401(k)": "401(k) plan 401k",
    "401k": "401(k) plan 401k",
    "403(b)": "403(b) plan 403b",
    "403b": "403(b) plan 403b",
    "HSA": "Health Savings Account HSA",
    "FSA": "Flexible Spending Account FSA",
    "AGI": "Adjusted Gross Income AGI",
    "MAGI": "Modified Adjusted Gross Income MAGI",
    "RMD": "Required Minimum Distribution RMD",
    "SEP": "Simplified Employee Pension SEP",
    "HDHP": "High Deductible Health Plan HDHP",
    "AMT": "Alternative Minimum Tax AMT",
    "SALT": "State and Local Tax SALT",
    "QCD": "Qualified Charitable Distribution QCD",
    "ETF": "Exchange-Traded Fund ETF",
}

_ABBREVIATION_PATTERN = re.compile(
    "|".join(re.escape(key) for key in sorted(ABBREVIATIONS, key=len, reverse=True))
)

# Query keywords (lowercase substrings) and the sections they point at.
TERM_SECTIONS: list[tuple[str, list[str]]] = [
    ("catch-up", ["Catch-up Contributions"]),
    ("roth", ["Roth IRA"]),
    ("ira", ["Individual Retirement Accounts", "Contribution Limits"]),
    ("401", ["401(k) Plans", "Contribution Limits"]),
    ("contribut", ["Contribution Limits"]),
    ("limit", ["Contribution Limits"]),
    ("deduct", ["Tax Deductions", "Standard Deduction"]),
    ("filing", ["Filing Status"]),
    ("hsa", ["Health Savings Accounts"]),
    ("rmd", ["Required Minimum Distributions"]),
    ("required minimum", ["Required Minimum Distributions"]),
    ("bracket", ["Tax Brackets"]),
]

GOAL_SECTIONS: dict[str, list[str]] = {
    "retire": ["Retirement Planning", "Contribution Limits"],
    "tax": ["Tax Planning", "Tax Deductions"],
    "emergency": ["Emergency Fund"],
    "house": ["Home Buying"],
    "home": ["Home Buying"],
    "college": ["Education Savings"],
    "education": ["Education Savings"],
    "invest": ["Investment Strategy"],
    "debt": ["Debt Management"],
}

CATCH_UP_MARKER = "age 50 or older catch-up contributions"
RMD_MARKER = "required minimum distributions"

_REPLY_FIELDS = ("expanded_query", "expansion_terms", "profile_terms", "priority_sections")


_INT_FIELDS = ("age", "dependents")
_TEXT_FIELDS = ("filing_status", "residency_state", "residency_city", "risk_tolerance", "full_name")


def _convert(name: str, value: Any, kind: type) -> Any:
    if value is None or value == "":
        return None
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"profile field {name!r} has invalid value {value!r}") from exc


def coerce_profile(profile: UserProfile | Mapping[str, Any] | None) -> UserProfile | None:
    """Accept a profile object or a plain mapping of its fields.

    Numeric fields are converted to numbers and ``goals`` to a list of strings,
    so ``{"age": "55"}`` behaves like ``{"age": 55}``. Unknown keys are ignored.

    Raises:
        ValueError: If a field cannot be converted.
    """
    if profile is None:
        return None
    known = UserProfile.__dataclass_fields__
    if isinstance(profile, UserProfile):
        fields = {name: getattr(profile, name) for name in known}
    elif isinstance(profile, Mapping):
        fields = {key: value for key, value in profile.items() if key in known}
    else:
        raise ValueError(f"profile must be a UserProfile or a mapping, got {type(profile).__name__}")

    for name in _INT_FIELDS:
        fields[name] = _convert(name, fields.get(name), int)
    fields["annual_income"] = _convert("annual_income", fields.get("annual_income"), float)
    for name in _TEXT_FIELDS:
        fields[name] = _convert(name, fields.get(name), str)

    goals = fields.get("goals") or []
    if isinstance(goals, str):
        goals = [goals]
    if not isinstance(goals, (list, tuple, set)):
        raise ValueError(f"profile field 'goals' has invalid value {goals!r}")
    fields["goals"] = [str(goal) for goal in goals if goal is not None]
    return UserProfile(**fields)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for item in items:
        marker = item.lower()
        if item and marker not in seen:
            seen.add(marker)
            ordered.append(item)
    return ordered


def _label(value: str) -> str:
    return value.replace("_", " ").strip()


def profile_terms(profile: UserProfile | None) -> list[str]:
    """Retrieval terms derived from the user profile, most specific first."""
    if profile is None:
        return []
    found: list[str] = []
    if profile.age is not None:
        if profile.age >= 50:
            found.append(CATCH_UP_MARKER)
        if profile.age >= 73:
            found.append(RMD_MARKER)
    if profile.filing_status:
        found.append(f"{_label(profile.filing_status)} filing status")
    if profile.residency_state:
        found.append(f"{profile.residency_state} state tax")
    if profile.risk_tolerance:
        found.append(f"{_label(profile.risk_tolerance)} risk tolerance")
    if profile.dependents:
        found.append("dependents child tax credit")
    found.extend(_label(goal) for goal in profile.goals if goal and goal.strip())
    return _dedupe(found)


def priority_sections(query: str, profile: UserProfile | None) -> list[str]:
    """Section names likely to answer ``query`` for ``profile``."""
    lowered = query.lower()
    sections: list[str] = []
    for keyword, names in TERM_SECTIONS:
        if keyword in lowered:
            sections.extend(names)
    if profile is not None:
        if profile.age is not None and profile.age >= 50:
            sections.append("Catch-up Contributions")
        if profile.age is not None and profile.age >= 73:
            sections.append("Required Minimum Distributions")
        if profile.filing_status:
            sections.append("Filing Status")
        for goal in profile.goals:
            goal_text = goal.lower()
            for keyword, names in GOAL_SECTIONS.items():
                if keyword in goal_text:
                    sections.extend(names)
    return _dedupe(sections)


def expand_abbreviations(query: str) -> tuple[str, list[str]]:
    """Replace known abbreviations in one left-to-right pass.

    Longer keys win, so ``MAGI`` is never rewritten as ``AGI``, and inserted
    text is not scanned again.

    Returns:
        The rewritten query and the expansions applied, in order of appearance.
    """
    applied: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        expansion = ABBREVIATIONS[match.group(0)]
        applied.append(expansion)
        return expansion

    return _ABBREVIATION_PATTERN.sub(_replace, query), _dedupe(applied)


def dictionary_expand(query: str, profile: UserProfile | None = None) -> ExpandedQuery:
    """Local, network-free expansion. Identical inputs give identical output."""
    rewritten, expansion_terms = expand_abbreviations(query)
    terms_from_profile = profile_terms(profile)
    expanded = " ".join(part for part in [rewritten.strip(), *terms_from_profile] if part)
    return ExpandedQuery(
        original=query,
        expanded=expanded,
        expansion_terms=expansion_terms,
        profile_terms=terms_from_profile,
        priority_sections=priority_sections(query, profile),
        strategy="dictionary",
    )


def _describe_profile(profile: UserProfile | None) -> str:
    if profile is None:
        return "No profile provided."
    parts = []
    if profile.age is not None:
        parts.append(f"Age: {profile.age}")
    if profile.filing_status:
        parts.append(f"Filing status: {_label(profile.filing_status)}")
    if profile.residency_state:
        location = f"{profile.residency_city}, {profile.residency_state}" if profile.residency_city else profile.residency_state
        parts.append(f"Location: {location}")
    if profile.risk_tolerance:
        parts.append(f"Risk tolerance: {profile.risk_tolerance}")
    if profile.dependents is not None:
        parts.append(f"Dependents: {profile.dependents}")
    if profile.goals:
        parts.append(f"Goals: {', '.join(_label(goal) for goal in profile.goals)}")
    return "\n".join(parts) or "No profile provided."


def build_expansion_prompt(query: str, profile: UserProfile | None) -> str:
    return (
        "You rewrite personal-finance questions for document retrieval.\n"
        "1. Spell out financial abbreviations (IRA, 401k, HSA, AGI, ...).\n"
        "2. Add close synonyms.\n"
        "3. Fold in terms from the user profile (age bracket, filing status, goals).\n"
        "4. Name the document section headings most likely to hold the answer.\n"
        "\n"
        f"Question: {query}\n"
        f"User profile:\n{_describe_profile(profile)}\n"
        "\n"
        "Respond with a JSON object with exactly these keys:\n"
        "  expanded_query     - the rewritten question (string)\n"
        "  expansion_terms    - abbreviation expansions and synonyms (list of strings)\n"
        "  profile_terms      - terms derived from the profile (list of strings)\n"
        "  priority_sections  - likely section headings, most specific first (list of strings)\n"
        "\n"
        "Respond with valid JSON only. No extra text outside the JSON block."
    )


def parse_expansion_reply(text: str) -> dict[str, Any]:
    """Parse the provider's four-field JSON reply.

    Raises:
        MalformedStructuredReply: If the text is not JSON or a field is missing
            or has the wrong type.
    """
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedStructuredReply(f"expansion reply is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedStructuredReply("expansion reply is not a JSON object")

    missing = [name for name in _REPLY_FIELDS if name not in payload]
    if missing:
        raise MalformedStructuredReply(f"expansion reply is missing {', '.join(missing)}")
    if not isinstance(payload["expanded_query"], str):
        raise MalformedStructuredReply("expanded_query must be a string")
    for name in _REPLY_FIELDS[1:]:
        value = payload[name]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise MalformedStructuredReply(f"{name} must be a list of strings")
    return payload


class QueryExpander:
    """Rewrites queries through a provider, with a dictionary fallback.

    Args:
        generator: Text-generation provider. ``None`` always uses the fallback.
    """

    def __init__(self, generator: TextGenerator | None = None):
        self.generator = generator

    def expand(self, query: str, profile: UserProfile | Mapping[str, Any] | None = None) -> ExpandedQuery:
        try:
            profile = coerce_profile(profile)
        except ValueError as exc:
            logger.warning("Ignoring malformed user profile: %s", exc)
            profile = None
        if self.generator is None:
            return dictionary_expand(query, profile)

        outcome = self.try_provider(query, profile)
        if isinstance(outcome, ProviderError):
            logger.warning("Query expansion provider failed (%s), using dictionary fallback", outcome.reason)
            return dictionary_expand(query, profile)
        return outcome.value

    def try_provider(self, query: str, profile: UserProfile | None) -> ProviderResult[ExpandedQuery]:
        """Run the provider path and report ``Ok`` or ``ProviderError``."""
        try:
            reply = self.generator.complete(build_expansion_prompt(query, profile))
            payload = parse_expansion_reply(reply)
        except Exception as exc:  # noqa: BLE001
            return ProviderError(reason=str(exc) or type(exc).__name__, error=exc)

        expanded = payload["expanded_query"].strip()
        expansion_terms = _dedupe([term.strip() for term in payload["expansion_terms"]])
        terms_from_profile = _dedupe([term.strip() for term in payload["profile_terms"]])
        if expanded == query.strip() and not expansion_terms and not terms_from_profile:
            return ProviderError(reason="degenerate expansion")
        if query.strip() not in expanded:
            expanded = f"{query.strip()} {expanded}".strip()

        return Ok(
            ExpandedQuery(
                original=query,
                expanded=expanded,
                expansion_terms=expansion_terms,
                profile_terms=terms_from_profile,
                priority_sections=_dedupe([section.strip() for section in payload["priority_sections"]]),
                strategy="provider",
            )
        )
