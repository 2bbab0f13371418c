from __future__ import annotations

from .generation import TextGenerator
from .pipeline import RetrievalResponse
from .schema import Account, Position, ScoredCandidate, UserProfile


def _label(value: str) -> str:
    return value.replace("_", " ")


def assemble_user_context(
    profile: UserProfile | None,
    accounts: list[Account] | None = None,
    positions: list[Position] | None = None,
) -> str:
    """Summarise the user for an advice prompt; unknown fields are omitted."""
    accounts = accounts or []
    positions = positions or []
    lines: list[str] = []
    if profile is not None:
        if profile.full_name:
            lines.append(f"Name: {profile.full_name}")
        if profile.age is not None:
            lines.append(f"Age: {profile.age}")
        if profile.filing_status:
            lines.append(f"Filing Status: {_label(profile.filing_status)}")
        location = ", ".join(part for part in (profile.residency_city, profile.residency_state) if part)
        if location:
            lines.append(f"Location: {location}")
        if profile.risk_tolerance:
            lines.append(f"Risk Tolerance: {profile.risk_tolerance}")
        if profile.dependents is not None:
            lines.append(f"Dependents: {profile.dependents}")
        if profile.goals:
            lines.append(f"Financial Goals: {', '.join(_label(goal) for goal in profile.goals)}")

    net_worth = sum(account.balance for account in accounts) + sum(position.value for position in positions)
    lines.append(f"Total Net Worth: ${net_worth:,.2f}")
    lines.append(f"Number of Accounts: {len(accounts)}")
    lines.append(f"Number of Investment Positions: {len(positions)}")
    return "\n".join(lines)


def _passage_heading(index: int, candidate: ScoredCandidate) -> str:
    passage = candidate.passage
    details = [label for label in (passage.section, passage.subsection) if label]
    source = passage.source_metadata.get("source")
    if source:
        details.append(str(source))
    suffix = f" ({' / '.join(details)})" if details else ""
    return f"[Passage {index}]{suffix}"


def build_context(candidates: list[ScoredCandidate]) -> str:
    return "\n\n".join(
        f"{_passage_heading(idx + 1, candidate)}\n{candidate.passage.text}" for idx, candidate in enumerate(candidates)
    )


def build_advice_prompt(
    question: str,
    response: RetrievalResponse,
    profile: UserProfile | None = None,
    accounts: list[Account] | None = None,
    positions: list[Position] | None = None,
) -> str:
    """Grounded advice prompt from retrieved passages and the user's situation."""
    expanded = response.expanded_query
    focus = []
    if expanded.priority_sections:
        focus.append(f"Priority sections: {', '.join(expanded.priority_sections)}")
    if expanded.expansion_terms:
        focus.append(f"Related terms: {', '.join(expanded.expansion_terms)}")
    context_block = build_context(response.candidates) or "No relevant passages were found."

    return (
        "You are a knowledgeable financial advisor. Answer only from the provided passages "
        "and the user's profile. If the passages do not cover the question, say so and name "
        "the details that would help.\n\n"
        f"USER PROFILE:\n{assemble_user_context(profile, accounts, positions)}\n\n"
        f"USER QUESTION: {question}\n\n"
        + ("\n".join(focus) + "\n\n" if focus else "")
        + f"PASSAGES:\n{context_block}\n\n"
        "Cite passages like [Passage 1]."
    )


def answer_with_context(
    generator: TextGenerator,
    question: str,
    response: RetrievalResponse,
    profile: UserProfile | None = None,
    accounts: list[Account] | None = None,
    positions: list[Position] | None = None,
) -> str:
    return generator.complete(build_advice_prompt(question, response, profile, accounts, positions))
