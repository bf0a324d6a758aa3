"""Human-readable Spindle explanations and remediation advice."""

from __future__ import annotations

from ticketloom.config_loader import SpindleConfig
from ticketloom.spindle.state import SpindleReason, SpindleResult

_RECOMMENDATIONS: dict[SpindleReason, list[str]] = {
    SpindleReason.TOKEN_BUDGET: [
        "Raise spindle.token_budget_abort if the ticket legitimately needs more context",
        "Break the ticket into smaller tickets",
        "Narrow allowed_paths so the agent reads less of the repository",
    ],
    SpindleReason.STALLING: [
        "The agent produced output without changing files; it may be stuck",
        "Review the ticket description for ambiguity",
        "Lower spindle.max_stall_iterations to fail faster",
    ],
    SpindleReason.TIME_STALL: [
        "No file changes for too long; check for hung commands or slow tooling",
        "Raise spindle.max_stall_minutes for long-running builds, or set it to 0 to disable",
    ],
    SpindleReason.OSCILLATION: [
        "The agent is flip-flopping between two versions of the same change",
        "Clarify the expected solution in the ticket description",
        "Add constraints that rule out one of the alternatives",
    ],
    SpindleReason.REPETITION: [
        "The agent keeps repeating near-identical output",
        "Check that the ticket is achievable within its allowed paths",
        "Adjust spindle.similarity_threshold if this was a false positive",
    ],
    SpindleReason.SPINNING: [
        "High activity without progress",
        "Simplify the ticket",
        "Check for circular dependencies between the touched files",
    ],
    SpindleReason.QA_PING_PONG: [
        "Fixing one QA failure keeps breaking another",
        "Fix one of the failing checks completely before the other",
        "Check whether the two fixes conflict with each other",
    ],
    SpindleReason.COMMAND_FAILURE: [
        "The same command keeps failing with the same error",
        "This usually points at the environment, not the change: verify the command runs on a clean checkout",
        "Fix the environment, then re-queue the ticket",
    ],
}


def spindle_recommendations(result: SpindleResult) -> list[str]:
    if result.reason is None:
        return []
    return list(_RECOMMENDATIONS.get(result.reason, []))


def spindle_thresholds(config: SpindleConfig) -> dict[str, float | int]:
    return config.model_dump(exclude={"enabled"})


def format_spindle_result(result: SpindleResult) -> str:
    if not result.triggered or result.reason is None:
        return "Spindle: no loop detected"

    diag = result.diagnostics
    label = "Spindle blocked (needs human)" if result.should_block else "Spindle loop detected"
    lines = [
        f"{label}: {result.reason.value}",
        f"  Confidence: {result.confidence:.0%}",
        f"  Estimated tokens: {diag.estimated_tokens:,}",
        f"  Iterations without change: {diag.iterations_without_change}",
    ]

    if diag.oscillation_pattern:
        lines.append(f"  Pattern: {diag.oscillation_pattern}")
    if diag.ping_pong_pattern:
        lines.append(f"  Pattern: {diag.ping_pong_pattern}")
    if diag.repeated_patterns:
        lines.append("  Repeated phrases:")
        lines.extend(f"    - {p}" for p in diag.repeated_patterns[:3])
    if diag.command_signature:
        lines.append(f"  Command signature: {diag.command_signature}")
    if diag.minutes_since_progress is not None:
        lines.append(
            f"  Minutes since progress: {diag.minutes_since_progress} (limit {diag.max_stall_minutes})"
        )
    if diag.file_edit_warnings:
        lines.append("  File churn:")
        lines.extend(f"    - {w}" for w in diag.file_edit_warnings[:3])

    return "\n".join(lines)
