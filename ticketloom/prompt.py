"""Prompt rendering for ticket execution and test-fix retries."""

from __future__ import annotations

from ticketloom.tickets import Ticket

LOW_CONFIDENCE = 50
QA_OUTPUT_CHARS = 2000

_APPROACH = """## Approach — This is a complex change

Before editing, read the affected files and plan the change end to end.
Make the change in small, coherent steps and keep every intermediate state
buildable. Prefer the smallest diff that fully solves the task.
"""

_INSTRUCTIONS = """## Instructions

1. Make only the changes needed to complete the task.
2. Stay within the allowed paths; never touch forbidden paths.
3. Run the verification commands (if any) and fix what they report.
4. Do not commit; leave your changes in the working tree.
"""


def build_ticket_prompt(ticket: Ticket, context_blocks: list[str] | None = None) -> str:
    parts: list[str] = []

    if ticket.complexity.heavy or (ticket.confidence is not None and ticket.confidence < LOW_CONFIDENCE):
        parts.append(_APPROACH)

    # externally rendered context (guidelines, metadata, learnings), verbatim
    for block in context_blocks or []:
        if block.strip():
            parts.append(block)

    parts.append(f"# Task: {ticket.title}\n\n{ticket.description}".rstrip() + "\n")

    if ticket.allowed_paths:
        parts.append(
            "## Allowed Paths\n\nOnly modify files in these paths:\n"
            + "\n".join(f"- {p}" for p in ticket.allowed_paths) + "\n"
        )
    if ticket.forbidden_paths:
        parts.append(
            "## Forbidden Paths\n\nDo NOT modify files in these paths:\n"
            + "\n".join(f"- {p}" for p in ticket.forbidden_paths) + "\n"
        )
    if ticket.verification_commands:
        parts.append(
            "## Verification\n\nRun these commands to verify your change:\n"
            + "\n".join(f"- `{c}`" for c in ticket.verification_commands) + "\n"
        )

    parts.append(_INSTRUCTIONS)
    return "\n".join(parts)


def build_test_fix_prompt(ticket: Ticket, test_files: list[str], qa_output: str,
                          context_blocks: list[str] | None = None) -> str:
    """Ticket prompt (with the expanded scope) plus the test-fix request."""
    retry = [
        "## Test Fix Required",
        "",
        "Your changes broke these tests. Fix the tests to match the new behavior. "
        "Do NOT revert your changes.",
        "",
        "Failed test files:",
        *[f"- {f}" for f in test_files],
        "",
        "Error output:",
        "```",
        qa_output[-QA_OUTPUT_CHARS:],
        "```",
    ]
    return build_ticket_prompt(ticket, context_blocks) + "\n" + "\n".join(retry) + "\n"
