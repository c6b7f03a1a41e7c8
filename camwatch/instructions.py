"""Fixed texts the agent puts into the conversation."""

from __future__ import annotations

from typing import Mapping


CLARIFICATION_MESSAGE = (
    "Please tell me more precisely what you need, for example:\n"
    "- list all cameras\n"
    "- check the status of all cameras"
)

RETRY_PROMPT = "Please retry the request."

FAILURE_MESSAGE = "The request failed after several attempts. Please enter your request again."

STEP_BUDGET_MESSAGE = "The request took too many steps and was stopped. Please try a simpler request."

MEMORY_CONTEXT_HEADER = "Relevant past exchanges (most relevant first):"

REPORT_PROMPT_TEMPLATE = """Original user request: {user_input}

Tool results:
{tool_results}

Decide what to do next:
1. If the request is satisfied, reply to the user concisely.
2. If a tool is still needed to complete the request, call it."""


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render(template: str, values: Mapping[str, object]) -> str:
    return template.format_map(_SafeFormatDict({k: str(v) for k, v in values.items()}))


def memory_context(texts: list[str]) -> str:
    lines = [MEMORY_CONTEXT_HEADER]
    for text in texts:
        lines.append("- " + text.replace("\n", "\n  "))
    return "\n".join(lines)
