"""Report node: turn check results (or a camera listing) into the answer."""

import json

from camwatch.dialogue import AgentState, CheckResult, Event
from camwatch.exceptions import LLMError
from camwatch.instructions import REPORT_PROMPT_TEMPLATE, render
from camwatch.llm import Message
from camwatch.logging import get_logger
from camwatch.tools.cameras import Target

log = get_logger(__name__)


def _clip(text: str, limit: int) -> str:
    cleaned = " ".join((text or "").split())
    if limit <= 0 or len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit].rstrip() + "..."


def render_report(
    results: list[CheckResult],
    targets: list[Target],
    detail_chars: int = 200,
) -> str:
    """Deterministic summary of a turn's tool work.

    With check results: a count line, then one line per target in check
    order. Without results: the listed cameras, or a note that none exist.
    """
    if not results:
        if not targets:
            return "No cameras found."
        lines = [f"Found {len(targets)} camera(s):"]
        lines.extend(f"- {target.name}: {target.address}" for target in targets)
        return "\n".join(lines)

    ok = sum(1 for result in results if result.status == "success")
    failed = len(results) - ok
    lines = [f"Checked {len(results)} camera(s): {ok} OK, {failed} failed."]
    for result in results:
        status = "OK" if result.status == "success" else "FAILED"
        lines.append(f"- {result.name}: {status} - {_clip(result.detail, detail_chars)}")
    return "\n".join(lines)


class AgentReportMixin:
    """Report generation, template or model-written."""

    def _template_report(self, state: AgentState) -> str:
        return render_report(
            state.results,
            state.pending_targets,
            detail_chars=int(self.config.agent.report_detail_chars),
        )

    def _report_payload(self, state: AgentState) -> str:
        if state.results:
            return json.dumps([r.as_dict() for r in state.results], ensure_ascii=False, indent=2)
        return json.dumps(
            [{"name": t.name, "address": t.address} for t in state.pending_targets],
            ensure_ascii=False,
            indent=2,
        )

    async def _report_node(self, state: AgentState) -> Event:
        if self.config.agent.report_mode != "llm":
            state.append(Message(role="assistant", content=self._template_report(state)))
            return Event.REPORTED
        return await self._model_report(state)

    async def _model_report(self, state: AgentState) -> Event:
        """Ask the model for the answer; it may also request more camera work."""
        # imported here to keep the mixins free of a module cycle
        from camwatch.agent_nodes_mixin import classify_tool_request

        prompt = render(REPORT_PROMPT_TEMPLATE, {
            "user_input": state.user_input,
            "tool_results": self._report_payload(state),
        })
        try:
            response = await self._round_trip([Message(role="user", content=prompt)])
        except LLMError as e:
            log.warning("Report round trip failed, using template", error=str(e))
            state.append(Message(role="assistant", content=self._template_report(state)))
            return Event.REPORTED
        state.add_usage(response.usage)

        route = classify_tool_request(response)
        if route in ("both", "list", "check"):
            log.info("Report requested more tools", route=route)
            await self._accept_tool_request(state, response)
            return {
                "both": Event.REPORT_NEEDS_LIST_AND_CHECK,
                "list": Event.REPORT_NEEDS_LIST,
                "check": Event.REPORT_NEEDS_CHECK,
            }[route]

        if route == "other":
            # no route back to report for these; answer them and close with the template
            await self._accept_tool_request(state, response)
            state.append(Message(role="assistant", content=self._template_report(state)))
            return Event.REPORTED

        content = (response.content or "").strip()
        state.append(Message(role="assistant", content=content or self._template_report(state)))
        return Event.REPORTED
