"""Round trips and the router/getlist/check/error nodes of a turn."""

import asyncio
import json

from camwatch.dialogue import AgentState, CheckResult, Event, Phase
from camwatch.exceptions import LLMError, LLMTimeoutError, ToolArgumentError
from camwatch.instructions import CLARIFICATION_MESSAGE, FAILURE_MESSAGE, RETRY_PROMPT
from camwatch.llm import LLMResponse, Message, ToolCall
from camwatch.llm.streaming import collect_stream
from camwatch.logging import get_logger
from camwatch.tools import CHECK_TOOL_NAME, LIST_TOOL_NAME, parse_camera_listing
from camwatch.tools.registry import parse_arguments

log = get_logger(__name__)

CAMERA_TOOLS = (LIST_TOOL_NAME, CHECK_TOOL_NAME)


def classify_tool_request(response: LLMResponse) -> str | None:
    """Name the route a response asks for: both, list, check, other, or None."""
    names = response.tool_names()
    has_list = LIST_TOOL_NAME in names
    has_check = CHECK_TOOL_NAME in names
    if has_list and has_check:
        return "both"
    if has_list:
        return "list"
    if has_check:
        return "check"
    if names:
        return "other"
    return None


class AgentNodesMixin:
    """Node handlers. Each returns the ``Event`` describing what happened."""

    async def _round_trip(self, messages: list[Message], with_tools: bool = True) -> LLMResponse:
        """One request to the reasoning service, bounded by ``model.timeout``.

        Raises:
            LLMError (including LLMTimeoutError) on any transport problem
        """
        tools = self.tools.get_definitions() if with_tools else None
        timeout = float(self.config.model.timeout)
        if self.config.model.streaming:
            work = collect_stream(
                self.provider.complete_streaming(messages, tools=tools),
                model=self.provider.model,
                on_content=self._emit_stream,
            )
        else:
            work = self.provider.complete(messages, tools=tools)
        try:
            return await asyncio.wait_for(work, timeout=timeout)
        except asyncio.TimeoutError:
            raise LLMTimeoutError(timeout) from None

    def _answer_call(self, state: AgentState, call: ToolCall, content: str) -> None:
        state.append(Message(role="tool", content=content, tool_call_id=call.id, name=call.name))
        state.open_calls = [c for c in state.open_calls if c is not call]
        self._emit_tool_output(call.name, call.arguments, content)

    async def _run_other_tools(self, state: AgentState) -> None:
        """Execute requested tools outside the camera flow and answer them inline."""
        for call in list(state.open_calls):
            if call.name in CAMERA_TOOLS:
                continue
            output = await self.tools.invoke(call.name, call.arguments)
            self._answer_call(state, call, output)

    async def _accept_tool_request(self, state: AgentState, response: LLMResponse) -> None:
        state.append(Message(
            role="assistant",
            content=response.content or None,
            tool_calls=list(response.tool_calls),
        ))
        state.open_calls = list(response.tool_calls)
        await self._run_other_tools(state)

    async def _router_node(self, state: AgentState) -> Event:
        try:
            response = await self._round_trip(state.messages)
        except LLMError as e:
            log.warning("Router round trip failed", error=str(e))
            return Event.TRANSPORT_FAILURE
        state.add_usage(response.usage)

        route = classify_tool_request(response)
        log.info("Router decision", route=route or ("text" if response.content else "none"))
        if route is not None:
            await self._accept_tool_request(state, response)
            return {
                "both": Event.LIST_AND_CHECK,
                "list": Event.LIST_ONLY,
                "check": Event.CHECK_ONLY,
                "other": Event.OTHER_TOOLS,
            }[route]

        if response.content:
            state.append(Message(role="assistant", content=response.content))
            return Event.TEXT_REPLY

        state.append(Message(role="assistant", content=CLARIFICATION_MESSAGE))
        return Event.UNROUTABLE

    async def _getlist_node(self, state: AgentState) -> Event:
        calls = [call for call in state.open_calls if call.name == LIST_TOOL_NAME]
        raw_arguments = calls[0].arguments if calls else "{}"

        listing = await self.tools.invoke(LIST_TOOL_NAME, raw_arguments)
        state.pending_targets = parse_camera_listing(listing)
        state.listed = True
        log.info("Cameras listed", count=len(state.pending_targets))

        for call in calls:
            self._answer_call(state, call, listing)

        if state.next_action is Phase.CHECK:
            return Event.LISTED_THEN_CHECK
        return Event.LISTED_THEN_REPORT

    async def _check_one(self, name: str, url: str) -> CheckResult:
        self._set_runtime_status(f"check:{name}")
        result = await self.tools.run(CHECK_TOOL_NAME, {"url": url, "name": name})
        return CheckResult(
            name=name,
            status="success" if result.success else "error",
            detail=result.as_text(),
        )

    async def _check_node(self, state: AgentState) -> Event:
        calls = [call for call in state.open_calls if call.name == CHECK_TOOL_NAME]
        results: list[CheckResult] = []
        explicit: list[tuple[ToolCall, str, str]] = []

        for call in calls:
            try:
                arguments = parse_arguments(CHECK_TOOL_NAME, call.arguments)
            except ToolArgumentError as e:
                log.warning("Malformed check arguments", call_id=call.id, raw=call.arguments)
                results.append(CheckResult(name=f"{CHECK_TOOL_NAME} ({call.id})", status="error", detail=str(e)))
                self._answer_call(state, call, f"Error: {e}")
                continue
            name = arguments.get("name")
            url = arguments.get("url")
            if isinstance(name, str) and name.strip() and isinstance(url, str) and url.strip():
                explicit.append((call, name.strip(), url.strip()))

        if explicit:
            # sequential on purpose: ordering and one probe at a time
            for call, name, url in explicit:
                checked = await self._check_one(name, url)
                results.append(checked)
                self._answer_call(state, call, checked.detail)
        else:
            for target in state.pending_targets:
                results.append(await self._check_one(target.name, target.address))

        if not results and not state.listed:
            log.info("No camera targets, listing first")
            return Event.NO_TARGETS

        summary = json.dumps([r.as_dict() for r in results], ensure_ascii=False)
        for call in [c for c in state.open_calls if c.name == CHECK_TOOL_NAME]:
            self._answer_call(state, call, summary)

        state.results = results
        log.info("Cameras checked", count=len(results))
        return Event.CHECKED

    async def _error_node(self, state: AgentState) -> Event:
        attempts = state.retry_count + 1
        log.warning("Turn error", attempt=attempts, max_retries=self.config.agent.max_retries)
        if attempts >= int(self.config.agent.max_retries):
            state.append(Message(role="assistant", content=FAILURE_MESSAGE))
            return Event.RETRIES_EXHAUSTED
        state.append(Message(role="user", content=RETRY_PROMPT))
        return Event.RETRY
