"""Agent orchestration for Camwatch."""

from typing import Any, Callable

from camwatch.agent_nodes_mixin import AgentNodesMixin
from camwatch.agent_report_mixin import AgentReportMixin
from camwatch.config import Config, get_config
from camwatch.dialogue import AgentState, Event, Phase, transition
from camwatch.exceptions import MemoryStoreError
from camwatch.instructions import STEP_BUDGET_MESSAGE, memory_context
from camwatch.llm import LLMProvider, Message, provider_from_config
from camwatch.logging import get_logger
from camwatch.memory import MemoryStoreHandle
from camwatch.tools import ToolRegistry, build_default_registry

log = get_logger(__name__)


class Agent(AgentNodesMixin, AgentReportMixin):
    """Runs one dialogue turn per user input and keeps long-term memory."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        tools: ToolRegistry | None = None,
        memory: MemoryStoreHandle | None = None,
        config: Config | None = None,
        status_callback: Callable[[str], None] | None = None,
        stream_callback: Callable[[str], None] | None = None,
        tool_output_callback: Callable[[str, str, str], None] | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Reasoning service client; built from config when omitted
            tools: Tool registry; the built-in tools when omitted
            memory: Memory store handle; built from config when omitted and
                ``memory.enabled`` is set
            config: Configuration; the global config when omitted
            status_callback: Receives the phase name as the turn advances
            stream_callback: Receives content fragments as they stream in
            tool_output_callback: Receives (tool name, raw arguments, output)
        """
        self.config = config or get_config()
        self.provider = provider if provider is not None else provider_from_config(self.config)
        self.tools = tools if tools is not None else build_default_registry(self.config)
        if memory is None and self.config.memory.enabled:
            memory = MemoryStoreHandle.from_config(self.config)
        self.memory = memory
        self.status_callback = status_callback
        self.stream_callback = stream_callback
        self.tool_output_callback = tool_output_callback
        self.last_usage: dict[str, int] = self._empty_usage()
        self.total_usage: dict[str, int] = self._empty_usage()
        self._handlers: dict[Phase, Callable[[AgentState], Any]] = {
            Phase.ROUTER: self._router_node,
            Phase.GETLIST: self._getlist_node,
            Phase.CHECK: self._check_node,
            Phase.REPORT: self._report_node,
            Phase.ERROR: self._error_node,
        }

    @staticmethod
    def _empty_usage() -> dict[str, int]:
        return {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        }

    def _finalize_turn_usage(self, turn_usage: dict[str, int]) -> None:
        """Keep the last turn's usage and add it to the running totals."""
        self.last_usage = self._empty_usage()
        for key in self.last_usage:
            value = int(turn_usage.get(key, 0))
            self.last_usage[key] = value
            self.total_usage[key] += value

    def _set_runtime_status(self, status: str) -> None:
        """Forward runtime status updates when callback is configured."""
        if self.status_callback:
            try:
                self.status_callback(status)
            except Exception:
                log.debug("Status callback failed", status=status, exc_info=True)

    def _emit_stream(self, fragment: str) -> None:
        if self.stream_callback:
            try:
                self.stream_callback(fragment)
            except Exception:
                log.debug("Stream callback failed", exc_info=True)

    def _emit_tool_output(self, tool_name: str, arguments: str, output: str) -> None:
        """Forward raw tool output to UI callback when configured."""
        if not self.tool_output_callback:
            return
        try:
            self.tool_output_callback(tool_name, arguments, output)
        except Exception:
            log.debug("Tool output callback failed", tool=tool_name, exc_info=True)

    def _initial_messages(self, user_input: str, recalled: list[str]) -> list[Message]:
        messages = [Message(role="system", content=self.config.agent.system_prompt)]
        if recalled:
            messages.append(Message(role="system", content=memory_context(recalled)))
        messages.append(Message(role="user", content=user_input))
        return messages

    async def run_turn(self, user_input: str, recalled: list[str] | None = None) -> AgentState:
        """Drive the dialogue machine from ``router`` to ``end``.

        Returns the final state; ``state.reply`` is the answer for the user.
        """
        state = AgentState(
            user_input=user_input,
            messages=self._initial_messages(user_input, recalled or []),
        )
        max_steps = int(self.config.agent.max_steps)

        while state.phase is not Phase.END:
            if state.steps >= max_steps:
                log.warning("Step budget spent", steps=state.steps, phase=state.phase.value)
                state.append(Message(role="assistant", content=STEP_BUDGET_MESSAGE))
                state.valid_flow = False
                state.phase = Phase.END
                break

            phase = state.phase
            state.steps += 1
            state.visited.append(phase)
            self._set_runtime_status(phase.value)

            event: Event = await self._handlers[phase](state)
            step = transition(phase, event)
            log.debug("Transition", phase=phase.value, trigger=event.value, next=step.next_phase.value)
            state.apply(step)

        state.visited.append(Phase.END)
        self._set_runtime_status(Phase.END.value)
        self._finalize_turn_usage(state.usage)
        return state

    async def recall(self, user_input: str) -> list[str]:
        """Texts of past exchanges most similar to ``user_input``."""
        if self.memory is None:
            return []
        try:
            records = await self.memory.search(user_input, int(self.config.memory.top_k))
        except MemoryStoreError as e:
            log.warning("Memory recall failed", error=str(e))
            return []
        return [record.text for record in records]

    async def remember(self, state: AgentState) -> None:
        """Store a completed exchange. Failures are logged, never raised."""
        if self.memory is None:
            return
        text = f"User: {state.user_input}\nAssistant: {state.reply}"
        metadata = {
            "phases": [phase.value for phase in state.visited],
            "checked": len(state.results),
        }
        try:
            await self.memory.add(text, metadata)
        except MemoryStoreError as e:
            log.warning("Memory write failed", error=str(e))

    async def handle(self, user_input: str) -> AgentState:
        """Recall, run one turn, and remember it when the flow was valid."""
        recalled = await self.recall(user_input)
        state = await self.run_turn(user_input, recalled)
        if state.valid_flow and state.reply:
            await self.remember(state)
        return state

    async def close(self) -> None:
        await self.provider.close()
