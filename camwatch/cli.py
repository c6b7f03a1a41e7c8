"""Terminal output for Camwatch."""

from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from camwatch.logging import get_logger

log = get_logger(__name__)

EXIT_COMMANDS = ("exit", "quit", "/exit", "/quit")

_ROLE_STYLES = {
    "user": "bold cyan",
    "assistant": "bold green",
    "system": "bold yellow",
    "tool": "magenta",
}


class TerminalUI:
    """Line-oriented terminal UI on top of a rich console."""

    def __init__(self, console: Console | None = None, show_tools: bool = False):
        self.console = console or Console(highlight=False)
        self.show_tools = show_tools
        self._runtime_status = "waiting"
        self._stream_text = ""
        self._assistant_output_active = False

    def print_welcome(self) -> None:
        self.console.print(Text("=== Camwatch ===", style="bold"))
        self.console.print("Ask about your cameras, e.g. 'check the status of all cameras'.")
        self.console.print("Type 'exit' to quit.")

    def _role_prefix(self, role: str) -> Text:
        return Text(f"[{role.upper()}]", style=_ROLE_STYLES.get(role, "bold"))

    def print_message(self, role: str, content: str) -> None:
        line = self._role_prefix(role)
        line.append(" ")
        line.append(content)
        self.console.print(line)

    def print_error(self, error: str) -> None:
        self.console.print(Text(f"Error: {error}", style="bold red"))

    def print_warning(self, warning: str) -> None:
        self.console.print(Text(f"Warning: {warning}", style="yellow"))

    def print_success(self, message: str) -> None:
        self.console.print(Text(f"OK: {message}", style="green"))

    def print_tokens(self, usage: dict[str, int]) -> None:
        prompt_tokens = int(usage.get("prompt_tokens", 0))
        completion_tokens = int(usage.get("completion_tokens", 0))
        if not prompt_tokens and not completion_tokens:
            return
        total = int(usage.get("total_tokens", prompt_tokens + completion_tokens))
        self.console.print(
            Text(f"Tokens: {prompt_tokens} + {completion_tokens} = {total}", style="dim")
        )

    def set_runtime_status(self, status: str) -> None:
        """Show phase changes as dim status lines."""
        status = (status or "").strip()
        if not status or status == self._runtime_status:
            return
        self._runtime_status = status
        if self._assistant_output_active:
            return
        self.console.print(Text(f"... {status}", style="dim"))

    def print_tool_result(self, tool_name: str, arguments: str, result: str) -> None:
        if not self.show_tools:
            return
        result_text = result[:200] + "..." if len(result) > 200 else result
        self.console.print(Text(f"[TOOL RESULT] {tool_name} {arguments}: {result_text}", style="magenta"))

    # streaming

    def begin_turn(self) -> None:
        self._stream_text = ""
        self._assistant_output_active = False
        self._runtime_status = "waiting"

    def print_streaming(self, chunk: str) -> None:
        if not self._assistant_output_active:
            self._assistant_output_active = True
            self.console.print(self._role_prefix("assistant"), end=" ")
        self._stream_text += chunk
        self.console.print(Text(chunk), end="")

    def end_assistant_stream(self) -> None:
        if self._assistant_output_active:
            self.console.print()
        self._assistant_output_active = False

    def finish_turn(self, reply: str) -> None:
        """Close the streamed line and print the reply unless it was streamed as-is."""
        streamed = self._stream_text.strip()
        self.end_assistant_stream()
        if reply and reply.strip() != streamed:
            self.print_message("assistant", reply)

    # memory commands

    def print_memory_stats(self, stats: dict[str, Any]) -> None:
        table = Table(title="Camwatch memory", show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in stats.items():
            table.add_row(str(key), str(value))
        self.console.print(table)

    def print_memory_hits(self, hits: list[tuple[Any, float]]) -> None:
        if not hits:
            self.console.print("No matching memories.")
            return
        table = Table(title="Memory search")
        table.add_column("ID", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("Created")
        table.add_column("Text")
        for record, score in hits:
            table.add_row(str(record.id), f"{score:.3f}", record.created_at, record.text)
        self.console.print(table)

    def prompt(self, prompt_text: str = "> ") -> str:
        return self.console.input(prompt_text)

    def confirm(self, message: str) -> bool:
        response = self.console.input(f"{message} (y/n) ").lower().strip()
        return response in ("y", "yes")
