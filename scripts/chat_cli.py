#!/usr/bin/env python3
"""Interactive chat CLI for testing the deep search service."""

import json
import os
import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt


class ChatCLI:
    """Interactive chat interface for the deep search service."""

    def __init__(self, base_url: str = "http://localhost:8000", token: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.token = token or os.getenv("DEEPSEARCH_TOKEN", "")
        self.chat_id: str | None = None
        self.messages: list[dict] = []
        self.console = Console()
        self.client = httpx.Client(timeout=90.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]🔎 Deep Search - Interactive Chat[/bold blue]\n"
                "Ask a question; the assistant searches the web and cites its sources.\n"
                "Commands: /help, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to deep search service[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/clear":
                    self.chat_id = None
                    self.messages = []
                    self.console.print("[yellow]🔄 Chat cleared[/yellow]")
                    continue
                elif user_input.strip() == "":
                    continue

                answer = self._send_message(user_input)
                if answer:
                    self._display_response(answer)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _send_message(self, message: str) -> str | None:
        """Send the conversation and follow the data stream until it finishes."""
        self.messages.append({"role": "user", "content": message})
        payload = {"messages": self.messages, "isNewChat": self.chat_id is None}
        if self.chat_id:
            payload["chatId"] = self.chat_id

        text_parts: list[str] = []
        try:
            with self.client.stream(
                "POST",
                f"{self.base_url}/api/chat",
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
            ) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
                    self.messages.pop()
                    return None

                for line in response.iter_lines():
                    self._handle_part(line, text_parts)

        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            self.messages.pop()
            return None

        answer = "".join(text_parts)
        self.messages.append({"role": "assistant", "content": answer})
        return answer

    def _handle_part(self, line: str, text_parts: list[str]) -> None:
        """Handle one `<code>:<json>` line of the data stream."""
        code, sep, raw = line.partition(":")
        if not sep:
            return
        value = json.loads(raw)

        if code == "0":
            text_parts.append(value)
        elif code == "2":
            for item in value:
                if item.get("type") == "NEW_CHAT_CREATED":
                    self.chat_id = item["chatId"]
                    self.console.print(f"[dim]🆕 New chat {self.chat_id}[/dim]")
        elif code == "9":
            self.console.print(f"[dim]🔧 {value['toolName']} {json.dumps(value['args'])}[/dim]")
        elif code == "3":
            self.console.print(f"[red]❌ {value}[/red]")
        elif code == "d":
            usage = value.get("usage", {})
            self.console.print(
                f"[dim]Finished ({value['finishReason']}), "
                f"tokens in/out: {usage.get('promptTokens')}/{usage.get('completionTokens')}[/dim]"
            )

    def _display_response(self, answer: str) -> None:
        """Display the answer with markdown formatting."""
        self.console.print(
            Panel(
                Markdown(answer),
                title="[bold green]🤖 Deep Search[/bold green]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /clear - Start a new chat
• /quit or /exit - Exit the chat

[bold]Example Questions:[/bold]
1. "What is the latest stable version of Rust?"
2. "Compare the two most recent Python releases"

[bold]Tips:[/bold]
• Set DEEPSEARCH_TOKEN to a token listed in the server's DEEPSEARCH_API_TOKENS
• Tool calls are shown as they happen; the answer appears when the stream finishes
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    chat = ChatCLI(base_url)
    chat.start()


if __name__ == "__main__":
    main()
