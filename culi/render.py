"""Rich renderables for chat messages and their reasoning steps."""

from datetime import datetime

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import ConnectedApp, SupportedApp, Workspace
from .reasoning_models import (
    ChatMessage,
    MessageRole,
    ReasoningStep,
    ReasoningStepStatus,
    ReasoningStepType,
)

STEP_ICONS: dict[ReasoningStepType, str] = {
    ReasoningStepType.SEARCH: "🔍",
    ReasoningStepType.HISTORY: "🕘",
    ReasoningStepType.MCP: "🗄️",
    ReasoningStepType.STRATEGY: "📄",
    ReasoningStepType.EXECUTE: "⚡",
    ReasoningStepType.INTENT: "🧠",
    ReasoningStepType.PLAN: "🎯",
    ReasoningStepType.STEP: "⚡",
    ReasoningStepType.WEB_SEARCH: "🔍",
    ReasoningStepType.APP_DATA: "🗄️",
}

STATUS_STYLES: dict[ReasoningStepStatus, tuple[str, str]] = {
    ReasoningStepStatus.PENDING: ("…", "dim"),
    ReasoningStepStatus.PROCESSING: ("⏳", "yellow"),
    ReasoningStepStatus.COMPLETED: ("✅", "green"),
    ReasoningStepStatus.ERROR: ("❌", "red"),
}


def format_timestamp(timestamp: str) -> str:
    """Format an ISO timestamp as local ``HH:MM``; unparseable values pass through."""
    try:
        return datetime.fromisoformat(timestamp).astimezone().strftime("%H:%M")
    except ValueError:
        return timestamp


def reasoning_step_line(step: ReasoningStep) -> Text:
    """Render one reasoning step as a single line plus optional details."""
    status_icon, style = STATUS_STYLES[step.status]
    line = Text()
    line.append(f"{STEP_ICONS.get(step.type, '•')} ")
    line.append(step.title, style="bold")
    line.append(f"  {status_icon}", style=style)
    if step.details:
        line.append(f"\n   {step.details}", style="dim")
    return line


def chat_message_panel(message: ChatMessage, streaming: bool = False) -> Panel:
    """Render a chat message, with its reasoning trace for assistant turns."""
    is_user = message.role == MessageRole.USER
    parts: list[RenderableType] = []

    if not is_user and message.reasoning:
        parts.append(Text(f"Reasoning ({len(message.reasoning)} steps)", style="italic dim"))
        parts.extend(reasoning_step_line(step) for step in message.reasoning)
        parts.append(Text(""))

    content = message.content
    if not content and streaming:
        content = "Processing..."
    parts.append(Text(content, style="red" if content.startswith("Error: ") else ""))

    title = "You" if is_user else "Culi"
    return Panel(
        Group(*parts),
        title=f"{title} · {format_timestamp(message.timestamp)}",
        title_align="right" if is_user else "left",
        border_style="blue" if is_user else "green",
    )


def workspaces_table(workspaces: list[Workspace]) -> Table:  # noqa: D103
    table = Table(title="Workspaces")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Created")
    for workspace in workspaces:
        table.add_row(str(workspace.id), workspace.name, workspace.created_at)
    return table


def connections_table(supported: list[SupportedApp], connections: list[ConnectedApp]) -> Table:
    """Supported apps joined with the workspace's connection to each, if any."""
    by_app = {connection.app_id: connection for connection in connections}
    table = Table(title="Connected apps")
    table.add_column("App")
    table.add_column("Category")
    table.add_column("Method")
    table.add_column("Connection", justify="right")
    table.add_column("Status")
    for app in supported:
        connection = by_app.get(app.id)
        status = connection.status if connection else "not connected"
        style = {"active": "green", "error": "red"}.get(status, "dim")
        table.add_row(
            app.name,
            app.category,
            app.connection_method,
            str(connection.id) if connection else "-",
            Text(status, style=style),
        )
    return table
