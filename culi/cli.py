"""
Terminal front end for the Culi bookkeeping assistant.

Usage:
    culi workspaces
    culi workspaces --create "Quán Cafe Sáng"
    culi chat 3 "Cho tôi xem doanh thu tháng này"
    culi chat 3              # interactive
    culi history 3
    culi apps 3 --test 7
    culi me

The backend URL and token come from CULI_API_BASE_URL / CULI_API_TOKEN (or a
.env file read by the settings); ``--username``/``--password`` log in for the
duration of the command instead.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from rich.console import Console
from rich.live import Live

from .api_client import CuliClient
from .chat import ChatSession
from .connections import ConnectionManager
from .exceptions import ChatBusyError, CuliAPIError, CuliAuthError, CuliError
from .logging_config import initialize_logging
from .notifications import Notification, Notifier
from .reasoning_models import ChatMessage
from .render import chat_message_panel, connections_table, workspaces_table

logger = logging.getLogger(__name__)

console = Console()

EXIT_COMMANDS = {"exit", "quit", ":q"}


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="culi",
        description="Chat with Culi, the AI bookkeeping assistant",
    )
    parser.add_argument("--username", help="Log in with this username before running the command")
    parser.add_argument("--password", help="Password for --username")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    workspaces = subparsers.add_parser("workspaces", help="List, create, rename or delete workspaces")  # noqa: E501
    group = workspaces.add_mutually_exclusive_group()
    group.add_argument("--create", metavar="NAME", help="Create a workspace")
    group.add_argument("--rename", nargs=2, metavar=("ID", "NAME"), help="Rename a workspace")
    group.add_argument("--delete", type=int, metavar="ID", help="Delete a workspace")

    chat = subparsers.add_parser("chat", help="Send a message (interactive when omitted)")
    chat.add_argument("workspace_id", type=int)
    chat.add_argument("message", nargs="?", help="Message to send")
    chat.add_argument(
        "--no-stream",
        action="store_true",
        help="Use the non-streaming endpoint (no reasoning trace)",
    )

    history = subparsers.add_parser("history", help="Show the workspace's conversation")
    history.add_argument("workspace_id", type=int)

    apps = subparsers.add_parser("apps", help="List, test or delete connected apps")
    apps.add_argument("workspace_id", type=int)
    apps_group = apps.add_mutually_exclusive_group()
    apps_group.add_argument("--test", type=int, metavar="CONNECTION_ID", help="Test a connection")
    apps_group.add_argument("--delete", type=int, metavar="CONNECTION_ID", help="Delete a connection")  # noqa: E501

    subparsers.add_parser("me", help="Show the logged-in user")
    return parser


def print_notification(notification: Notification) -> None:
    """Print a notification the way a toast would show it."""
    style = "bold red" if notification.is_error else "bold green"
    text = f"[{style}]{notification.title}[/{style}]"
    if notification.description:
        text += f" {notification.description}"
    console.print(text)


async def run_turn(session: ChatSession, content: str, stream: bool = True) -> ChatMessage | None:
    """Send one message and render the assistant's reply as it arrives."""
    if not stream:
        with console.status("Processing..."):
            reply = await session.send_blocking(content)
        if reply is not None:
            console.print(chat_message_panel(reply))
        return reply

    with Live(console=console, refresh_per_second=8, transient=False) as live:
        def update(message: ChatMessage) -> None:
            live.update(chat_message_panel(message, streaming=True))

        reply = await session.send(content, on_update=update)
        if reply is not None:
            live.update(chat_message_panel(reply))
    return reply


async def chat_loop(session: ChatSession, stream: bool) -> None:
    """Interactive chat until EOF or an exit command."""
    console.print("[dim]Type a message, or 'exit' to quit.[/dim]")
    while True:
        try:
            content = await asyncio.to_thread(console.input, "[bold blue]> [/bold blue]")
        except (EOFError, KeyboardInterrupt):
            break
        if content.strip().lower() in EXIT_COMMANDS:
            break
        try:
            await run_turn(session, content, stream=stream)
        except ChatBusyError as e:
            console.print(f"[yellow]{e}[/yellow]")


async def _workspaces(client: CuliClient, args: argparse.Namespace) -> None:
    if args.create:
        workspace = await client.create_workspace(args.create)
        console.print(f"Created workspace [bold]{workspace.name}[/bold] ({workspace.id})")
    elif args.rename:
        workspace_id, name = args.rename
        workspace = await client.update_workspace(int(workspace_id), name)
        console.print(f"Renamed workspace {workspace.id} to [bold]{workspace.name}[/bold]")
    elif args.delete is not None:
        await client.delete_workspace(args.delete)
        console.print(f"Deleted workspace {args.delete}")
    else:
        console.print(workspaces_table(await client.list_workspaces()))


async def _chat(client: CuliClient, args: argparse.Namespace, notifier: Notifier) -> None:
    session = ChatSession(client, args.workspace_id, notifier=notifier)
    await session.load_history()
    if args.message:
        await run_turn(session, args.message, stream=not args.no_stream)
    else:
        for message in session.messages[-10:]:
            console.print(chat_message_panel(message))
        await chat_loop(session, stream=not args.no_stream)


async def _history(client: CuliClient, args: argparse.Namespace, notifier: Notifier) -> None:
    session = ChatSession(client, args.workspace_id, notifier=notifier)
    messages = await session.load_history()
    if not messages:
        console.print("[dim]No messages yet.[/dim]")
    for message in messages:
        console.print(chat_message_panel(message))


async def _apps(client: CuliClient, args: argparse.Namespace, notifier: Notifier) -> None:
    manager = ConnectionManager(client, args.workspace_id, notifier=notifier)
    if args.test is not None:
        await manager.test(args.test)
    elif args.delete is not None:
        await manager.delete(args.delete)
    else:
        supported, connections = await manager.fetch_all()
        console.print(connections_table(supported, connections))


async def _me(client: CuliClient) -> None:
    user = await client.get_current_user()
    console.print(f"[bold]{user.username}[/bold] (id {user.id}, since {user.created_at})")


async def run(args: argparse.Namespace) -> int:
    """Execute the parsed command and return the process exit code."""
    notifier = Notifier()
    notifier.subscribe(print_notification)

    async with CuliClient() as client:
        try:
            if args.username:
                await client.login(args.username, args.password or "")
            if args.command == "workspaces":
                await _workspaces(client, args)
            elif args.command == "chat":
                await _chat(client, args, notifier)
            elif args.command == "history":
                await _history(client, args, notifier)
            elif args.command == "apps":
                await _apps(client, args, notifier)
            elif args.command == "me":
                await _me(client)
        except CuliAuthError:
            console.print("[red]Unauthorized - please login again (--username/--password).[/red]")
            return 2
        except CuliAPIError as e:
            console.print(f"[red]Error ({e.status_code}): {e.detail}[/red]")
            return 1
        except CuliError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1
        except ValueError as e:
            console.print(f"[red]Invalid input: {e}[/red]")
            return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)
    initialize_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
