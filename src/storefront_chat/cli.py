"""
Command-line client for storefront chat.

Usage:
    storefront-chat conversations            # List conversations with unread counts
    storefront-chat unread                   # Show the unread badge total
    storefront-chat start-chat STORE_ID      # Get or create the conversation with a store
    storefront-chat history CONVERSATION_ID  # Print a conversation's messages
    storefront-chat send CONVERSATION_ID TEXT
    storefront-chat watch [CONVERSATION_ID]  # Stream live messages until Ctrl-C

Configuration comes from STOREFRONT_CHAT_* environment variables (or .env).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, NoReturn, Optional, TypeVar

import click

from .client import ChatClient
from .config import Settings
from .errors import ChatError
from .events import EventType
from .models import Conversation, Message, NewMessageEvent

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

T = TypeVar("T")


def fail(msg: str, code: int = 1) -> NoReturn:
    click.echo(f"{click.style('[ERROR]', fg='red')} {msg}", err=True)
    sys.exit(code)


def format_conversation(conversation: Conversation, viewer_id: Optional[str]) -> str:
    unread = conversation.unread_for(viewer_id)
    name = conversation.other_party_name(viewer_id)
    badge = click.style(f" ({unread})", fg="yellow", bold=True) if unread else ""
    line = f"[{conversation.conversation_id}] {name}{badge}"
    preview = conversation.last_message
    if preview and preview.text:
        prefix = "You: " if viewer_id is not None and preview.sender_id == viewer_id else ""
        line += f" - {prefix}{preview.text}"
    return line


def format_message(message: Message, viewer_id: Optional[str]) -> str:
    stamp = message.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
    own = viewer_id is not None and message.sender_id == viewer_id
    if own:
        who = "you"
    elif message.sender and message.sender.full_name:
        who = message.sender.full_name
    else:
        who = message.sender_id or "unknown"
    status = " (pending)" if message.is_pending else ""
    return f"{click.style(stamp, dim=True)} {click.style(str(who), fg='cyan')}: {message.text}{status}"


def _run_with_client(
    settings: Settings,
    action: Callable[[ChatClient], Awaitable[T]],
    *,
    connect: bool = False,
) -> T:
    async def runner() -> T:
        chat = ChatClient(settings)
        try:
            await chat.start(connect=connect)
            return await action(chat)
        finally:
            await chat.aclose()

    try:
        return asyncio.run(runner())
    except ChatError as e:
        fail(e.message)


@click.group()
@click.option("--api-url", default=None, help="Override STOREFRONT_CHAT_API_BASE_URL.")
@click.option("--socket-url", default=None, help="Override STOREFRONT_CHAT_SOCKET_URL.")
@click.option("--log-level", default=None, help="Override STOREFRONT_CHAT_LOG_LEVEL.")
@click.pass_context
def cli(
    ctx: click.Context,
    api_url: Optional[str],
    socket_url: Optional[str],
    log_level: Optional[str],
) -> None:
    """Storefront chat client."""
    overrides: dict[str, Any] = {}
    if api_url:
        overrides["api_base_url"] = api_url
    if socket_url:
        overrides["socket_url"] = socket_url
    if log_level:
        overrides["log_level"] = log_level
    settings = Settings(**overrides)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO), format=LOG_FORMAT
    )
    ctx.obj = settings


@cli.command()
@click.pass_obj
def conversations(settings: Settings) -> None:
    """List conversations."""
    items = _run_with_client(settings, lambda chat: chat.list_conversations())
    if not items:
        click.echo("No conversations yet.")
        return
    for conversation in items:
        click.echo(format_conversation(conversation, settings.user_id))


@cli.command()
@click.pass_obj
def unread(settings: Settings) -> None:
    """Show the total number of unread messages."""
    count = _run_with_client(settings, lambda chat: chat.get_unread_count())
    click.echo(str(count))


@cli.command("start-chat")
@click.argument("store_id")
@click.pass_obj
def start_chat(settings: Settings, store_id: str) -> None:
    """Get or create the conversation with a store and print its id."""
    conversation = _run_with_client(
        settings, lambda chat: chat.get_or_create_conversation(store_id)
    )
    click.echo(conversation.conversation_id)


@cli.command()
@click.argument("conversation_id")
@click.pass_obj
def history(settings: Settings, conversation_id: str) -> None:
    """Print the messages of a conversation."""
    view = _run_with_client(settings, lambda chat: chat.open_conversation(conversation_id))
    if not view.messages:
        click.echo("No messages yet.")
        return
    for message in view.messages:
        click.echo(format_message(message, settings.user_id))


@cli.command()
@click.argument("conversation_id")
@click.argument("text")
@click.pass_obj
def send(settings: Settings, conversation_id: str, text: str) -> None:
    """Send a message to a conversation."""
    message = _run_with_client(settings, lambda chat: chat.send(conversation_id, text))
    click.echo(format_message(message, settings.user_id))


@cli.command()
@click.argument("conversation_id", required=False)
@click.pass_obj
def watch(settings: Settings, conversation_id: Optional[str]) -> None:
    """Stream live messages until interrupted."""

    def show(payload: Any) -> None:
        try:
            event = NewMessageEvent.from_payload(payload)
        except ValueError:
            return
        click.echo(
            f"[{event.conversation_id}] {format_message(event.message, settings.user_id)}"
        )

    async def action(chat: ChatClient) -> None:
        chat.channel.subscribe(EventType.NEW_MESSAGE, show)
        if conversation_id:
            await chat.open_conversation(conversation_id)
        if not await chat.channel.wait_until_connected(timeout=settings.connect_timeout):
            click.echo(click.style("Still connecting, will keep retrying...", fg="yellow"), err=True)
        await asyncio.Event().wait()

    try:
        _run_with_client(settings, action, connect=True)
    except KeyboardInterrupt:
        click.echo("Stopped.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
