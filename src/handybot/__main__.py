"""CLI entrypoint for HandyBot."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
from pathlib import Path
import sys
from typing import Any

from .attachments import AttachmentStore, read_image_file
from .client import CompletionClient
from .config import ensure_config_dir, load_config
from .credentials import FileSecretStore
from .exceptions import HandyBotError
from .logging_utils import configure_logging
from .models import Project
from .project_store import JsonProjectStore
from .service import ProjectService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="handybot",
        description="HandyBot - AI help for household repairs",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.toml (defaults to ~/.config/handybot/config.toml)",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("projects", help="List repair projects, newest first")

    new = commands.add_parser("new", help="Start a project and ask its first question")
    new.add_argument("title", help="What needs fixing?")

    send = commands.add_parser("send", help="Send a message to a project")
    send.add_argument("project_id")
    send.add_argument("text")
    send.add_argument(
        "--image",
        dest="images",
        action="append",
        default=[],
        help="Attach an image (repeatable)",
    )

    show = commands.add_parser("show", help="Print a project's conversation")
    show.add_argument("project_id")

    rename = commands.add_parser("rename", help="Change a project's title")
    rename.add_argument("project_id")
    rename.add_argument("title")

    key = commands.add_parser("key", help="Manage the Claude API key")
    key_commands = key.add_subparsers(dest="key_command", required=True)
    key_set = key_commands.add_parser("set", help="Store the API key")
    key_set.add_argument("value")
    key_commands.add_parser("clear", help="Remove the stored API key")
    return parser


def _print_transcript(project: Project, assistant_name: str) -> None:
    print(f"# {project.title}")
    for message in project.messages:
        speaker = "You" if message.is_user else assistant_name
        count = len(message.attachments)
        suffix = f" [{count} image(s)]" if count else ""
        print(f"\n{speaker}{suffix}:\n{message.content}")


async def _run(args: argparse.Namespace, config: dict[str, dict[str, Any]]) -> None:
    storage = config["storage"]
    secrets = FileSecretStore(storage["secrets_path"])
    attachments = AttachmentStore(
        storage["attachments_directory"], quality=storage["jpeg_quality"]
    )
    async with CompletionClient.from_config(config, secrets, attachments) as client:
        service = ProjectService(
            JsonProjectStore(storage["projects_path"]), attachments, client, secrets
        )

        if args.command == "key":
            service.set_api_key(args.value if args.key_command == "set" else "")
            print("API key saved." if args.key_command == "set" else "API key removed.")
            return

        if args.command == "projects":
            for project in await service.list_projects():
                stamp = project.last_updated.strftime("%Y-%m-%d %H:%M")
                print(f"{project.id}  {stamp}  {project.title}")
            return

        if args.command in {"new", "send"} and not service.has_api_key():
            raise HandyBotError(
                "Please enter your Claude API key with `handybot key set <KEY>`."
            )

        if args.command == "new":
            project, reply = await service.start_project(args.title)
            print(f"Project {project.id}")
            if reply is not None:
                print(f"\n{reply.content}")
            return

        project = await service.get_project(args.project_id)
        if project is None:
            raise HandyBotError(f"No project with id {args.project_id}.")
        if args.command == "show":
            _print_transcript(project, config["app"]["title"])
            return
        if args.command == "rename":
            renamed = await service.rename_project(project, args.title)
            print(f"Project {renamed.id} renamed to {renamed.title}")
            return

        images = [read_image_file(path) for path in args.images]
        reply = await service.controller_for(project).send_message(args.text, images)
        if reply is not None:
            print(reply.content)


def main(argv: Sequence[str] | None = None) -> None:
    """Parse CLI flags, load configuration and run the requested command."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("handybot")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"handybot {version}")
        return

    if args.command is None:
        parser.print_help()
        return

    ensure_config_dir()
    config = load_config(args.config)
    configure_logging(config["logging"])
    try:
        asyncio.run(_run(args, config))
    except (HandyBotError, ValueError) as exc:
        print(f"handybot: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
