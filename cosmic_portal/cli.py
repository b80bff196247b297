"""Command-line entry point: ``cosmic-portal`` / ``python -m cosmic_portal``."""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

import structlog

from .controller import PortalController
from .core.config import Settings
from .core.logging import configure_logging
from .errors import PortalError

logger = structlog.get_logger(__name__)


async def cmd_tree(args: argparse.Namespace, settings: Settings) -> int:
    controller = PortalController(settings)
    try:
        tree = await controller.fetch_tree()
    finally:
        await controller.close()
    print(tree.render())
    return 0


async def cmd_upload(args: argparse.Namespace, settings: Settings) -> int:
    controller = PortalController(settings)
    try:
        await controller.start(watch_inventory=False)
        result = await controller.upload_path(args.path)
    finally:
        await controller.close()
    print(f"{result.filename}: {result.file_id} ({result.size_bytes} bytes) {result.message}".rstrip())
    return 0


async def cmd_send(args: argparse.Namespace, settings: Settings) -> int:
    controller = PortalController(settings)
    try:
        await controller.start(watch_inventory=False)
        result = await controller.send_inventory_file(args.name)
    finally:
        await controller.close()
    print(f"{result.filename}: {result.file_id} ({result.size_bytes} bytes)")
    return 0


async def cmd_listen(args: argparse.Namespace, settings: Settings) -> int:
    if not args.out and not args.to_inventory:
        raise SystemExit("listen needs --out DIR and/or --to-inventory")
    if args.out:
        os.makedirs(args.out, exist_ok=True)

    controller = PortalController(settings)

    async def handle_delivery(filename: str, content: bytes) -> None:
        if args.out:
            target = os.path.join(args.out, os.path.basename(filename) or "unnamed")
            with open(target, "wb") as f:
                f.write(content)
            logger.info("delivery_written", path=target, size=len(content))
        if args.to_inventory:
            await controller.materialize(os.path.basename(filename), content)

    controller.on_delivery(handle_delivery)
    controller.on_new_inventory_file(lambda name: print(f"+ {name}"))
    try:
        session = await controller.start()
        print(f"listening as session {session.session_id}")
        await controller.wait_closed()
    finally:
        await controller.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cosmic-portal",
        description="Anonymous file relay client with a live inventory view.",
    )
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--json-logs", action="store_true", help="emit JSON log lines")
    sub = parser.add_subparsers(dest="cmd", required=True)

    tree = sub.add_parser("tree", help="print the inventory file tree")
    tree.set_defaults(func=cmd_tree)

    upload = sub.add_parser("upload", help="upload a local file into the relay")
    upload.add_argument("path")
    upload.set_defaults(func=cmd_upload)

    send = sub.add_parser("send", help="move an inventory file into the relay")
    send.add_argument("name")
    send.set_defaults(func=cmd_send)

    listen = sub.add_parser("listen", help="stay connected and keep delivered files")
    listen.add_argument("--out", help="directory for delivered files")
    listen.add_argument("--to-inventory", action="store_true", help="save deliveries into the inventory backend")
    listen.set_defaults(func=cmd_listen)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings()
    configure_logging(args.log_level or settings.log_level, json=args.json_logs or settings.log_json)

    try:
        return asyncio.run(args.func(args, settings))
    except PortalError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
