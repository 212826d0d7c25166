#!/usr/bin/env python3
"""
Tectonic Command Line Client

Interactive (or one-shot) client for a Tectonic server.

Usage:
    tectonic-cli                         # REPL against localhost:9001
    tectonic-cli --host 1.2.3.4          # Connect to a specific host
    tectonic-cli --port 9002             # Connect to a specific port
    tectonic-cli GET ALL AS JSON         # Send one command and exit

Environment Variables:
    TECTONIC_HOST       - Server address
    TECTONIC_PORT       - Server port
    TECTONIC_TIMEOUT    - Request timeout in seconds
    TECTONIC_DEBUG      - Enable debug logging (true/false)
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config.settings import settings
from .errors import TectonicConnectionError, TectonicError
from .network.client import TectonicClient
from .protocol.commands import Response, Update

# Enable command history with arrow keys (works on Unix systems)
try:
    import readline  # noqa: F401
except ImportError:
    pass  # readline not available on Windows by default

logger = logging.getLogger(__name__)

HELP_TEXT = """
Server Commands:
----------------
  PING                      Check the server is alive
  INFO                      List databases as JSON
  HELP                      Server side command summary
  CREATE <db>               Create a database
  USE <db>                  Switch to a database
  ADD <ts>, <seq>, <t|f>, <t|f>, <price>, <size>;
                            Add one update (append INTO <db> to target another db)
  BULKADD ... DDAKLUB       Start / end a batch of data lines
  GET ALL AS JSON           Every update in the current database
  GET <n> AS JSON           The first n updates
  CLEAR / CLEAR ALL         Drop updates held in memory
  FLUSH / FLUSH ALL         Write updates to disk

Client Commands:
----------------
  help                      Show this help message
  load <file>               Bulk add the data lines of a file
  status                    Show connection status
  exit                      Exit the client
"""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Command line client for a Tectonic server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help="Server host",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help="Server port",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.REQUEST_TIMEOUT,
        help="Request timeout in seconds (0 waits forever)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    parser.add_argument(
        "command",
        nargs="*",
        help="Send this command once and exit instead of starting a REPL",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


def format_response(response: Response) -> str:
    """Render a response for the terminal."""
    body = response.payload.rstrip("\n")
    if response.success:
        return body if body else "OK"
    return body if body else "ERR"


def read_updates(path: str) -> List[Update]:
    """Parse every non-blank, non-comment line of a data file."""
    updates = []
    with open(path, "r", encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                updates.append(Update.parse(line))
            except ValueError as exc:
                raise ValueError(f"{path}:{number}: {exc}") from exc
    return updates


async def load_file(client: TectonicClient, path: str) -> Response:
    """Bulk add the updates stored in ``path``."""
    updates = read_updates(path)
    logger.info(f"Loading {len(updates)} updates from {path}")
    return await client.bulk_add(updates)


async def repl(client: TectonicClient) -> None:
    """Read commands from stdin until exit or EOF."""
    while True:
        try:
            command = (await asyncio.to_thread(input, ">>> ")).strip()
        except EOFError:
            print("\nGoodbye!")
            return

        if not command:
            continue

        lower_cmd = command.lower()

        if lower_cmd == "help":
            print(HELP_TEXT)
            continue

        if lower_cmd in ("exit", "quit"):
            print("Goodbye!")
            return

        if lower_cmd == "status":
            status = "Connected" if client.is_connected else "Disconnected"
            print(f"Status: {status}")
            print(f"Server: {client.address}")
            continue

        try:
            if lower_cmd.startswith("load "):
                response = await load_file(client, command[5:].strip())
            else:
                response = await client.send_command(command)
        except TectonicError as exc:
            print(f"ERROR: {exc}")
            response = None
        except (OSError, ValueError) as exc:
            # bad file for load, or a malformed command line
            print(f"ERROR: {exc}")
            continue

        if response is not None:
            print(format_response(response))

        if client.is_closed:
            print("Server closed the connection. Goodbye!")
            return


async def run(args: argparse.Namespace) -> int:
    """Connect and run either the one-shot command or the REPL."""
    client = TectonicClient(args.host, args.port, timeout=args.timeout)

    try:
        await client.connect()
    except TectonicConnectionError as exc:
        print(f"Failed to connect: {exc}")
        print("Is the server running?")
        return 1

    try:
        if args.command:
            response = await client.send_command(" ".join(args.command))
            print(format_response(response))
            return 0 if response.success else 1

        print(f"Connected to {client.address}. Type 'help' for commands.\n")
        await repl(client)
        return 0
    except TectonicError as exc:
        print(f"ERROR: {exc}")
        return 1
    finally:
        await client.exit()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the command line client."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n\nInterrupted. Goodbye!")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
