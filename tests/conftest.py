"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests,
including an in-process mock Tectonic server.
"""

import asyncio
import json
import socket
from contextlib import closing
from dataclasses import asdict
from typing import AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from tectonic.network.client import TectonicClient
from tectonic.protocol.commands import Update
from tectonic.protocol.framing import FrameDecoder, encode_frame

# Responder return value that makes the mock server hang up
CLOSE = object()


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def ok(payload: str = "") -> bytes:
    return encode_frame(True, payload)


def err(message: str) -> bytes:
    return encode_frame(False, f"ERR: {message}\n")


# ============================================================================
# Fake server state
# ============================================================================

class FakeTectonic:
    """
    Minimal in-memory stand-in for a Tectonic server.

    Replies the way the real server does for every verb the client sends.
    """

    def __init__(self):
        self.stores: Dict[str, List[Update]] = {"default": []}
        self.current = "default"
        self.is_adding = False

    def respond(self, line: str) -> bytes:
        if line == "":
            return ok()
        if line == "PING":
            return ok("PONG.\n")
        if line == "HELP":
            return ok("PING, INFO, USE [db], CREATE [db], ...\n")
        if line == "INFO":
            info = [
                {"name": name, "in_memory": True, "count": len(updates)}
                for name, updates in self.stores.items()
            ]
            return ok(json.dumps(info) + "\n")
        if line == "BULKADD":
            self.is_adding = True
            return ok()
        if line == "DDAKLUB":
            self.is_adding = False
            return ok("1\n")
        if line == "GET ALL AS JSON":
            return ok(self._to_json(self.stores[self.current]))
        if line in ("CLEAR", "CLEAR ALL", "FLUSH", "FLUSH ALL"):
            return ok("1\n")

        if self.is_adding:
            try:
                self.stores[self.current].append(Update.parse(line))
            except ValueError:
                return err("Unable to parse line in BULKALL")
            return ok()

        if line.startswith("ADD "):
            if " INTO " in line:
                # same slicing as the server: two characters before INTO are cut
                index = line.index(" INTO ")
                target = line[index + 6:]
                data = line[3:index - 2]
            else:
                target = self.current
                data = line[3:]
            if target not in self.stores:
                return err(f"State does not contain {target}")
            try:
                self.stores[target].append(Update.parse(data))
            except ValueError:
                return err("Parse ADD")
            return ok("1\n")

        if line.startswith("CREATE "):
            name = line[7:]
            self.stores.setdefault(name, [])
            return ok(f"Created DB `{name}`.\n")

        if line.startswith("USE "):
            name = line[4:]
            if name not in self.stores:
                return err(f"State does not contain {name}")
            self.current = name
            return ok(f"SWITCHED TO DB `{name}`.\n")

        if line.startswith("GET ") and line.endswith(" AS JSON"):
            count = int(line.split(" ")[1])
            updates = self.stores[self.current]
            if len(updates) <= count or not updates:
                return err("Requested too many")
            return ok(self._to_json(updates[:count]))

        return err("Unsupported command.")

    @staticmethod
    def _to_json(updates: List[Update]) -> str:
        return json.dumps([asdict(update) for update in updates]) + "\n"


# ============================================================================
# Mock server
# ============================================================================

class MockTectonicServer:
    """
    Line-reading asyncio server that answers with binary frames.

    The responder receives each command line (without the newline) and
    returns the bytes to send, a list of chunks to send with short pauses
    in between, None to stay silent, or CLOSE to hang up.

    Attributes:
        received: Command lines in arrival order
        received_raw: Raw bytes of every line, newline included
        state: The FakeTectonic backing the default responder
    """

    CLOSE = CLOSE

    def __init__(self, host: str, port: int, responder: Optional[Callable] = None):
        self.host = host
        self.port = port
        self.state = FakeTectonic()
        self.responder = responder or self.state.respond
        self.received: List[str] = []
        self.received_raw: List[bytes] = []
        self._server: Optional[asyncio.Server] = None
        self._writers = set()

    async def handle_client(
            self,
            reader: asyncio.StreamReader,
            writer: asyncio.StreamWriter
    ) -> None:
        self._writers.add(writer)
        try:
            while True:
                data = await reader.readline()
                if not data:
                    break

                self.received_raw.append(data)
                line = data.decode().rstrip('\r\n')
                self.received.append(line)

                reply = self.responder(line)
                if reply is CLOSE:
                    break
                if reply is None:
                    continue
                if isinstance(reply, list):
                    for chunk in reply:
                        writer.write(chunk)
                        await writer.drain()
                        await asyncio.sleep(0.01)
                else:
                    writer.write(reply)
                    await writer.drain()
        except ConnectionResetError:
            pass
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def start(self) -> None:
        self._server = await asyncio.start_server(self.handle_client, self.host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def server(server_port: int) -> AsyncGenerator[MockTectonicServer, None]:
    """
    Start a mock server on a random free port for the test.
    """
    srv = MockTectonicServer('127.0.0.1', server_port)
    await srv.start()

    yield srv

    await srv.stop()


# ============================================================================
# Client Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def client(server: MockTectonicServer, server_port: int) -> AsyncGenerator[TectonicClient, None]:
    """A connected client with a short request timeout."""
    db = TectonicClient('127.0.0.1', server_port, timeout=2.0)
    await db.connect()

    yield db

    await db.exit()


@pytest.fixture
def decoder() -> FrameDecoder:
    """Create a FrameDecoder instance."""
    return FrameDecoder()


@pytest.fixture
def update() -> Update:
    """A sample order book update."""
    return Update(ts=1505177459.658, seq=139010, is_trade=False, is_bid=True,
                  price=0.0703629, size=7.65064249)


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
