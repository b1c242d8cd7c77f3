"""Tests for the MCP tool surface and client session bridge."""

from __future__ import annotations

import base64
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace

import anyio
import pytest
from mcp.shared.exceptions import McpError
from mcp.types import EmbeddedResource, ErrorData, ImageContent, RootsListChangedNotification
from starlette.testclient import TestClient

from tasksync.errors import TaskSyncError
from tasksync.server import NO_ALLOWED_DIRECTORIES, SERVER_NAME, ClientBridge, FeedbackTools, build_server
from tasksync.service import FeedbackService
from tasksync.settings import ServerSettings

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


@dataclass(eq=False)
class FakeSession:
    """Stand-in for an MCP ``ServerSession``."""

    roots: list[str] = field(default_factory=list)
    supports_roots: bool = True
    closed: bool = False
    roots_error: bool = False
    sent: list[dict] = field(default_factory=list)
    roots_requests: int = 0
    _exit_stack: AsyncExitStack = field(default_factory=AsyncExitStack, repr=False)

    async def disconnect(self) -> None:
        await self._exit_stack.aclose()

    def check_client_capability(self, capability) -> bool:
        return self.supports_roots

    async def list_roots(self):
        self.roots_requests += 1
        if self.roots_error:
            raise McpError(ErrorData(code=-32601, message="Method not found"))
        return SimpleNamespace(roots=[SimpleNamespace(uri=uri) for uri in self.roots])

    async def send_log_message(self, level, data, logger=None, related_request_id=None) -> None:
        if self.closed:
            raise anyio.ClosedResourceError
        self.sent.append({"level": level, "data": data, "logger": logger})


def _ctx(session: FakeSession) -> SimpleNamespace:
    return SimpleNamespace(session=session)


@pytest.mark.asyncio
async def test_get_feedback_creates_default_file(service: FeedbackService, workdir: Path) -> None:
    tools = FeedbackTools(service, ServerSettings())

    assert await tools.get_feedback() == ""
    assert (workdir / "feedback.md").exists()


@pytest.mark.asyncio
async def test_get_feedback_does_not_create_explicit_paths(service: FeedbackService, workdir: Path) -> None:
    tools = FeedbackTools(service)

    with pytest.raises(FileNotFoundError):
        await tools.get_feedback(str(workdir / "elsewhere.md"))

    assert not (workdir / "elsewhere.md").exists()


@pytest.mark.asyncio
async def test_view_media_returns_image_content(service: FeedbackService, workdir: Path) -> None:
    image = workdir / "screen.PNG"
    image.write_bytes(PNG_BYTES)

    result = await FeedbackTools(service).view_media("screen.PNG")

    assert isinstance(result, ImageContent)
    assert result.mimeType == "image/png"
    assert base64.b64decode(result.data) == PNG_BYTES


@pytest.mark.asyncio
async def test_view_media_wraps_other_files_as_resource(service: FeedbackService, workdir: Path) -> None:
    blob = workdir / "notes.bin"
    blob.write_bytes(b"\x00\x01")

    result = await FeedbackTools(service).view_media(str(blob))

    assert isinstance(result, EmbeddedResource)
    assert result.resource.mimeType == "application/octet-stream"
    assert base64.b64decode(result.resource.blob) == b"\x00\x01"


@pytest.mark.asyncio
async def test_server_exposes_both_tools(service: FeedbackService) -> None:
    server = build_server(service, ServerSettings())

    tools = {tool.name: tool for tool in await server.list_tools()}

    assert set(tools) == {"get_feedback", "view_media"}
    assert set(tools["get_feedback"].inputSchema["properties"]) == {"path", "head", "tail"}
    assert tools["view_media"].inputSchema["required"] == ["path"]


@pytest.mark.asyncio
async def test_call_get_feedback_outside_a_session(service: FeedbackService, workdir: Path) -> None:
    server = build_server(service)

    result = await server.call_tool("get_feedback", {})

    assert [block.text for block in result] == [""]
    assert (workdir / "feedback.md").exists()


def test_health_route(workdir: Path, watch_factory) -> None:
    service = FeedbackService([str(workdir)], cwd=workdir, watch_factory=watch_factory)
    server = build_server(service, ServerSettings())

    with TestClient(server.sse_app()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["server"] == SERVER_NAME
    assert body["connections"] == 0
    assert body["allowed_directories"] == 1


@pytest.mark.asyncio
async def test_attach_subscribes_and_applies_roots(service: FeedbackService, tmp_path: Path) -> None:
    other = tmp_path / "other"
    other.mkdir()
    session = FakeSession(roots=[other.as_uri()])
    bridge = ClientBridge(service)

    await bridge.attach(_ctx(session))
    await bridge.attach(_ctx(session))

    assert bridge.connections == 1
    assert service.broadcaster.count == 1
    assert session.roots_requests == 1
    assert service.allowed_directories == (str(other.resolve()),)


@pytest.mark.asyncio
async def test_roots_list_changed_triggers_refresh_on_next_call(service: FeedbackService, tmp_path: Path) -> None:
    session = FakeSession(roots=[])
    bridge = ClientBridge(service)
    await bridge.attach(_ctx(session))
    before = service.allowed_directories

    other = tmp_path / "other"
    other.mkdir()
    session.roots = [other.as_uri()]
    await bridge.on_roots_list_changed(RootsListChangedNotification(method="notifications/roots/list_changed"))

    assert service.allowed_directories == before

    await bridge.attach(_ctx(session))

    assert session.roots_requests == 2
    assert service.allowed_directories == (str(other.resolve()),)


@pytest.mark.asyncio
async def test_roots_failures_keep_allowlist(service: FeedbackService) -> None:
    before = service.allowed_directories
    bridge = ClientBridge(service)

    await bridge.attach(_ctx(FakeSession(roots_error=True)))
    await bridge.attach(_ctx(FakeSession(supports_roots=False)))

    assert service.allowed_directories == before


@pytest.mark.asyncio
async def test_attach_without_allowed_directories_fails(workdir: Path, watch_factory) -> None:
    service = FeedbackService([], cwd=workdir, watch_factory=watch_factory)
    bridge = ClientBridge(service)

    with pytest.raises(TaskSyncError, match="no allowed directories"):
        await bridge.attach(_ctx(FakeSession(supports_roots=False)))

    assert NO_ALLOWED_DIRECTORIES.startswith("Server cannot operate")


@pytest.mark.asyncio
async def test_changes_are_sent_as_log_messages(
    service: FeedbackService, feedback_file: Path, write_later
) -> None:
    session = FakeSession()
    bridge = ClientBridge(service)
    await bridge.attach(_ctx(session))
    await service.await_change(str(feedback_file))

    write_later(feedback_file, "looks good")
    await service.coordinator.handle_change(str(feedback_file))

    assert len(session.sent) == 1
    message = session.sent[0]
    assert message["level"] == "info"
    assert message["logger"] == SERVER_NAME
    assert message["data"]["type"] == "file_changed"
    assert message["data"]["path"] == "feedback.md"
    assert message["data"]["content"] == "looks good"


@pytest.mark.asyncio
async def test_closed_session_is_detached(service: FeedbackService, feedback_file: Path, write_later) -> None:
    session = FakeSession()
    bridge = ClientBridge(service)
    await bridge.attach(_ctx(session))
    await service.await_change(str(feedback_file))
    session.closed = True

    write_later(feedback_file, "anyone there?")
    await service.coordinator.handle_change(str(feedback_file))

    assert bridge.connections == 0
    assert service.broadcaster.count == 0


@pytest.mark.asyncio
async def test_empty_path_means_default_file(service: FeedbackService, workdir: Path) -> None:
    tools = FeedbackTools(service)

    assert await tools.get_feedback("") == ""
    assert (workdir / "feedback.md").exists()


@pytest.mark.asyncio
async def test_disconnected_session_is_released_without_any_change(service: FeedbackService) -> None:
    session = FakeSession()
    bridge = ClientBridge(service)
    await bridge.attach(_ctx(session))
    assert bridge.connections == 1

    await session.disconnect()

    assert bridge.connections == 0
    assert service.broadcaster.count == 0

    await bridge.on_roots_list_changed(RootsListChangedNotification(method="notifications/roots/list_changed"))
    assert bridge.connections == 0


@pytest.mark.asyncio
async def test_roots_notification_handler_is_registered(service: FeedbackService) -> None:
    bridge = ClientBridge(service)
    server = build_server(service, bridge=bridge)

    handler = server._mcp_server.notification_handlers[RootsListChangedNotification]

    assert handler == bridge.on_roots_list_changed
