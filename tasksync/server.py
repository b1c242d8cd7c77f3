"""MCP tool surface over :class:`FeedbackService`.

``FeedbackTools`` holds the transport-independent tool handlers.
``ClientBridge`` tracks connected client sessions: it subscribes each one to
change notifications and refreshes the allowlist from the client's roots when
they are new or have announced a change. ``build_server`` wires both into a
FastMCP server.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from urllib.parse import quote

import anyio
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession
from mcp.shared.exceptions import McpError
from mcp.types import (
    BlobResourceContents,
    ClientCapabilities,
    EmbeddedResource,
    ImageContent,
    RootsCapability,
    RootsListChangedNotification,
)
from starlette.requests import Request
from starlette.responses import JSONResponse

from tasksync import __version__
from tasksync.broadcast import Subscription
from tasksync.errors import TaskSyncError
from tasksync.logging import get_logger
from tasksync.media import read_media
from tasksync.models import ChangeFact, HealthStatus
from tasksync.service import FeedbackService
from tasksync.settings import ServerSettings

log = get_logger("server")

SERVER_NAME = "tasksync-server"

NO_ALLOWED_DIRECTORIES = (
    "Server cannot operate: no allowed directories available. Start the server with "
    "directory arguments, or use a client that supports the MCP roots protocol and "
    "provides valid root directories."
)

GET_FEEDBACK_DESCRIPTION = (
    "Read the contents of a feedback file (defaults to ./feedback.md, created empty when missing). "
    "Returns immediately on the first call and whenever the file changed since the last call; "
    "otherwise blocks until the user edits the file or the wait times out.\n\n"
    "USAGE RULES:\n"
    "1. Call this tool after every reply, question or completed step to collect feedback.\n"
    "2. Keep calling it until the user explicitly says \"end\", \"stop\", \"finished\" or "
    "\"no more interaction needed\".\n"
    "3. When feedback is not empty, act on it and then call this tool again.\n"
    "4. Summarize what you did before calling so the user can give meaningful feedback.\n\n"
    "Args:\n"
    "    path: Path to the feedback file within allowed directories\n"
    "    head: Return only the first N lines\n"
    "    tail: Return only the last N lines (cannot be combined with head)"
)

VIEW_MEDIA_DESCRIPTION = (
    "Read an image file within allowed directories and return it base64 encoded with its MIME type. "
    "Supported formats: PNG, JPEG, GIF, WebP, BMP, SVG.\n\n"
    "Args:\n"
    "    path: Absolute or relative path to the image file"
)


class FeedbackTools:
    """Tool handlers shared by every transport."""

    def __init__(self, service: FeedbackService, settings: ServerSettings | None = None):
        self.service = service
        self.settings = settings or ServerSettings()

    async def get_feedback(
        self,
        path: str | None = None,
        *,
        head: int | None = None,
        tail: int | None = None,
    ) -> str:
        """Return feedback content, creating the default file when it is missing."""
        target = path or self.service.default_feedback_path(self.settings.feedback_filename)
        return await self.service.await_change(
            target,
            head=head,
            tail=tail,
            create_if_missing=not path,
        )

    async def view_media(self, path: str) -> ImageContent | EmbeddedResource:
        valid_path = self.service.validate_path(path)
        data, mime_type = read_media(valid_path)
        if mime_type.startswith("image/"):
            return ImageContent(type="image", data=data, mimeType=mime_type)
        return EmbeddedResource(
            type="resource",
            resource=BlobResourceContents(uri=f"file://{quote(valid_path)}", mimeType=mime_type, blob=data),
        )


class ClientBridge:
    """Per-session change subscriptions and roots synchronization."""

    def __init__(self, service: FeedbackService):
        self.service = service
        self._sessions: dict[ServerSession, Subscription] = {}
        self._stale_roots: set[ServerSession] = set()

    @property
    def connections(self) -> int:
        return len(self._sessions)

    async def attach(self, ctx: Context) -> None:
        """Register the calling session and bring the allowlist up to date."""
        session = _session_of(ctx)
        if session is not None:
            if session not in self._sessions:
                self._sessions[session] = self.service.subscribe(self._deliverer(session), name=f"session-{id(session):x}")
                self._stale_roots.add(session)
                _on_session_close(session, self.detach)
                log.info("Client connected. Active connections: %d", self.connections)
            if session in self._stale_roots:
                self._stale_roots.discard(session)
                await self.refresh_roots(session)

        if not self.service.allowed_directories:
            raise TaskSyncError(NO_ALLOWED_DIRECTORIES)

    def detach(self, session: ServerSession) -> None:
        subscription = self._sessions.pop(session, None)
        self._stale_roots.discard(session)
        if subscription is not None:
            self.service.unsubscribe(subscription)
            log.info("Client disconnected. Active connections: %d", self.connections)

    async def on_roots_list_changed(self, notification: RootsListChangedNotification) -> None:
        log.info("Client roots changed; refreshing on next tool call")
        self._stale_roots.update(self._sessions)

    async def refresh_roots(self, session: ServerSession) -> None:
        if not session.check_client_capability(ClientCapabilities(roots=RootsCapability())):
            log.debug("Client does not support roots, keeping allowed directories: %s", self.service.allowed_directories)
            return
        try:
            result = await session.list_roots()
        except McpError as exc:
            log.warning("Failed to request roots from client: %s", exc)
            return
        self.service.update_from_roots([str(root.uri) for root in result.roots])

    def _deliverer(self, session: ServerSession):
        async def deliver(fact: ChangeFact) -> None:
            payload = fact.to_notification(self.service.cwd).model_dump(mode="json")
            try:
                await session.send_log_message(level="info", data=payload, logger=SERVER_NAME)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                self.detach(session)
                raise

        return deliver


def _session_of(ctx: Context) -> ServerSession | None:
    try:
        return ctx.session
    except ValueError:
        return None


# FastMCP exposes no public hooks for session shutdown or client notifications.
# Both helpers below reach into SDK internals present from mcp 1.4 through 1.x.


def _on_session_close(session: ServerSession, callback: Callable[[ServerSession], None]) -> None:
    """Run ``callback(session)`` when the session's transport shuts down."""
    exit_stack = getattr(session, "_exit_stack", None)
    if exit_stack is None:
        log.debug("Session %x has no exit stack; it is released on the first failed delivery", id(session))
        return
    exit_stack.callback(callback, session)


def _add_notification_handler(mcp: FastMCP, notification_type: type, handler: Callable[..., Awaitable[None]]) -> None:
    mcp._mcp_server.notification_handlers[notification_type] = handler


def build_server(
    service: FeedbackService,
    settings: ServerSettings | None = None,
    *,
    bridge: ClientBridge | None = None,
) -> FastMCP:
    """Create the FastMCP server exposing ``get_feedback`` and ``view_media``."""
    settings = settings or ServerSettings()
    tools = FeedbackTools(service, settings)
    bridge = bridge or ClientBridge(service)

    mcp = FastMCP(SERVER_NAME, host=settings.host, port=settings.port, log_level=settings.log_level)

    @mcp.tool(name="get_feedback", description=GET_FEEDBACK_DESCRIPTION, structured_output=False)
    async def get_feedback(
        ctx: Context,
        path: str | None = None,
        tail: int | None = None,
        head: int | None = None,
    ) -> str:
        await bridge.attach(ctx)
        return await tools.get_feedback(path, head=head, tail=tail)

    @mcp.tool(name="view_media", description=VIEW_MEDIA_DESCRIPTION, structured_output=False)
    async def view_media(path: str, ctx: Context) -> ImageContent | EmbeddedResource:
        await bridge.attach(ctx)
        return await tools.view_media(path)

    @mcp.custom_route("/health", methods=["GET"])
    async def health(request: Request) -> JSONResponse:
        status = HealthStatus(
            server=SERVER_NAME,
            version=__version__,
            connections=bridge.connections,
            allowed_directories=len(service.allowed_directories),
        )
        return JSONResponse(status.model_dump())

    _add_notification_handler(mcp, RootsListChangedNotification, bridge.on_roots_list_changed)
    return mcp

