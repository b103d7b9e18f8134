"""Application factory for the Tlon MCP server."""

import inspect
import time
from collections import defaultdict
from functools import wraps
from typing import Annotated, Any, Callable, Literal, Optional

import structlog
from fastmcp import Context, FastMCP
from mcp.types import TextContent
from pydantic import Field

from . import rich_logger
from .config import Settings, get_settings
from .service import DmService, ToolResponse, error_response, is_error_response
from .session import ShipSession

logger = structlog.get_logger("tlon_mcp.app")

TOOL_METRICS: defaultdict[str, dict[str, int]] = defaultdict(lambda: {"calls": 0, "errors": 0})

SEND_DM = "send-dm"
READ_DM_HISTORY = "read-dm-history"
LIST_CONTACTS = "list-contacts"

Format = Literal["raw", "formatted"]


def build_dm_service(settings: Settings) -> DmService:
    """Wire a :class:`DmService` to a not-yet-connected :class:`ShipSession`.

    The first tool call connects through the session guard.
    """
    session = ShipSession(
        url=settings.ship.url,
        ship=settings.ship.ship,
        code=settings.ship.code,
        timeout=settings.ship.request_timeout_seconds,
    )
    return DmService(session, settings.ship.identity, default_count=settings.history_default_count)


def _to_content(response: ToolResponse) -> list[TextContent]:
    return [TextContent(type="text", text=block["text"]) for block in response["content"]]


def _content_text(content: list[TextContent]) -> str:
    return "\n".join(block.text for block in content)


def tool_metrics_snapshot() -> list[dict[str, Any]]:
    return [
        {"name": name, "calls": data["calls"], "errors": data["errors"]}
        for name, data in sorted(TOOL_METRICS.items())
    ]


def _instrument_tool(
    tool_name: str,
    *,
    ship: str,
    addressee_arg: Optional[str] = None,
) -> Callable[[Any], Any]:
    """Count calls and failures, and render rich panels around each tool call.

    Tools answer failures with ``Error: ...`` text; this wrapper also turns any
    exception that slips through into such a response so nothing reaches the
    transport.
    """

    def decorator(func: Any) -> Any:
        signature = inspect.signature(func)

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> list[TextContent]:
            metrics = TOOL_METRICS[tool_name]
            metrics["calls"] += 1
            bound = signature.bind_partial(*args, **kwargs)
            clean_kwargs = {k: v for k, v in bound.arguments.items() if k != "ctx"}
            addressee = clean_kwargs.get(addressee_arg) if addressee_arg else None

            settings = get_settings()
            log_ctx = None
            if settings.tools_log_enabled and settings.log_rich_enabled:
                log_ctx = rich_logger.ToolCallContext(
                    tool_name=tool_name,
                    kwargs=clean_kwargs,
                    ship=ship,
                    addressee=str(addressee) if addressee is not None else None,
                )
                try:
                    rich_logger.log_tool_call_start(log_ctx)
                except Exception:
                    # Logging errors should not break tool execution
                    log_ctx = None

            start = time.perf_counter()
            try:
                content = await func(*args, **kwargs)
            except Exception as exc:
                logger.exception("tool.unhandled_error", tool=tool_name, error=str(exc))
                content = _to_content(error_response(str(exc)))

            text = _content_text(content)
            failed = text.startswith("Error:")
            if failed:
                metrics["errors"] += 1
            logger.info(
                "tool.call",
                tool=tool_name,
                success=not failed,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )

            if log_ctx is not None:
                try:
                    log_ctx.end_time = time.perf_counter()
                    log_ctx.success = not failed
                    log_ctx.result = text
                    log_ctx.error = text if failed else None
                    rich_logger.log_tool_call_end(log_ctx)
                except Exception:
                    pass
            return content

        # Preserve annotations so FastMCP can infer the parameter schema
        wrapper.__annotations__ = getattr(func, "__annotations__", {})
        return wrapper

    return decorator


async def _ctx_info_safe(ctx: Context, message: str) -> None:
    try:
        await ctx.info(message)
    except Exception:
        # Context may not be available outside of a request; ignore logging
        return


def build_mcp_server(service: Optional[DmService] = None, settings: Optional[Settings] = None) -> FastMCP:
    """Create and configure the FastMCP server instance."""
    settings = settings or get_settings()
    service = service or build_dm_service(settings)
    own_ship = service.own_identity
    default_count = settings.history_default_count

    instructions = (
        f"Tlon messaging tools for the ship {own_ship}. "
        "Recipients may be given as a ship name with '~', a contact nickname, "
        "or 'me' for the ship itself."
    )
    mcp = FastMCP(name="Tlon MCP Server", instructions=instructions)

    @mcp.tool(name=SEND_DM, description="Send a direct message to another ship or nickname")
    @_instrument_tool(SEND_DM, ship=own_ship, addressee_arg="recipient")
    async def send_dm(
        ctx: Context,
        recipient: Annotated[str, Field(description="Recipient ship name (with ~) or nickname")],
        message: Annotated[str, Field(description="Message text to send")],
    ) -> list[TextContent]:
        response = await service.send_message(recipient, message)
        if not is_error_response(response):
            await _ctx_info_safe(ctx, f"DM sent to {recipient}")
        return _to_content(response)

    @mcp.tool(
        name=READ_DM_HISTORY,
        description="Read the latest messages from a direct message channel with another ship or nickname",
    )
    @_instrument_tool(READ_DM_HISTORY, ship=own_ship, addressee_arg="correspondent")
    async def read_dm_history(
        ctx: Context,
        correspondent: Annotated[str, Field(description="Correspondent ship name (with ~) or nickname")],
        count: Annotated[
            Optional[int],
            Field(description=f"Number of messages to fetch (default {default_count}, capped to the range 1-500)"),
        ] = None,
        format: Annotated[
            Format,
            Field(description="'raw' for the ship's original JSON, 'formatted' for a user-friendly structure"),
        ] = "formatted",
    ) -> list[TextContent]:
        if count is None:
            count = default_count
        response = await service.read_history(correspondent, count, format)
        return _to_content(response)

    @mcp.tool(
        name=LIST_CONTACTS,
        description="Retrieve all saved contacts including ship identifiers and nicknames",
    )
    @_instrument_tool(LIST_CONTACTS, ship=own_ship)
    async def list_contacts(
        ctx: Context,
        format: Annotated[
            Format,
            Field(description="'raw' for the ship's original JSON, 'formatted' for lookup indexes"),
        ] = "formatted",
    ) -> list[TextContent]:
        response = await service.list_contacts(format)
        return _to_content(response)

    return mcp
