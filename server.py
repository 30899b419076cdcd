"""FastMCP server for streamrelay - resumable streams for long-running background jobs."""

import logging
from contextlib import asynccontextmanager

from fastmcp import FastMCP
from fastmcp.server.auth.providers.github import GitHubProvider

from streamrelay.api import TaskHandlers
from streamrelay.config import settings
from streamrelay.services import build_services, prepare_store
from streamrelay.tools import task_active, task_cancel, task_conversation, task_status, tool_principal

logging.basicConfig(
    level=logging.DEBUG if settings.relay_debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# Suppress noisy MCP streamable_http ClosedResourceError logs (known issue with stateless mode)
# See: https://github.com/modelcontextprotocol/python-sdk/issues/1658
logging.getLogger("mcp.server.streamable_http").setLevel(logging.CRITICAL)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Created once per process and handed to every endpoint
services = build_services(settings)
handlers = TaskHandlers(services, settings.relay_principal_header)


@asynccontextmanager
async def lifespan(server: FastMCP):
    if settings.relay_debug:
        await prepare_store(services.store)
    try:
        yield
    finally:
        await services.close()


# GitHub OAuth for MCP clients; HTTP endpoints trust the gateway's principal header
auth = None
if settings.github_client_id:
    auth = GitHubProvider(
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
        base_url=f"http://localhost:{settings.relay_port}",
    )

mcp = FastMCP("streamrelay", auth=auth, lifespan=lifespan, stateless_http=True, json_response=True)

mcp.custom_route("/health", methods=["GET"])(handlers.health)
mcp.custom_route("/tasks", methods=["POST"])(handlers.start)
mcp.custom_route("/tasks/active", methods=["GET"])(handlers.active)
mcp.custom_route("/tasks/conversation", methods=["GET"])(handlers.conversation)
mcp.custom_route("/tasks/status", methods=["POST"])(handlers.status)
mcp.custom_route("/tasks/cancel", methods=["POST"])(handlers.cancel)
mcp.custom_route("/tasks/resume", methods=["POST"])(handlers.resume)


def _caller(user_id: str | None) -> str:
    return tool_principal(user_id, authenticated=auth is not None)


# Register MCP tools
@mcp.tool(name="task_active")
async def active_tool(user_id: str | None = None) -> dict:
    """List background jobs that are still running for a user.

    Each job is checked against the upstream provider first; jobs that have
    finished in the meantime are settled and left out.

    Args:
        user_id: Owner of the jobs. Ignored when OAuth is enabled.

    Returns:
        dict with a "tasks" list of job records.
    """
    return await task_active(services, _caller(user_id))


@mcp.tool(name="task_status")
async def status_tool(job_id: str, user_id: str | None = None) -> dict:
    """Get the current status of a background job.

    Args:
        job_id: Upstream job identifier.
        user_id: Caller when OAuth is disabled; must own the job if it
            has an owner. Ignored when OAuth is enabled.

    Returns:
        dict with status, jobId, requestId and, once available, outputText
        and error.
    """
    return await task_status(services, job_id, _caller(user_id))


@mcp.tool(name="task_cancel")
async def cancel_tool(job_id: str, user_id: str | None = None) -> dict:
    """Cancel a background job. Safe to call more than once.

    Args:
        job_id: Upstream job identifier.
        user_id: Caller when OAuth is disabled; must own the job if it
            has an owner. Ignored when OAuth is enabled.

    Returns:
        dict with the status the job settled on.
    """
    return await task_cancel(services, job_id, _caller(user_id))


@mcp.tool(name="task_conversation")
async def conversation_tool(conversation_id: str, user_id: str | None = None) -> dict:
    """List every background job attached to a conversation."""
    return await task_conversation(services, conversation_id, _caller(user_id))


# ASGI app for uvicorn
app = mcp.http_app()

if __name__ == "__main__":
    mcp.run(
        transport="http",
        host=settings.relay_host,
        port=settings.relay_port,
        stateless_http=True,
    )
