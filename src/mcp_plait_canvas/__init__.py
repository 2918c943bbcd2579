"""
MCP Plait Canvas
================

Keeps a shared Plait canvas consistent between browser clients, a canvas
server and an agent drawing through MCP tools.

Components:
- ElementRepository: the server's authoritative element set
- fix_bindings: repair of dangling element references
- create_app: canvas HTTP routes and push channel (Starlette)
- CanvasClient: client projection, bulk upload and reconnecting push channel
- ToolBridge / mcp: agent tool calls turned into canvas writes

Transport modes for the MCP server:
- STDIO (default): For desktop MCP clients
- SSE: Server-Sent Events over HTTP
- HTTP: Streamable HTTP transport
"""

__version__ = "0.1.0"

from .app import create_app
from .bindings import fix_bindings
from .bridge import Degraded, Synced, ToolBridge
from .client import CanvasClient, ConnectionSupervisor
from .repository import ElementRepository
from .server import create_server, mcp

__all__ = [
    "CanvasClient",
    "ConnectionSupervisor",
    "Degraded",
    "ElementRepository",
    "Synced",
    "ToolBridge",
    "create_app",
    "create_server",
    "fix_bindings",
    "mcp",
    "__version__",
]
