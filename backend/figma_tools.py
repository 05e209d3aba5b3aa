"""
Figma Tools - Agent Tools

This module defines the tools that the Agent can use to read from Figma
through the plugin via the figma_communicator relay.

Each tool is a plain coroutine that validates its parameters, forwards one
command and returns a JSON string; build_figma_tools() wraps them for the agent.
"""


import asyncio
import logging
import json
from typing import Optional, List, Any, Dict, Literal
from agents import function_tool
from figma_communicator import send_command, join_channel as relay_join_channel
from figma_helpers import filter_figma_node
from relay_errors import RelayError, RemoteError

logger = logging.getLogger(__name__)

# Text scans stream chunks and report progress; allow them longer than a plain read
SCAN_TEXT_NODES_TIMEOUT_MS = 60000
SCAN_TEXT_NODES_CHUNK_SIZE = 10

ExportFormat = Literal["PNG", "JPG", "SVG", "PDF"]


class ToolExecutionError(Exception):
    """
    Specialized exception for tool execution failures.

    Carries a structured payload allowing the agent to self-correct.
    Expected payload shape: { code: str, message: str, details?: dict }
    """

    def __init__(self, payload: Dict[str, Any], command: str | None = None):
        self.command = command
        self.code: str = str(payload.get("code", "unknown_plugin_error"))
        self.message: str = str(payload.get("message", ""))
        self.details: Dict[str, Any] = payload.get("details", {}) or {}
        self.payload = {"code": self.code, "message": self.message, "details": self.details}
        super().__init__(self.message if self.message else self.code)


# ============================================
# ============ INTERNAL HELPERS ==============
# ============================================

def _to_json_string(result: Any) -> str:
    """Convert plugin result to a JSON string for model reasoning."""
    if isinstance(result, str):
        # Assume plugin already returned a JSON/string payload
        return result
    return json.dumps(result, ensure_ascii=False)


def _require(condition: bool, name: str, message: str, value: Any) -> None:
    if not condition:
        raise ToolExecutionError({"code": "missing_parameter", "message": message, "details": {name: value}})


async def _run_command(command: str, params: Optional[Dict[str, Any]] = None, timeout_ms: Optional[int] = None) -> Any:
    """Forward one command, translating relay failures into ToolExecutionError."""
    try:
        return await send_command(command, params or {}, timeout_ms)
    except RemoteError as e:
        # Preserve the plugin's own code for agent self-correction
        logger.error(f"❌ Tool {command} failed: {e.message}")
        raise ToolExecutionError(e.payload, command=command) from e
    except RelayError as e:
        logger.error(f"❌ Communication error in {command}: {e}")
        raise ToolExecutionError({
            "code": e.code,
            "message": f"Failed to communicate with plugin: {e}",
            "details": {"command": command},
        }, command=command) from e


# ============================================
# ===============  TOOLS  ====================
# ============================================

async def join_channel(channel: str) -> str:
    """Join a relay channel so that commands reach the Figma plugin.

    Parameters (Args)
    ------------------
    channel (str): The channel name shown in the Figma plugin UI.

    Returns
    -------
    (str): JSON string: {"joined": "<channel>"}

    Agent Guidance
    --------------
    Call this once before any other tool, and again after a connection loss
    (tools then fail with code `no_channel`).
    """
    _require(isinstance(channel, str) and bool(channel), "channel", "Please provide a channel name to join", channel)
    logger.info(f"📡 Joining channel: {channel}")
    try:
        await relay_join_channel(channel)
    except RelayError as e:
        logger.error(f"❌ Joining channel {channel} failed: {e}")
        raise ToolExecutionError({"code": e.code, "message": str(e), "details": {"channel": channel}}, command="join") from e
    return _to_json_string({"joined": channel})


async def get_document_info() -> str:
    """Get detailed information about the current Figma document.

    Returns
    -------
    (str): JSON string with the document name, current page and its top-level children.
    """
    logger.info("📄 Getting document info")
    result = await _run_command("get_document_info")
    return _to_json_string(result)


async def get_selection() -> str:
    """Get information about the current selection in Figma."""
    logger.info("🧭 Getting selection")
    result = await _run_command("get_selection")
    return _to_json_string(result)


async def get_node_info(node_id: str) -> str:
    """Get detailed information about a specific node in Figma.

    Parameters (Args)
    ------------------
    node_id (str): The ID of the node to inspect (e.g. "123:456").

    Returns
    -------
    (str): JSON string of the node tree. Vector nodes are removed and colours
        are given as hex strings; bound variables and image references are dropped.

    Raises (Errors & Pitfalls)
    --------------------------
    ToolExecutionError: `missing_parameter` when node_id is empty; plugin codes
        such as `node_not_found` are passed through unchanged.
    """
    _require(isinstance(node_id, str) and bool(node_id), "node_id", "'node_id' must be a non-empty string", node_id)
    logger.info(f"🔍 Getting node info: {node_id}")
    result = await _run_command("get_node_info", {"nodeId": node_id})
    return _to_json_string(filter_figma_node(result))


async def get_nodes_info(node_ids: List[str]) -> str:
    """Get detailed information about multiple nodes in Figma.

    The nodes are fetched concurrently over the shared connection; the result
    is a JSON array in the same order as `node_ids` (vector nodes omitted).
    """
    _require(isinstance(node_ids, list) and len(node_ids) > 0, "node_ids", "'node_ids' must be a non-empty list", node_ids)
    logger.info(f"🔍 Getting info for {len(node_ids)} nodes")
    results = await asyncio.gather(*(_run_command("get_node_info", {"nodeId": node_id}) for node_id in node_ids))
    filtered = [filter_figma_node(result) for result in results]
    return _to_json_string([node for node in filtered if node is not None])


async def get_styles() -> str:
    """Get all styles (paint, text, effect, grid) from the current Figma document."""
    logger.info("🎨 Getting styles")
    result = await _run_command("get_styles")
    return _to_json_string(result)


async def get_local_components() -> str:
    """Get all local components from the Figma document."""
    logger.info("🧩 Getting local components")
    result = await _run_command("get_local_components")
    return _to_json_string(result)


async def get_remote_components() -> str:
    """Get available components from team libraries in Figma."""
    logger.info("🧩 Getting remote components")
    result = await _run_command("get_remote_components")
    return _to_json_string(result)


async def get_annotations(node_id: Optional[str] = None, include_categories: bool = True) -> str:
    """Get all annotations in the current document or for a specific node.

    Parameters (Args)
    ------------------
    node_id (str, optional): Restrict to annotations on this node. Defaults to the whole document.
    include_categories (bool, optional): Whether to include category information. Defaults to True.
    """
    logger.info(f"📝 Getting annotations (node_id={node_id}, include_categories={include_categories})")
    params: Dict[str, Any] = {"includeCategories": bool(include_categories)}
    if node_id:
        params["nodeId"] = node_id
    result = await _run_command("get_annotations", params)
    return _to_json_string(result)


async def scan_text_nodes(node_id: str) -> str:
    """Scan all text nodes inside a node.

    Purpose & Use Case
    --------------------
    Collects every TEXT node under `node_id` with its characters and position.
    Large designs are scanned by the plugin in chunks of ten nodes; the relay
    reassembles the chunks, so the tool always returns one complete list.

    Parameters (Args)
    ------------------
    node_id (str): ID of the node to scan (usually a frame or page section).

    Returns
    -------
    (str): JSON string: {"totalNodes": int, "chunks": int, "textNodes": [...]}

    Raises (Errors & Pitfalls)
    --------------------------
    ToolExecutionError: `missing_parameter` for an empty node_id, `timeout` if
        the scan stalls, or the plugin's own code if a chunk reports failure.
    """
    _require(isinstance(node_id, str) and bool(node_id), "node_id", "'node_id' must be a non-empty string", node_id)
    logger.info(f"🔎 Scanning text nodes under {node_id}")
    result = await _run_command(
        "scan_text_nodes",
        {"nodeId": node_id, "useChunking": True, "chunkSize": SCAN_TEXT_NODES_CHUNK_SIZE},
        timeout_ms=SCAN_TEXT_NODES_TIMEOUT_MS,
    )

    if isinstance(result, list):
        chunks = max(1, -(-len(result) // SCAN_TEXT_NODES_CHUNK_SIZE))
        summary = {"totalNodes": len(result), "chunks": chunks, "textNodes": result}
    elif isinstance(result, dict) and "textNodes" in result:
        text_nodes = result.get("textNodes") or []
        summary = {
            "totalNodes": result.get("totalNodes", len(text_nodes)),
            "chunks": result.get("chunks", 1),
            "textNodes": text_nodes,
        }
    else:
        return _to_json_string(result)

    logger.info(f"🔎 Scan completed: {summary['totalNodes']} text nodes in {summary['chunks']} chunk(s)")
    return _to_json_string(summary)


async def export_node_as_image(node_id: str, format: Optional[ExportFormat] = None, scale: Optional[float] = None) -> str:
    """Export a node as an image from Figma.

    Parameters (Args)
    ------------------
    node_id (str): The ID of the node to export.
    format (str, optional): One of "PNG", "JPG", "SVG", "PDF". Defaults to "PNG".
    scale (float, optional): Positive export scale. Defaults to 1.

    Returns
    -------
    (str): JSON string: {"mimeType": str, "imageData": "<base64>"}

    Agent Guidance
    --------------
    Exports are expensive; prefer get_node_info for structural questions and
    export only when visual confirmation matters.
    """
    _require(isinstance(node_id, str) and bool(node_id), "node_id", "'node_id' must be a non-empty string", node_id)
    if scale is not None and (not isinstance(scale, (int, float)) or scale <= 0):
        raise ToolExecutionError({"code": "invalid_parameter", "message": "'scale' must be a positive number", "details": {"scale": scale}})

    export_format = format or "PNG"
    logger.info(f"🖼️ Exporting {node_id} as {export_format} (scale={scale or 1})")
    result = await _run_command("export_node_as_image", {"nodeId": node_id, "format": export_format, "scale": scale or 1})
    if isinstance(result, dict) and "imageData" in result:
        return _to_json_string({
            "mimeType": result.get("mimeType") or "image/png",
            "imageData": result["imageData"],
        })
    return _to_json_string(result)


ALL_TOOL_FUNCTIONS = (
    join_channel,
    get_document_info,
    get_selection,
    get_node_info,
    get_nodes_info,
    get_styles,
    get_local_components,
    get_remote_components,
    get_annotations,
    scan_text_nodes,
    export_node_as_image,
)


def build_figma_tools() -> List[Any]:
    """Wrap every tool coroutine as an agent tool."""
    tools = [function_tool(fn, strict_mode=False) for fn in ALL_TOOL_FUNCTIONS]
    logger.info(f"🧰 Loaded {len(tools)} tools: {', '.join(t.name for t in tools)}")
    return tools
