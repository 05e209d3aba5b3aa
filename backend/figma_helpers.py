"""
Figma Helpers - node payload cleanup before results reach the model.
"""

from typing import Any, Dict, List, Optional

# Keys kept from a text node's style
_STYLE_KEYS = (
    "fontFamily",
    "fontStyle",
    "fontWeight",
    "fontSize",
    "textAlignHorizontal",
    "letterSpacing",
    "lineHeightPx",
)


def rgba_to_hex(color: Any) -> Any:
    """Convert an RGBA dict (0-1 floats) to a CSS hex string.

    Alpha is appended only when it is not fully opaque. Strings pass through.
    """
    if not isinstance(color, dict):
        return color

    r = round(color.get("r", 0) * 255)
    g = round(color.get("g", 0) * 255)
    b = round(color.get("b", 0) * 255)
    a = round(color.get("a", 1) * 255)

    hex_color = f"#{r:02x}{g:02x}{b:02x}"
    if a != 255:
        hex_color += f"{a:02x}"
    return hex_color


def _clean_paint(paint: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = dict(paint)
    cleaned.pop("boundVariables", None)
    cleaned.pop("imageRef", None)

    if isinstance(cleaned.get("gradientStops"), list):
        stops = []
        for stop in cleaned["gradientStops"]:
            stop = dict(stop)
            stop.pop("boundVariables", None)
            if "color" in stop:
                stop["color"] = rgba_to_hex(stop["color"])
            stops.append(stop)
        cleaned["gradientStops"] = stops

    if "color" in cleaned:
        cleaned["color"] = rgba_to_hex(cleaned["color"])
    return cleaned


def filter_figma_node(node: Any) -> Optional[Dict[str, Any]]:
    """Strip VECTOR nodes and noisy paint fields from a node tree."""
    if not isinstance(node, dict):
        return node

    if node.get("type") == "VECTOR":
        return None

    filtered: Dict[str, Any] = {
        "id": node.get("id"),
        "name": node.get("name"),
        "type": node.get("type"),
    }

    for key in ("fills", "strokes"):
        paints = node.get(key)
        if paints:
            filtered[key] = [_clean_paint(p) for p in paints if isinstance(p, dict)]

    for key in ("cornerRadius", "absoluteBoundingBox", "characters"):
        if key in node:
            filtered[key] = node[key]

    style = node.get("style")
    if isinstance(style, dict):
        filtered["style"] = {key: style.get(key) for key in _STYLE_KEYS}

    children = node.get("children")
    if isinstance(children, list):
        kept: List[Any] = []
        for child in children:
            child = filter_figma_node(child)
            if child is not None:
                kept.append(child)
        filtered["children"] = kept

    return filtered
