"""
vMix HTTP API Client

Pushes comments to vMix in two ways:
1. Data Source XML that vMix polls from our /vmix/feed.xml endpoint
2. SetText / TitleBeginAnimation functions for instant title updates

Docs: https://www.vmix.com/help26/DeveloperAPI.html
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, Optional

import httpx

from streamforge.config import settings
from streamforge.errors import SinkError
from streamforge.schemas.comments import Comment
from streamforge.utils.logging import get_logger

logger = get_logger(__name__, category="vmix")

DATA_FIELDS = (
    "Index",
    "Platform",
    "Author",
    "Message",
    "Avatar",
    "Timestamp",
    "IsHighlighted",
)

# Characters outside the XML 1.0 Char production (control codes, surrogates)
INVALID_XML_CHARS = re.compile(
    r"[^\x09\x0a\x0d\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]"
)


def strip_invalid_xml(text: str) -> str:
    return INVALID_XML_CHARS.sub("", text)


class VMixClient:
    """Async client for the vMix HTTP function API."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.host = host or settings.vmix_host
        self.port = port or settings.vmix_port
        self.base_url = f"http://{self.host}:{self.port}/api"
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def get_state(self) -> str:
        """Fetch the full vMix state XML."""
        try:
            response = await self.http_client.get(self.base_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SinkError(f"vMix state request failed: {e}") from e
        return response.text

    async def send_function(self, function: str, **params: Any) -> str:
        """Call a vMix function, e.g. send_function("SetText", Input="1", Value="hi")."""
        query = {"Function": function}
        query.update({key: str(value) for key, value in params.items()})
        try:
            response = await self.http_client.get(self.base_url, params=query)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SinkError(f"vMix function {function} failed: {e}") from e
        return response.text

    async def set_text(self, input_ref: str, field_name: str, value: str) -> str:
        return await self.send_function(
            "SetText", Input=input_ref, SelectedName=field_name, Value=value
        )

    async def set_fields(self, input_ref: str, fields: Dict[str, str]) -> None:
        """Set several text fields of one title input."""
        for name, value in fields.items():
            await self.set_text(input_ref, name, value)

    async def trigger_transition(
        self, input_ref: str, animation: str = "TransitionIn"
    ) -> str:
        return await self.send_function(
            "TitleBeginAnimation", Input=input_ref, Value=animation
        )

    async def ping(self) -> bool:
        """Check if vMix is reachable."""
        try:
            await self.get_state()
            return True
        except SinkError as e:
            logger.debug(f"vMix ping failed: {e}")
            return False

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_data_source_xml(comments: Iterable[Comment]) -> str:
    """
    Render comments in the vMix Data Source XML format.

    Args:
        comments: Comments in display order (row Index starts at 1)

    Returns:
        XML document as a string
    """
    root = ET.Element("DataSource")
    data_fields = ET.SubElement(root, "DataFields")
    for name in DATA_FIELDS:
        ET.SubElement(data_fields, "Field", name=name)

    data = ET.SubElement(root, "Data")
    for index, comment in enumerate(comments, start=1):
        values = {
            "Index": str(index),
            "Platform": comment.platform,
            "Author": comment.author,
            "Message": comment.message,
            "Avatar": comment.avatar or "",
            "Timestamp": comment.timestamp or "",
            "IsHighlighted": "1" if getattr(comment, "highlighted", False) else "0",
        }
        row = ET.SubElement(data, "row")
        for name in DATA_FIELDS:
            field = ET.SubElement(row, "field", name=name)
            field.text = strip_invalid_xml(values[name])

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="utf-8"?>\n{body}'
