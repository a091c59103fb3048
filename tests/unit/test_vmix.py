"""Unit tests for the vMix client and data source XML."""
import xml.etree.ElementTree as ET

import httpx
import pytest

from streamforge.errors import SinkError
from streamforge.schemas.comments import Comment, EnrichedComment
from streamforge.sink.vmix import DATA_FIELDS, VMixClient, build_data_source_xml


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
@pytest.mark.asyncio
class TestVMixClient:
    async def test_set_text_sends_function_query(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text="Function completed successfully.")

        vmix = VMixClient(host="vmix.local", port=8088, http_client=mock_client(handler))
        await vmix.set_text("Title1", "Message", "hello & welcome")

        params = requests[0].url.params
        assert requests[0].url.host == "vmix.local"
        assert requests[0].url.path == "/api"
        assert params["Function"] == "SetText"
        assert params["Input"] == "Title1"
        assert params["SelectedName"] == "Message"
        assert params["Value"] == "hello & welcome"
        await vmix.aclose()

    async def test_set_fields_and_transition(self):
        functions = []

        def handler(request):
            functions.append(
                (request.url.params["Function"], request.url.params.get("SelectedName"))
            )
            return httpx.Response(200)

        vmix = VMixClient(http_client=mock_client(handler))
        await vmix.set_fields("1", {"Message": "hi", "Author": "me"})
        await vmix.trigger_transition("1")

        assert functions == [
            ("SetText", "Message"),
            ("SetText", "Author"),
            ("TitleBeginAnimation", None),
        ]

    async def test_ping(self):
        online = VMixClient(http_client=mock_client(lambda r: httpx.Response(200, text="<vmix/>")))
        offline = VMixClient(http_client=mock_client(lambda r: httpx.Response(500)))

        assert await online.ping() is True
        assert await offline.ping() is False

    async def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        vmix = VMixClient(http_client=mock_client(handler))

        with pytest.raises(SinkError):
            await vmix.send_function("Cut")
        assert await vmix.ping() is False


@pytest.mark.unit
class TestDataSourceXml:
    def test_rows_and_fields(self):
        comments = [
            EnrichedComment(
                id="1",
                platform="youtube",
                author="StreamNerd",
                message="What switcher are you using?",
                timestamp="2025-01-01T00:00:00+00:00",
                highlighted=True,
            ),
            Comment(id="2", platform="twitch", author="fan", message="<3 & more"),
        ]

        xml = build_data_source_xml(comments)
        root = ET.fromstring(xml.split("\n", 1)[1])

        assert xml.startswith('<?xml version="1.0" encoding="utf-8"?>')
        assert [f.get("name") for f in root.find("DataFields")] == list(DATA_FIELDS)

        rows = root.find("Data").findall("row")
        first = {f.get("name"): f.text for f in rows[0]}
        second = {f.get("name"): f.text for f in rows[1]}
        assert first["Index"] == "1"
        assert first["IsHighlighted"] == "1"
        assert first["Author"] == "StreamNerd"
        assert second["Index"] == "2"
        assert second["IsHighlighted"] == "0"
        assert second["Message"] == "<3 & more"

    def test_empty_feed(self):
        root = ET.fromstring(build_data_source_xml([]).split("\n", 1)[1])

        assert root.find("Data").findall("row") == []

    def test_control_characters_are_stripped(self):
        comments = [
            Comment(id="1", platform="twitch", author="Foo\x00", message="\x01ACTION waves\x0b\x01"),
        ]

        xml = build_data_source_xml(comments)
        row = ET.fromstring(xml.split("\n", 1)[1]).find("Data").find("row")
        fields = {f.get("name"): f.text for f in row}

        assert fields["Author"] == "Foo"
        assert fields["Message"] == "ACTION waves"

    def test_whitespace_and_unicode_survive(self):
        message = "line one\tline two é \U0001f64f"

        xml = build_data_source_xml([Comment(id="1", platform="youtube", author="a", message=message)])
        row = ET.fromstring(xml.split("\n", 1)[1]).find("Data").find("row")

        assert {f.get("name"): f.text for f in row}["Message"] == message
