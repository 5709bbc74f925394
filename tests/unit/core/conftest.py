"""Shared fixtures for core unit tests"""

import httpx
import pytest

from blockdoc.core.models import Block


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
GIF = b"GIF89a" + b"\x01" * 12


@pytest.fixture(name="png")
def png_fixture():
    return PNG


@pytest.fixture(name="gif")
def gif_fixture():
    return GIF


@pytest.fixture(name="sample_blocks")
def sample_blocks_fixture():
    return [
        Block(name="core/heading", attributes={"content": "Chapter One", "level": 1}),
        Block(name="core/paragraph", attributes={"content": "Some <strong>bold</strong> text."}),
        Block(name="core/list", attributes={"ordered": True}, children=[
            Block(name="core/list-item", attributes={"content": "one"}),
            Block(name="core/list-item", attributes={"content": "two"}),
        ]),
    ]


@pytest.fixture(name="requested")
def requested_fixture():
    """URLs seen by the mock transport, in request order."""
    return []


@pytest.fixture(name="transport")
def transport_fixture(requested):
    """Serve PNG for any .png path, GIF for .gif, and 404 for paths containing 'missing'."""
    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        path = request.url.path
        if "missing" in path:
            return httpx.Response(404)
        if path.endswith(".gif"):
            return httpx.Response(200, content=GIF)
        return httpx.Response(200, content=PNG)
    return httpx.MockTransport(handler)
