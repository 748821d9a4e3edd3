"""
Unit tests for HostingClient.
"""
import time
from urllib.parse import parse_qs

import httpx
import pytest

from republisher.clients.hosting_client import HostingClient
from republisher.core.exceptions import HostingClientError

API = "https://api.host.test"
TOKEN_URL = f"{API}/oauth/v1/token"
UPLOAD_URL = "https://upload.host.test/upload?uuid=abc"


class FakeHostingPlatform:
    """Request handler imitating the hosting platform."""

    def __init__(self, expires_in=3600, fail_publish=False):
        self.expires_in = expires_in
        self.fail_publish = fail_publish
        self.requests = []
        self.uploaded_body = b""

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == TOKEN_URL:
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["client_credentials"]
            assert form["client_id"] == ["key"]
            body = {"access_token": f"token-{len(self.requests)}"}
            if self.expires_in is not None:
                body["expires_in"] = self.expires_in
            return httpx.Response(200, json=body)

        if url == f"{API}/rest/file/upload":
            assert request.headers["authorization"].startswith("Bearer token-")
            return httpx.Response(200, json={"upload_url": UPLOAD_URL})

        if url == UPLOAD_URL:
            self.uploaded_body = request.read()
            return httpx.Response(200, json={"url": "https://files.host.test/abc"})

        if url == f"{API}/rest/video/create":
            if self.fail_publish:
                return httpx.Response(400, json={"error": {"message": "invalid title"}})
            return httpx.Response(200, json={"id": "x8abc"})

        return httpx.Response(404)


def make_client(platform, chunk_size=1024) -> HostingClient:
    return HostingClient(
        "key", "secret",
        base_url=API,
        token_url=TOKEN_URL,
        chunk_size=chunk_size,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(platform)),
    )


@pytest.mark.unit
class TestHostingClient:
    """Test cases for HostingClient."""

    def test_credentials_required(self):
        with pytest.raises(ValueError):
            HostingClient("", "secret")

    @pytest.mark.asyncio
    async def test_authenticate_sets_expiry_with_margin(self):
        client = make_client(FakeHostingPlatform(expires_in=3600))

        before = time.time()
        await client.authenticate()

        assert client.is_token_valid()
        assert before + 3300 - 5 <= client.token_expiry <= time.time() + 3300

    @pytest.mark.asyncio
    async def test_default_expiry_when_missing(self):
        client = make_client(FakeHostingPlatform(expires_in=None))

        await client.authenticate()

        assert client.token_expiry == pytest.approx(time.time() + 3300, abs=5)

    @pytest.mark.asyncio
    async def test_token_reused_until_expiry(self):
        platform = FakeHostingPlatform()
        client = make_client(platform)

        await client.ensure_valid_token()
        await client.ensure_valid_token()
        assert len(platform.requests) == 1

        client.token_expiry = time.time() - 1
        assert not client.is_token_valid()
        await client.ensure_valid_token()
        assert len(platform.requests) == 2

    @pytest.mark.asyncio
    async def test_upload_and_publish(self, tmp_path):
        """Test the full reserve, stream and publish sequence."""
        video = tmp_path / "episode_1.mp4"
        video.write_bytes(b"v" * 5000)
        platform = FakeHostingPlatform()
        client = make_client(platform, chunk_size=1024)
        progress = []

        async def on_progress(percent):
            progress.append(percent)

        video_id = await client.upload_and_publish(str(video), "Show - Episode 1", "intro", on_progress)

        assert video_id == "x8abc"
        assert progress[-1] == 100
        assert progress == sorted(progress)
        assert len(progress) == 5
        assert b'name="file"; filename="episode_1.mp4"' in platform.uploaded_body
        assert b"v" * 5000 in platform.uploaded_body

        publish = platform.requests[-1]
        assert publish.url.path == "/rest/video/create"
        assert b'"published":true' in publish.content.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_publish_error_is_wrapped(self, tmp_path):
        video = tmp_path / "episode_1.mp4"
        video.write_bytes(b"v" * 10)
        client = make_client(FakeHostingPlatform(fail_publish=True))

        with pytest.raises(HostingClientError, match="invalid title"):
            await client.upload_and_publish(str(video), "Show - Episode 1")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        client = make_client(FakeHostingPlatform())

        with pytest.raises(HostingClientError, match="Video file not found"):
            await client.upload_and_publish(str(tmp_path / "nope.mp4"), "Show - Episode 1")

    @pytest.mark.asyncio
    async def test_test_connection_reports_failure(self):
        client = make_client(lambda request: httpx.Response(401, json={"error": "invalid_client"}))

        result = await client.test_connection()

        assert result["success"] is False
        assert "authenticate" in result["message"]

    @pytest.mark.asyncio
    async def test_test_connection_success(self):
        result = await make_client(FakeHostingPlatform()).test_connection()

        assert result == {"success": True, "message": "Hosting authentication successful", "token_valid": True}
