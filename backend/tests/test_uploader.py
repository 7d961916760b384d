"""
Tests for the upload adapter.

Covers: filename sanitization, input validation, object key layout,
policy exchange + direct OSS post, storage failures as UploadError.
"""

from typing import List

import httpx
import pytest

from wallcraft.core.errors import UploadError, ValidationError
from wallcraft.services.dashscope import DashScopeClient
from wallcraft.services.uploader import UploadAdapter, sanitize_filename, validate_image

API_KEY = "sk-upload-secret"
OSS_HOST = "https://dashscope-file.oss-cn-beijing.aliyuncs.com"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

POLICY = {
    "policy": "eyJleHBpcmF0aW9uIjoi",
    "signature": "sig==",
    "upload_dir": "dashscope-instant/abc/2026-10-19/",
    "upload_host": OSS_HOST,
    "oss_access_key_id": "LTAI-temp",
    "x_oss_object_acl": "private",
    "x_oss_forbid_overwrite": "true",
}


# -- Helpers ------------------------------------------------------------------


class FakeDashScope:
    """Serves the policy endpoint and the OSS host from one MockTransport."""

    def __init__(self, policy_status: int = 200, oss_status: int = 200):
        self.policy_status = policy_status
        self.oss_status = oss_status
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/uploads"):
            if self.policy_status != 200:
                return httpx.Response(self.policy_status, json={"code": "Throttling", "message": "slow down"})
            return httpx.Response(200, json={"request_id": "r", "data": POLICY})
        return httpx.Response(self.oss_status, text="" if self.oss_status == 200 else "<Error/>")


def make_adapter(fake: FakeDashScope) -> UploadAdapter:
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return UploadAdapter(DashScopeClient(API_KEY, http=http), clock=lambda: 1760860800.5)


# -- Tests --------------------------------------------------------------------


class TestSanitize:

    @pytest.mark.parametrize("raw,expected", [
        ("photo.png", "photo.png"),
        ("../../etc/passwd", "etcpasswd"),
        ("我的 照片 (1).jpg", "1.jpg"),
        ("...hidden", "hidden"),
        ("", "image"),
        (None, "image"),
    ])
    def test_strips_unsafe_characters(self, raw, expected):
        assert sanitize_filename(raw) == expected


class TestValidate:

    def test_missing_file(self):
        with pytest.raises(ValidationError, match="未提供文件"):
            validate_image(b"", "image/png")

    def test_rejects_unsupported_type(self):
        with pytest.raises(ValidationError):
            validate_image(b"GIF89a", "image/gif")

    def test_rejects_oversized_file(self):
        with pytest.raises(ValidationError):
            validate_image(b"x" * 11, "image/jpeg", max_bytes=10)

    @pytest.mark.parametrize("content_type", ["image/jpeg", "image/png", "image/webp", "image/bmp"])
    def test_accepts_supported_types(self, content_type):
        validate_image(b"data", content_type)


class TestUpload:

    def test_key_layout(self):
        adapter = make_adapter(FakeDashScope())
        key = adapter.build_key("dir/", "user/../1", "a b.png")
        assert key == "dir/user..1/1760860800500_ab.png"

    async def test_uploads_and_returns_public_url(self):
        fake = FakeDashScope()
        url = await make_adapter(fake).upload("user-1", PNG_BYTES, "cat.png", "image/png")

        assert url == f"{OSS_HOST}/dashscope-instant/abc/2026-10-19/user-1/1760860800500_cat.png"

        policy_request, oss_request = fake.requests
        assert policy_request.url.params["action"] == "getPolicy"
        assert policy_request.headers["Authorization"] == f"Bearer {API_KEY}"
        assert oss_request.url.host == "dashscope-file.oss-cn-beijing.aliyuncs.com"
        assert "Authorization" not in oss_request.headers
        body = oss_request.content
        assert b'name="OSSAccessKeyId"' in body
        assert b"user-1/1760860800500_cat.png" in body

    async def test_validation_happens_before_network(self):
        fake = FakeDashScope()
        with pytest.raises(ValidationError):
            await make_adapter(fake).upload("user-1", b"", "cat.png", "image/png")
        assert fake.requests == []

    async def test_policy_failure_is_upload_error(self):
        with pytest.raises(UploadError) as exc_info:
            await make_adapter(FakeDashScope(policy_status=429)).upload("user-1", PNG_BYTES, "cat.png", "image/png")
        assert exc_info.value.status_code == 500

    async def test_policy_transport_failure_is_upload_error(self):
        def unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(unreachable))
        adapter = UploadAdapter(DashScopeClient(API_KEY, http=http))
        with pytest.raises(UploadError, match="获取上传凭证失败"):
            await adapter.upload("user-1", PNG_BYTES, "cat.png", "image/png")

    async def test_storage_timeout_is_upload_error(self):
        fake = FakeDashScope()

        def oss_times_out(request: httpx.Request) -> httpx.Response:
            if request.url.host == "dashscope-file.oss-cn-beijing.aliyuncs.com":
                raise httpx.ReadTimeout("timed out", request=request)
            return fake(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(oss_times_out))
        adapter = UploadAdapter(DashScopeClient(API_KEY, http=http))
        with pytest.raises(UploadError, match="图片上传失败"):
            await adapter.upload("user-1", PNG_BYTES, "cat.png", "image/png")

    async def test_storage_failure_is_upload_error(self):
        with pytest.raises(UploadError, match="图片上传失败"):
            await make_adapter(FakeDashScope(oss_status=403)).upload("user-1", PNG_BYTES, "cat.png", "image/png")
