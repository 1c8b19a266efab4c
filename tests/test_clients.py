"""Tests for the remote conversion and analysis HTTP clients."""

import base64

import pytest
import requests
from unittest.mock import Mock

from item_images.core.clients import AnalysisClient, RemoteConversionClient
from item_images.core.exceptions import AnalysisError, ConfigurationError, ImageProcessingError

BASE_URL = "https://fn.test/functions/v1/"


def fake_session(body=None, ok=True, status_code=200, json_error=False):
    response = Mock(ok=ok, status_code=status_code)
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = body
    session = Mock()
    session.post.return_value = response
    return session


class TestRemoteConversionClient:
    """Tests for RemoteConversionClient."""

    def test_convert_success(self):
        """Test the request shape and the decoded response."""
        payload = base64.b64encode(b"jpeg-bytes").decode("ascii")
        session = fake_session(
            {"success": True, "converted_base64": payload, "mime_type": "image/jpeg"}
        )
        client = RemoteConversionClient(BASE_URL, "token", timeout=30, session=session)

        data, mime_type = client.convert("aGVpYw==", "image/heic")

        assert data == b"jpeg-bytes"
        assert mime_type == "image/jpeg"
        session.post.assert_called_once_with(
            "https://fn.test/functions/v1/convert-image",
            json={"image_base64": "aGVpYw==", "mime_type": "image/heic"},
            headers={"Authorization": "Bearer token", "Content-Type": "application/json"},
            timeout=30,
        )

    def test_convert_reports_server_error(self):
        """Test an unsuccessful body raises with the server's message."""
        session = fake_session({"success": False, "error": "Unsupported HEIC variant"})
        client = RemoteConversionClient(BASE_URL, "token", timeout=30, session=session)

        with pytest.raises(ImageProcessingError, match="Unsupported HEIC variant"):
            client.convert("aGVpYw==", "image/heic")

    def test_convert_missing_data(self):
        """Test a success without image data is an error."""
        client = RemoteConversionClient(
            BASE_URL, "token", timeout=30, session=fake_session({"success": True})
        )

        with pytest.raises(ImageProcessingError, match="no image data"):
            client.convert("aGVpYw==", "image/heic")

    def test_convert_invalid_base64(self):
        """Test corrupt base64 in the response is an error."""
        session = fake_session({"success": True, "converted_base64": "***"})
        client = RemoteConversionClient(BASE_URL, "token", timeout=30, session=session)

        with pytest.raises(ImageProcessingError, match="invalid base64"):
            client.convert("aGVpYw==", "image/heic")

    def test_http_error_uses_body_message(self):
        """Test non-2xx responses raise HTTPError with the body's error text."""
        session = fake_session({"error": "Unauthorized"}, ok=False, status_code=401)
        client = RemoteConversionClient(BASE_URL, "token", timeout=30, session=session)

        with pytest.raises(requests.HTTPError, match="Unauthorized"):
            client.convert("aGVpYw==", "image/heic")

    def test_http_error_without_body(self):
        """Test non-JSON error responses still report the status code."""
        session = fake_session(ok=False, status_code=502, json_error=True)
        client = RemoteConversionClient(BASE_URL, "token", timeout=30, session=session)

        with pytest.raises(requests.HTTPError, match="HTTP 502"):
            client.convert("aGVpYw==", "image/heic")

    @pytest.mark.parametrize("base_url, token", [("", "token"), (BASE_URL, "")])
    def test_requires_configuration(self, base_url, token):
        """Test the client refuses to build without URL and token."""
        with pytest.raises(ConfigurationError):
            RemoteConversionClient(base_url, token, timeout=30, session=Mock())


class TestAnalysisClient:
    """Tests for AnalysisClient."""

    def test_analyze_success(self):
        """Test detections are parsed into models."""
        session = fake_session(
            {
                "detected_items": [{"name": "Mug", "bbox": [10, 20, 30, 40], "tags": ["ceramic"]}],
                "analysis_model": "vision-1",
                "analyzed_at": "2026-01-01T00:00:00Z",
            }
        )
        client = AnalysisClient(BASE_URL, "token", timeout=120, session=session)

        response = client.analyze("items/u1/a.jpg")

        assert response.detected_items[0].tags == ["ceramic"]
        assert response.analysis_model == "vision-1"
        args, kwargs = session.post.call_args
        assert args[0] == "https://fn.test/functions/v1/analyze-image"
        assert kwargs["json"] == {"storage_path": "items/u1/a.jpg"}
        assert kwargs["timeout"] == 120

    def test_analyze_empty_body(self):
        """Test an empty response is an AnalysisError."""
        client = AnalysisClient(BASE_URL, "token", timeout=120, session=fake_session({}))

        with pytest.raises(AnalysisError, match="No data returned"):
            client.analyze("items/u1/a.jpg")

    def test_analyze_request_failure(self):
        """Test transport errors surface as AnalysisError."""
        session = Mock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        client = AnalysisClient(BASE_URL, "token", timeout=120, session=session)

        with pytest.raises(AnalysisError, match="connection refused") as exc_info:
            client.analyze("items/u1/a.jpg")

        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)

    def test_analyze_http_error(self):
        """Test server errors surface as AnalysisError with the server message."""
        session = fake_session({"error": "Analysis quota exceeded"}, ok=False, status_code=429)
        client = AnalysisClient(BASE_URL, "token", timeout=120, session=session)

        with pytest.raises(AnalysisError, match="quota exceeded"):
            client.analyze("items/u1/a.jpg")

    def test_analyze_malformed_body(self):
        """Test a body that does not match the response model is rejected."""
        session = fake_session({"detected_items": "not-a-list"})
        client = AnalysisClient(BASE_URL, "token", timeout=120, session=session)

        with pytest.raises(AnalysisError, match="Malformed"):
            client.analyze("items/u1/a.jpg")
