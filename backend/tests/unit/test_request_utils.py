"""
Tests for client IP resolution.
"""

from unittest.mock import Mock

from utils.request_utils import DEFAULT_CLIENT_IP, get_client_ip


def _request(headers=None, host="10.0.0.1"):
    request = Mock()
    request.headers = headers or {}
    request.client = Mock(host=host) if host else None
    return request


class TestGetClientIp:

    def test_forwarded_for_first_entry(self):
        request = _request({"x-forwarded-for": "203.0.113.5, 10.0.0.2"})
        assert get_client_ip(request) == "203.0.113.5"

    def test_header_precedence(self):
        """Test x-real-ip wins over cf-connecting-ip when no forwarded-for is present."""
        request = _request({"x-real-ip": "198.51.100.7", "cf-connecting-ip": "192.0.2.9"})
        assert get_client_ip(request) == "198.51.100.7"

    def test_cloudflare_header(self):
        assert get_client_ip(_request({"cf-connecting-ip": "192.0.2.9"})) == "192.0.2.9"

    def test_socket_peer(self):
        assert get_client_ip(_request()) == "10.0.0.1"

    def test_localhost_fallback(self):
        assert get_client_ip(_request(host=None)) == DEFAULT_CLIENT_IP
