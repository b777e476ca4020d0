"""Tests for request normalization, header parsing and scope parsing."""
import base64
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from gatehouse_request import (
    BasicCredentials,
    BearerToken,
    EndpointURLs,
    NoCredentials,
    RequestMethod,
    ResponseType,
    decode_response_type,
    normalize_request,
    parse_authorization_header,
)
from gatehouse_scope import EMPTY_SCOPE, Scope, parse_scope


def _basic(user: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{user}:{password}".encode()).decode()


# ---------------------------------------------------------------------------
# decode_response_type
# ---------------------------------------------------------------------------

class TestDecodeResponseType:
    def test_code(self):
        assert decode_response_type("code") is ResponseType.CODE

    def test_token(self):
        assert decode_response_type("token") is ResponseType.TOKEN

    @pytest.mark.parametrize("value", [None, "", "xyz", "CODE", "code token"])
    def test_anything_else_is_unsupported(self, value):
        assert decode_response_type(value) is ResponseType.UNSUPPORTED


# ---------------------------------------------------------------------------
# normalize_request
# ---------------------------------------------------------------------------

class TestNormalizeRequest:
    def test_copies_parameters_verbatim(self):
        urls = EndpointURLs(form_target="/oauth/authorize", step_up_url="https://mfa.example.com")
        req = normalize_request(RequestMethod.POST, {
            "response_type": "code",
            "client_id": "webapp",
            "redirect_uri": "https://app.example.com/cb",
            "scope": "profile email",
            "state": "xyz",
            "username": "alice",
            "password": "hunter2",
        }, urls)
        assert req.method is RequestMethod.POST
        assert req.response_type is ResponseType.CODE
        assert req.client_id == "webapp"
        assert req.redirect_uri == "https://app.example.com/cb"
        assert req.raw_scope == "profile email"
        assert req.state == "xyz"
        assert req.username == "alice"
        assert req.password == "hunter2"
        assert req.urls is urls

    def test_missing_parameters_are_none(self):
        req = normalize_request(RequestMethod.GET, {}, EndpointURLs())
        assert req.response_type is ResponseType.UNSUPPORTED
        assert req.client_id is None
        assert req.redirect_uri is None
        assert req.state is None
        assert req.resource_owner_id is None

    def test_default_form_target_is_root(self):
        assert EndpointURLs().form_target == "/"
        assert EndpointURLs().step_up_url is None


# ---------------------------------------------------------------------------
# parse_authorization_header
# ---------------------------------------------------------------------------

class TestParseAuthorizationHeader:
    def test_absent(self):
        assert parse_authorization_header(None) == NoCredentials()
        assert parse_authorization_header("") == NoCredentials()

    def test_basic(self):
        assert parse_authorization_header(_basic("alice", "hunter2")) == \
            BasicCredentials("alice", "hunter2")

    def test_basic_scheme_case_insensitive(self):
        value = _basic("alice", "pw").replace("Basic", "bAsIc")
        assert parse_authorization_header(value) == BasicCredentials("alice", "pw")

    def test_basic_password_may_contain_colon(self):
        assert parse_authorization_header(_basic("alice", "a:b:c")) == \
            BasicCredentials("alice", "a:b:c")

    def test_basic_without_colon(self):
        value = "Basic " + base64.b64encode(b"alice").decode()
        assert parse_authorization_header(value) == NoCredentials()

    def test_basic_garbage(self):
        assert parse_authorization_header("Basic !!!not-base64!!!") == NoCredentials()

    def test_bearer(self):
        assert parse_authorization_header("Bearer abc.def") == BearerToken("abc.def")

    def test_bearer_without_token(self):
        assert parse_authorization_header("Bearer ") == NoCredentials()

    def test_unknown_scheme(self):
        assert parse_authorization_header("Digest username=alice") == NoCredentials()


# ---------------------------------------------------------------------------
# parse_scope
# ---------------------------------------------------------------------------

class TestParseScope:
    def test_empty_and_absent_are_the_same(self):
        assert parse_scope("") == parse_scope(None) == EMPTY_SCOPE
        assert len(parse_scope("   ")) == 0

    def test_idempotent(self):
        assert parse_scope("profile email") == parse_scope("profile email")

    def test_deduplicates_keeping_first_order(self):
        scope = parse_scope("email profile email")
        assert scope.to_list() == ["email", "profile"]

    def test_whitespace_and_commas_separate(self):
        assert parse_scope("a,b  c\td").to_list() == ["a", "b", "c", "d"]

    def test_order_ignored_for_equality(self):
        assert parse_scope("a b") == parse_scope("b a")
        assert hash(parse_scope("a b")) == hash(parse_scope("b a"))

    def test_to_string_preserves_display_order(self):
        assert parse_scope("b a b").to_string() == "b a"

    def test_membership_and_truthiness(self):
        scope = parse_scope("profile")
        assert "profile" in scope
        assert "email" not in scope
        assert scope
        assert not Scope()
