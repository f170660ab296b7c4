"""
签名器测试

测试 OAuth1Signer 与 AppOnlySigner:
- Authorization 头的结构与令牌选择
- 签名参数与线上编码方式的对应关系
- Basic / Bearer 切换
"""

import pytest
from unittest.mock import patch
from urllib.parse import urlencode

from oauthlib import oauth1

from restflex.credentials import Credential, CredentialKind, CredentialStore, OAuthAccessToken
from restflex.models import RequestSpec
from restflex.signer import AppOnlySigner, OAuth1Signer

URL = "https://api.example.com/1.1/statuses/update.json"


def fixed_signature(uri, method, body=None, headers=None, **client_kwargs):
    """用固定 nonce/timestamp 直接调用 oauthlib 计算期望的 Authorization 头"""
    client = oauth1.Client(
        "consumer-key",
        client_secret="consumer-secret",
        nonce="nonce",
        timestamp="1700000000",
        **client_kwargs,
    )
    _, signed_headers, _ = client.sign(uri, http_method=method, body=body, headers=headers or {})
    return signed_headers["Authorization"]


@pytest.fixture
def fixed_nonce():
    with patch("oauthlib.oauth1.rfc5849.generate_nonce", return_value="nonce"), patch(
        "oauthlib.oauth1.rfc5849.generate_timestamp", return_value="1700000000"
    ):
        yield


class TestOAuth1Signer:
    """测试 OAuth1Signer"""

    @pytest.fixture
    def store(self):
        return CredentialStore(Credential(OAuthAccessToken(key="token", secret="token-secret")))

    @pytest.mark.unit
    def test_sign_returns_new_spec(self, store):
        """UT-SIGN-001: 返回合并了 Authorization 头的新 RequestSpec，原 spec 不变"""
        # Arrange
        spec = RequestSpec(url=URL, method="POST", params={"status": "hi"}, headers={"Accept": "*/*"})

        # Act
        signed = OAuth1Signer("consumer-key", "consumer-secret", store).sign(spec)

        # Assert
        assert signed is not spec
        assert "Authorization" not in spec.headers
        assert signed.headers["Accept"] == "*/*"
        assert signed.params == spec.params
        authorization = signed.headers["Authorization"]
        assert authorization.startswith("OAuth ")
        assert 'oauth_consumer_key="consumer-key"' in authorization
        assert 'oauth_token="token"' in authorization
        assert 'oauth_signature_method="HMAC-SHA1"' in authorization

    @pytest.mark.unit
    def test_query_params_are_signed(self, store, fixed_nonce):
        """UT-SIGN-002: GET 参数参与签名"""
        spec = RequestSpec(url=URL, method="GET", params={"screen_name": "bob", "count": 5})

        authorization = OAuth1Signer("consumer-key", "consumer-secret", store).authorization_header(spec)

        expected = fixed_signature(
            f"{URL}?screen_name=bob&count=5",
            "GET",
            resource_owner_key="token",
            resource_owner_secret="token-secret",
        )
        assert authorization == expected

    @pytest.mark.unit
    def test_body_params_are_signed(self, store, fixed_nonce):
        """UT-SIGN-003: POST 参数作为表单参与签名"""
        spec = RequestSpec(url=URL, method="POST", params={"status": "hello world!"})

        authorization = OAuth1Signer("consumer-key", "consumer-secret", store).authorization_header(spec)

        expected = fixed_signature(
            URL,
            "POST",
            body=urlencode({"status": "hello world!"}),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            resource_owner_key="token",
            resource_owner_secret="token-secret",
        )
        assert authorization == expected

    @pytest.mark.unit
    def test_multipart_params_not_signed(self, store, fixed_nonce):
        """UT-SIGN-004: multipart 请求体不参与签名"""
        spec = RequestSpec(url=URL, method="POST", params={"status": "pic"})
        spec.add_upload(b"data", "media")

        authorization = OAuth1Signer("consumer-key", "consumer-secret", store).authorization_header(spec)

        expected = fixed_signature(URL, "POST", resource_owner_key="token", resource_owner_secret="token-secret")
        assert authorization == expected

    @pytest.mark.unit
    def test_callback_carried_in_header(self):
        """UT-SIGN-005: oauth_callback 放在 Authorization 头中"""
        spec = RequestSpec(url="https://api.example.com/oauth/request_token", method="POST",
                           params={"oauth_callback": "myapp://cb"})

        authorization = OAuth1Signer("consumer-key", "consumer-secret").authorization_header(spec)

        assert 'oauth_callback="myapp%3A%2F%2Fcb"' in authorization
        assert "oauth_token=" not in authorization

    @pytest.mark.unit
    def test_token_override_with_verifier(self, store):
        """UT-SIGN-006: 令牌覆盖优先于活动凭证，携带 verifier"""
        spec = RequestSpec(url="https://api.example.com/oauth/access_token", method="POST")
        request_token = OAuthAccessToken(key="request-token", secret="request-secret", verifier="V")

        authorization = OAuth1Signer("consumer-key", "consumer-secret", store).authorization_header(spec, request_token)

        assert 'oauth_token="request-token"' in authorization
        assert 'oauth_verifier="V"' in authorization

    @pytest.mark.unit
    def test_bearer_credential_ignored(self):
        """UT-SIGN-007: bearer 凭证不用于 OAuth1 签名"""
        store = CredentialStore(Credential(OAuthAccessToken(key="AAAA"), CredentialKind.BEARER))
        spec = RequestSpec(url=URL)

        authorization = OAuth1Signer("consumer-key", "consumer-secret", store).authorization_header(spec)

        assert "oauth_token=" not in authorization


class TestAppOnlySigner:
    """测试 AppOnlySigner"""

    @pytest.mark.unit
    def test_basic_authorization(self):
        """UT-SIGN-008: 未安装 bearer 凭证时使用 Basic"""
        signer = AppOnlySigner("xvz1evFS4wEEPTGEFPHBog", "L8qq9PZyRg6ieKGEKhZolGC0vJWLw8iEJ88DRdyOg")

        signed = signer.sign(RequestSpec(url=URL))

        assert signed.headers["Authorization"] == (
            "Basic eHZ6MWV2RlM0d0VFUFRHRUZQSEJvZzpMOHFxOVBaeVJnNmllS0dFS2hab2xHQzB2SldMdzhpRUo4OERSZHlPZw=="
        )

    @pytest.mark.unit
    def test_bearer_after_install(self):
        """UT-SIGN-009: 安装 bearer 凭证后使用 Bearer"""
        store = CredentialStore()
        signer = AppOnlySigner("key", "secret", store)
        store.install(Credential(OAuthAccessToken(key="AAAA"), CredentialKind.BEARER))

        assert signer.sign(RequestSpec(url=URL)).headers["Authorization"] == "Bearer AAAA"

    @pytest.mark.unit
    def test_sign_basic_ignores_bearer(self):
        """UT-SIGN-010: 令牌端点始终使用 Basic"""
        store = CredentialStore(Credential(OAuthAccessToken(key="AAAA"), CredentialKind.BEARER))
        signer = AppOnlySigner("key", "secret", store)

        assert signer.sign_basic(RequestSpec(url=URL)).headers["Authorization"].startswith("Basic ")
