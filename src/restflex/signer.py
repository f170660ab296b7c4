"""
请求签名模块

签名器把 OAuth Authorization 头合并进 RequestSpec，返回新的 RequestSpec。
签名器只添加请求头，不改变参数的编码与顺序。
"""

from __future__ import annotations

import base64
import dataclasses
import logging
from abc import ABC, abstractmethod
from urllib.parse import urlencode

from oauthlib import oauth1

from restflex.codec import non_oauth_params, resolve_encoding_mode, stringify_value, url_encode
from restflex.constants import CONTENT_TYPE_FORM_URLENCODED, HTTP_METHOD_GET, HTTP_METHOD_HEAD
from restflex.credentials import CredentialKind, CredentialStore, OAuthAccessToken
from restflex.models import EncodingMode, RequestSpec

logger = logging.getLogger(__name__)


class BaseSigner(ABC):
    """签名器基类"""

    def __init__(self, consumer_key: str, consumer_secret: str, credential_store: CredentialStore | None = None):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.credential_store = credential_store or CredentialStore()

    @abstractmethod
    def authorization_header(self, spec: RequestSpec, token: OAuthAccessToken | None = None) -> str:
        """计算 Authorization 头的值"""

    def sign(self, spec: RequestSpec, token: OAuthAccessToken | None = None) -> RequestSpec:
        """
        返回合并了 Authorization 头的新 RequestSpec

        参数:
            spec: 待签名的请求
            token: 覆盖活动凭证的令牌（握手期间使用请求令牌签名）
        """
        authorization = self.authorization_header(spec, token)
        return dataclasses.replace(spec, headers={**spec.headers, "Authorization": authorization})


class OAuth1Signer(BaseSigner):
    """
    OAuth1 HMAC-SHA1 签名器

    签名使用 oauthlib.oauth1.Client。oauth_callback、oauth_verifier 参数取自 spec.params，
    oauth_token 依次取自令牌覆盖、活动凭证、spec.params。

    使用示例:
        >>> signer = OAuth1Signer("consumer-key", "consumer-secret")
        >>> signed = signer.sign(RequestSpec(url="https://api.example.com/1.1/statuses/update.json",
        ...                                  method="POST", params={"status": "hi"}))
        >>> signed.headers["Authorization"].startswith("OAuth ")
        True
    """

    def _resolve_token(self, spec: RequestSpec, token: OAuthAccessToken | None) -> OAuthAccessToken | None:
        if token is not None:
            return token
        credential = self.credential_store.get()
        if credential is not None and credential.kind is CredentialKind.OAUTH1:
            return credential.token
        key = spec.params.get("oauth_token")
        if key:
            return OAuthAccessToken(key=str(key))
        return None

    def authorization_header(self, spec: RequestSpec, token: OAuthAccessToken | None = None) -> str:
        """
        计算 OAuth1 Authorization 头

        执行步骤:
            1. 确定资源所有者令牌
            2. 查询参数模式下把参数拼入签名 URL；请求体模式下作为表单请求体参与签名；
               multipart 请求体不参与签名
            3. 调用 oauthlib 签名并取出 Authorization 头
        """
        resolved = self._resolve_token(spec, token)
        verifier = spec.params.get("oauth_verifier") or (resolved.verifier if resolved else None)
        callback = spec.params.get("oauth_callback")

        client = oauth1.Client(
            self.consumer_key,
            client_secret=self.consumer_secret,
            resource_owner_key=resolved.key if resolved else None,
            resource_owner_secret=resolved.secret if resolved else None,
            callback_uri=str(callback) if callback else None,
            verifier=str(verifier) if verifier else None,
        )

        uri = spec.url
        headers: dict[str, str] = {}
        body = None
        mode = resolve_encoding_mode(spec)
        signed_params = urlencode({k: stringify_value(v) for k, v in non_oauth_params(spec.params).items()})

        if mode is EncodingMode.QUERY_APPEND:
            uri = f"{uri}{'&' if '?' in uri else '?'}{signed_params}"
        elif mode in (EncodingMode.URLENCODED_BODY, EncodingMode.RAW_BODY):
            if spec.method in (HTTP_METHOD_GET, HTTP_METHOD_HEAD):
                uri = f"{uri}{'&' if '?' in uri else '?'}{signed_params}"
            else:
                headers["Content-Type"] = CONTENT_TYPE_FORM_URLENCODED
                body = signed_params

        _, signed_headers, _ = client.sign(uri, http_method=spec.method, body=body, headers=headers)
        logger.debug(f"Signed {spec.method} request with OAuth1 (token={'yes' if resolved else 'no'})")
        return signed_headers["Authorization"]


class AppOnlySigner(BaseSigner):
    """
    应用级认证签名器

    未安装 bearer 凭证时使用 HTTP Basic（consumer key/secret 先做百分号转义），
    安装后使用 Bearer
    """

    def basic_authorization(self) -> str:
        credentials = f"{url_encode(self.consumer_key)}:{url_encode(self.consumer_secret)}"
        return f"Basic {base64.b64encode(credentials.encode('utf-8')).decode('ascii')}"

    def sign_basic(self, spec: RequestSpec) -> RequestSpec:
        """令牌端点始终使用 Basic 认证，与是否已安装 bearer 凭证无关"""
        return dataclasses.replace(spec, headers={**spec.headers, "Authorization": self.basic_authorization()})

    def authorization_header(self, spec: RequestSpec, token: OAuthAccessToken | None = None) -> str:
        if token is None:
            credential = self.credential_store.get()
            if credential is not None and credential.kind is CredentialKind.BEARER:
                token = credential.token
        if token is not None:
            return f"Bearer {token.key}"
        return self.basic_authorization()
