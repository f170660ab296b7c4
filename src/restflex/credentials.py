"""
凭证模块

定义 OAuth 访问令牌模型，以及客户端唯一的活动凭证存储
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum

from restflex.codec import decode_query_string
from restflex.constants import HANDSHAKE_REASON_BAD_TOKEN_RESPONSE
from restflex.exceptions import APIClientHandshakeError

logger = logging.getLogger(__name__)


@dataclass
class OAuthAccessToken:
    """
    OAuth 令牌

    参数:
        key: 令牌
        secret: 令牌密钥，bearer 令牌为空字符串
        verifier: 授权回调中携带的 oauth_verifier
        attributes: 令牌响应中的其他字段（例如 user_id、screen_name）
    """

    key: str
    secret: str = ""
    verifier: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_query_string(cls, query: str | dict[str, str]) -> OAuthAccessToken:
        """
        从令牌端点的 urlencoded 响应构造令牌

        异常:
            APIClientHandshakeError: 缺少 oauth_token 或 oauth_token_secret 时抛出
        """
        values = decode_query_string(query) if isinstance(query, str) else dict(query)
        key = values.pop("oauth_token", None)
        secret = values.pop("oauth_token_secret", None)
        if not key or not secret:
            raise APIClientHandshakeError(
                "Bad OAuth response received from server", reason=HANDSHAKE_REASON_BAD_TOKEN_RESPONSE
            )
        return cls(key=key, secret=secret, attributes=values)


class CredentialKind(str, Enum):
    OAUTH1 = "oauth1"
    BEARER = "bearer"


@dataclass(frozen=True)
class Credential:
    """活动凭证：令牌及其类型"""

    token: OAuthAccessToken
    kind: CredentialKind = CredentialKind.OAUTH1


class CredentialStore:
    """
    活动凭证存储

    客户端全局唯一的共享状态之一，读写都在锁内完成
    """

    def __init__(self, credential: Credential | None = None):
        self._credential = credential
        self._lock = threading.Lock()

    def get(self) -> Credential | None:
        with self._lock:
            return self._credential

    def install(self, credential: Credential):
        with self._lock:
            self._credential = credential
        logger.info(f"Installed {credential.kind.value} credential")

    def clear(self) -> Credential | None:
        """清除活动凭证，返回被清除的凭证"""
        with self._lock:
            credential, self._credential = self._credential, None
        if credential is not None:
            logger.info(f"Cleared {credential.kind.value} credential")
        return credential
