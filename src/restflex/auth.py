"""
OAuth 握手模块

实现 OAuth1 三方授权流程以及 OAuth2 应用级（bearer）令牌的获取与注销。

OAuth1 状态流转:
    NoToken -> RequestTokenPending -> AwaitingUserAuthorization -> AccessTokenPending -> Authorized | Failed
    任意非终止状态均可取消，取消后不触发任何回调

唯一的挂起点是等待用户授权：由外部通过 handle_callback_url() 投递回调 URL 恢复，
每个客户端同一时刻最多只有一个未完成的 HandshakeSession。
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, InvalidStateError
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from restflex.codec import decode_query_string
from restflex.constants import (
    APP_ONLY_AUTHENTICATION_ERROR_CODE,
    HANDSHAKE_REASON_API_ERROR,
    HANDSHAKE_REASON_IN_PROGRESS,
    HANDSHAKE_REASON_MISSING_VERIFIER,
    HANDSHAKE_REASON_TOKEN_MISMATCH,
    HANDSHAKE_REASON_UNEXPECTED_TOKEN_TYPE,
    HANDSHAKE_REASON_UNPARSEABLE_RESPONSE,
    OAUTH2_INVALIDATE_TOKEN_PATH,
    OAUTH2_TOKEN_PATH,
    OAUTH_ACCESS_TOKEN_PATH,
    OAUTH_AUTHORIZE_PATH,
    OAUTH_REQUEST_TOKEN_PATH,
)
from restflex.credentials import Credential, CredentialKind, OAuthAccessToken
from restflex.exceptions import APIClientDecodeError, APIClientError, APIClientHandshakeError
from restflex.json_value import JSONValue
from restflex.models import ResponseEnvelope
from restflex.parser import JSONResponseParser, QueryStringResponseParser

if TYPE_CHECKING:
    from restflex.client import APIClient
    from restflex.executor import RequestExecutor

logger = logging.getLogger(__name__)

TokenCallback = Callable[["OAuthAccessToken | None", ResponseEnvelope], None]
FailureCallback = Callable[[APIClientError], None]


class HandshakeState(str, Enum):
    NO_TOKEN = "no_token"
    REQUEST_TOKEN_PENDING = "request_token_pending"
    AWAITING_USER_AUTHORIZATION = "awaiting_user_authorization"
    ACCESS_TOKEN_PENDING = "access_token_pending"
    AUTHORIZED = "authorized"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (HandshakeState.AUTHORIZED, HandshakeState.FAILED, HandshakeState.CANCELLED)


class HandshakeSession:
    """
    一次未完成的 OAuth1 授权

    回调 URL 通过单槽 Future 投递，只能投递一次

    参数:
        callback_url: 授权完成后服务器重定向的地址
    """

    def __init__(self, callback_url: str):
        self.callback_url = callback_url
        self.state = HandshakeState.NO_TOKEN
        self.request_token: OAuthAccessToken | None = None
        self.executor: RequestExecutor | None = None
        self.callback: Future = Future()
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.state is HandshakeState.CANCELLED

    def deliver(self, url: str) -> bool:
        """投递回调 URL，重复投递返回 False"""
        try:
            self.callback.set_result(url)
        except InvalidStateError:
            return False
        return True

    def advance(self, state: HandshakeState) -> bool:
        """进入下一状态；已处于终止状态（包括已取消）时返回 False"""
        with self._lock:
            if self.state.is_terminal:
                return False
            self.state = state
            return True

    def cancel(self):
        with self._lock:
            self.state = HandshakeState.CANCELLED
        self.callback.cancel()
        if self.executor is not None:
            self.executor.cancel()


class AuthHandshake:
    """
    OAuth 握手编排器

    只负责按顺序发起 RequestExecutor 调用，不直接接触传输层

    参数:
        client: 所属的 APIClient
    """

    def __init__(self, client: APIClient):
        self.client = client
        self._session: HandshakeSession | None = None
        self._lock = threading.Lock()

    @property
    def session(self) -> HandshakeSession | None:
        with self._lock:
            return self._session

    # ========== OAuth1 三方授权 ==========

    def authorize(
        self,
        callback_url: str,
        open_authorize_url: Callable[[str], None],
        on_success: TokenCallback,
        on_failure: FailureCallback | None = None,
        close_authorize_url: Callable[[], None] | None = None,
    ) -> HandshakeSession | None:
        """
        启动 OAuth1 三方授权

        参数:
            callback_url: 回调地址，作为 oauth_callback 发送
            open_authorize_url: 在投递线程上调用，负责让用户打开授权页面
            on_success: 授权成功回调 (access_token, envelope)
            on_failure: 失败回调 (error)
            close_authorize_url: 收到回调 URL 时调用一次（可选）

        返回:
            新建的 HandshakeSession；已有未完成的授权时返回 None，并通过 on_failure 报告

        执行步骤:
            1. 注册会话，同一客户端只允许一个未完成的会话
            2. 获取请求令牌
            3. 打开授权页面并挂起，等待 handle_callback_url()
            4. 从回调 URL 中取出 oauth_verifier，换取访问令牌并安装为活动凭证
        """
        with self._lock:
            if self._session is not None:
                session = None
            else:
                session = HandshakeSession(callback_url)
                self._session = session

        if session is None:
            logger.warning("Rejected authorization: another handshake is already in progress")
            error = APIClientHandshakeError(
                "An authorization handshake is already in progress", reason=HANDSHAKE_REASON_IN_PROGRESS
            )
            if on_failure is not None:
                self.client.delivery_executor.submit(on_failure, error)
            return None

        logger.info("Starting OAuth1 authorization")
        session.advance(HandshakeState.REQUEST_TOKEN_PENDING)

        def on_request_token(values: dict[str, str], envelope: ResponseEnvelope):
            if session.cancelled:
                return
            try:
                token = OAuthAccessToken.from_query_string(values)
            except APIClientHandshakeError as e:
                self._fail(session, e, on_failure)
                return
            self._await_user_authorization(session, token, open_authorize_url, on_success, on_failure, close_authorize_url)

        session.executor = self.post_request_token(
            callback_url,
            on_success=on_request_token,
            on_failure=lambda error: self._fail(session, error, on_failure),
        )
        return session

    def _await_user_authorization(
        self,
        session: HandshakeSession,
        token: OAuthAccessToken,
        open_authorize_url: Callable[[str], None],
        on_success: TokenCallback,
        on_failure: FailureCallback | None,
        close_authorize_url: Callable[[], None] | None,
    ):
        session.request_token = token
        if not session.advance(HandshakeState.AWAITING_USER_AUTHORIZATION):
            return
        authorize_url = self.build_authorize_url(token.key)
        logger.info("Awaiting user authorization")

        def on_callback(future: Future):
            if future.cancelled():
                return
            self.client.io_executor.submit(
                self._on_callback_received, session, future.result(), on_success, on_failure, close_authorize_url
            )

        session.callback.add_done_callback(on_callback)
        if session.cancelled:
            return
        open_authorize_url(authorize_url)

    def _on_callback_received(
        self,
        session: HandshakeSession,
        url: str,
        on_success: TokenCallback,
        on_failure: FailureCallback | None,
        close_authorize_url: Callable[[], None] | None,
    ):
        """
        处理回调 URL

        缺少 oauth_verifier 或 oauth_token 与请求令牌不一致时直接失败，不发起网络请求
        """
        if session.cancelled:
            return
        if close_authorize_url is not None:
            self.client.delivery_executor.submit(close_authorize_url)

        params = decode_query_string(urlsplit(url).query)
        verifier = params.get("oauth_verifier")
        if not verifier:
            self._fail(
                session,
                APIClientHandshakeError(
                    "Bad OAuth response received from server", reason=HANDSHAKE_REASON_MISSING_VERIFIER
                ),
                on_failure,
            )
            return

        request_token = session.request_token
        callback_token = params.get("oauth_token")
        if callback_token is not None and callback_token != request_token.key:
            self._fail(
                session,
                APIClientHandshakeError(
                    "OAuth token in callback does not match the request token", reason=HANDSHAKE_REASON_TOKEN_MISMATCH
                ),
                on_failure,
            )
            return

        request_token.verifier = verifier
        if not session.advance(HandshakeState.ACCESS_TOKEN_PENDING):
            return

        def on_access_token(values: dict[str, str], envelope: ResponseEnvelope):
            if session.cancelled:
                return
            try:
                access_token = OAuthAccessToken.from_query_string(values)
            except APIClientHandshakeError as e:
                self._fail(session, e, on_failure)
                return
            if not self._release_session(session):
                return
            self.client.credential_store.install(Credential(access_token, CredentialKind.OAUTH1))
            session.advance(HandshakeState.AUTHORIZED)
            logger.info("OAuth1 authorization completed")
            on_success(access_token, envelope)

        session.executor = self.post_access_token(
            request_token,
            on_success=on_access_token,
            on_failure=lambda error: self._fail(session, error, on_failure),
        )

    def handle_callback_url(self, url: str) -> bool:
        """
        投递授权回调 URL

        返回:
            True 表示已投递给未完成的会话；没有会话或已投递过时返回 False
        """
        session = self.session
        if session is None:
            logger.warning("Received callback URL with no authorization in progress")
            return False
        delivered = session.deliver(url)
        if not delivered:
            logger.debug("Ignoring duplicate callback URL")
        return delivered

    def cancel(self) -> bool:
        """取消未完成的授权，不触发任何回调"""
        with self._lock:
            session, self._session = self._session, None
        if session is None:
            return False
        session.cancel()
        logger.info("OAuth1 authorization cancelled")
        return True

    def _fail(self, session: HandshakeSession, error: APIClientError, on_failure: FailureCallback | None):
        if session.cancelled or not self._release_session(session):
            return
        session.advance(HandshakeState.FAILED)
        logger.error(f"OAuth1 authorization failed: {error}")
        if on_failure is not None:
            self.client.delivery_executor.submit(on_failure, error)

    def _release_session(self, session: HandshakeSession) -> bool:
        """注销会话；会话已被取消或已注销时返回 False"""
        with self._lock:
            if self._session is not session:
                return False
            self._session = None
            return True

    # ========== OAuth1 端点 ==========

    def build_authorize_url(self, token_key: str) -> str:
        return f"{self.client.oauth_base_url}{OAUTH_AUTHORIZE_PATH}?oauth_token={token_key}"

    def post_request_token(
        self, callback_url: str, on_success: Callable[[dict[str, str], ResponseEnvelope], None], on_failure: FailureCallback
    ) -> RequestExecutor:
        return self.client.post(
            OAUTH_REQUEST_TOKEN_PATH,
            base_url=self.client.oauth_base_url,
            params={"oauth_callback": callback_url},
            response_parser=QueryStringResponseParser(),
            on_success=on_success,
            on_failure=on_failure,
        )

    def post_access_token(
        self,
        request_token: OAuthAccessToken,
        on_success: Callable[[dict[str, str], ResponseEnvelope], None],
        on_failure: FailureCallback,
    ) -> RequestExecutor:
        """用带 verifier 的请求令牌换取访问令牌，签名使用请求令牌"""
        return self.client.post(
            OAUTH_ACCESS_TOKEN_PATH,
            base_url=self.client.oauth_base_url,
            params={"oauth_token": request_token.key, "oauth_verifier": request_token.verifier},
            response_parser=QueryStringResponseParser(),
            token=request_token,
            on_success=on_success,
            on_failure=on_failure,
        )

    # ========== OAuth2 应用级认证 ==========

    def authorize_app_only(self, on_success: TokenCallback, on_failure: FailureCallback | None = None) -> RequestExecutor:
        """
        获取应用级 bearer 令牌并安装为活动凭证

        失败原因:
            unexpected_token_type: token_type 不是 bearer，或缺少 access_token
            api_error: 响应中带有 errors，携带其 code 和 message
            unparseable_response: 响应体不是 JSON 对象
        """

        def on_token(payload: JSONValue, envelope: ResponseEnvelope):
            try:
                token = self._parse_bearer_token(payload)
            except APIClientHandshakeError as e:
                logger.error(f"App-only authorization failed: {e}")
                if on_failure is not None:
                    on_failure(e)
                return
            self.client.credential_store.install(Credential(token, CredentialKind.BEARER))
            logger.info("App-only authorization completed")
            on_success(token, envelope)

        def on_error(error: APIClientError):
            if isinstance(error, APIClientDecodeError):
                error = APIClientHandshakeError(
                    "Cannot find JSON dictionary in response",
                    reason=HANDSHAKE_REASON_UNPARSEABLE_RESPONSE,
                    code=APP_ONLY_AUTHENTICATION_ERROR_CODE,
                )
            logger.error(f"App-only authorization failed: {error}")
            if on_failure is not None:
                on_failure(error)

        return self.client.post(
            OAUTH2_TOKEN_PATH,
            base_url=self.client.oauth_base_url,
            params={"grant_type": "client_credentials"},
            encode_parameters=True,
            response_parser=JSONResponseParser(),
            sign_with=self.client.app_only_signer.sign_basic,
            on_success=on_token,
            on_failure=on_error,
        )

    @staticmethod
    def _parse_bearer_token(payload: JSONValue) -> OAuthAccessToken:
        token_type = payload["token_type"].string
        if token_type is not None:
            access_token = payload["access_token"].string
            if token_type != "bearer" or not access_token:
                raise APIClientHandshakeError(
                    "Cannot find bearer token in server response",
                    reason=HANDSHAKE_REASON_UNEXPECTED_TOKEN_TYPE,
                    code=APP_ONLY_AUTHENTICATION_ERROR_CODE,
                )
            return OAuthAccessToken(key=access_token)

        errors = payload["errors"]
        error = errors[0] if errors.array else errors
        if error.object is not None:
            raise APIClientHandshakeError(
                error["message"].string or "Unknown API error",
                reason=HANDSHAKE_REASON_API_ERROR,
                code=error["code"].integer,
            )

        raise APIClientHandshakeError(
            "Cannot find JSON dictionary in response",
            reason=HANDSHAKE_REASON_UNPARSEABLE_RESPONSE,
            code=APP_ONLY_AUTHENTICATION_ERROR_CODE,
        )

    def invalidate_bearer_token(
        self, on_success: TokenCallback, on_failure: FailureCallback | None = None
    ) -> RequestExecutor:
        """
        注销 bearer 令牌

        响应中带有 access_token 时清除活动凭证并返回该令牌，否则以 None 成功返回
        """
        params: dict[str, Any] = {}
        credential = self.client.credential_store.get()
        if credential is not None and credential.kind is CredentialKind.BEARER:
            params["access_token"] = credential.token.key

        def on_response(payload: JSONValue, envelope: ResponseEnvelope):
            access_token = payload["access_token"].string
            if access_token is None:
                logger.info("Bearer token invalidation returned no token")
                on_success(None, envelope)
                return
            self.client.credential_store.clear()
            logger.info("Bearer token invalidated")
            on_success(OAuthAccessToken(key=access_token), envelope)

        return self.client.post(
            OAUTH2_INVALIDATE_TOKEN_PATH,
            base_url=self.client.oauth_base_url,
            params=params,
            encode_parameters=True,
            response_parser=JSONResponseParser(),
            sign_with=self.client.app_only_signer.sign_basic,
            on_success=on_response,
            on_failure=on_failure,
        )
