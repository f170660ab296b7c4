"""
APIClient 测试

测试客户端配置与请求入口:
- 类属性配置与构造参数覆盖
- URL 构造
- get/post/get_json/post_json 调用形态
- 流式请求
- 生命周期管理
"""

from types import SimpleNamespace
from urllib.parse import urlsplit

import pytest
import responses
from oauthlib.oauth1.rfc5849 import signature
from oauthlib.oauth1.rfc5849.utils import parse_authorization_header, unescape

from restflex import APIClient
from restflex.async_executor import QueueAsyncExecutor
from restflex.constants import CONTENT_TYPE_FORM_URLENCODED
from restflex.exceptions import APIClientValidationError
from restflex.models import ExecutionState, UploadPart
from restflex.signer import AppOnlySigner, OAuth1Signer


def verify_wire_signature(request, client_secret="consumer-secret", token_secret="token-secret"):
    """
    以服务器的方式校验线上请求的 OAuth1 签名

    只有 Content-Type 为 application/x-www-form-urlencoded 时请求体参数才进入签名基串
    """
    content_type = request.headers.get("Content-Type", "")
    body = None
    if content_type.startswith(CONTENT_TYPE_FORM_URLENCODED) and request.body:
        body = request.body.decode("utf-8") if isinstance(request.body, bytes) else request.body

    authorization = request.headers["Authorization"]
    params = signature.collect_parameters(
        uri_query=urlsplit(request.url).query, body=body, headers={"Authorization": authorization}
    )
    oauth_signature = unescape(dict(parse_authorization_header(authorization))["oauth_signature"])
    wire = SimpleNamespace(params=params, uri=request.url, http_method=request.method, signature=oauth_signature)
    return signature.verify_hmac_sha1(wire, client_secret, token_secret)


class CustomAPIClient(APIClient):
    """测试用的自定义客户端"""

    api_url = "https://api.example.com/2/"
    default_timeout = 15
    default_headers = {"User-Agent": "restflex-test"}


class TestClientConfiguration:
    """测试客户端配置"""

    @pytest.mark.unit
    def test_class_attributes_used_by_default(self):
        """UT-CLIENT-001: 默认使用类属性配置"""
        q = QueueAsyncExecutor()
        with CustomAPIClient("key", "secret", io_executor=q, decode_executor=q, delivery_executor=q) as client:
            assert client.api_url == "https://api.example.com/2/"
            assert client.default_timeout == 15
            assert client.headers == {"User-Agent": "restflex-test"}

    @pytest.mark.unit
    def test_constructor_overrides(self):
        """UT-CLIENT-002: 构造参数覆盖类属性"""
        q = QueueAsyncExecutor()
        client = CustomAPIClient(
            "key",
            "secret",
            api_url="https://other.example.com/1/",
            timeout=3,
            headers={"X-Trace": "1"},
            io_executor=q,
            decode_executor=q,
            delivery_executor=q,
        )

        assert client.api_url == "https://other.example.com/1/"
        assert client.default_timeout == 3
        assert client.headers == {"User-Agent": "restflex-test", "X-Trace": "1"}
        client.close()

    @pytest.mark.unit
    def test_token_pair_required(self):
        """UT-CLIENT-003: 令牌和令牌密钥必须同时提供"""
        with pytest.raises(APIClientValidationError):
            APIClient("key", "secret", oauth_token="token")

    @pytest.mark.unit
    def test_signer_selection(self, client, app_only_client):
        """UT-CLIENT-004: 按 app_only 选择签名器"""
        assert isinstance(client.signer, OAuth1Signer)
        assert isinstance(app_only_client.signer, AppOnlySigner)
        assert client.credential.token.key == "token"

    @pytest.mark.unit
    def test_owned_executors_shut_down_on_close(self):
        """UT-CLIENT-005: close() 关闭客户端创建的执行器"""
        client = APIClient("key", "secret")

        client.close()

        with pytest.raises(RuntimeError):
            client.io_executor.submit(lambda: None)


class TestURLBuilding:
    """测试 URL 构造"""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "path,base_url,expected",
        [
            ("statuses/show.json", None, "https://api.twitter.com/1.1/statuses/show.json"),
            ("/statuses/show.json", None, "https://api.twitter.com/1.1/statuses/show.json"),
            ("media/upload.json", "https://upload.twitter.com/1.1/", "https://upload.twitter.com/1.1/media/upload.json"),
            ("https://example.com/full", None, "https://example.com/full"),
        ],
    )
    def test_build_url(self, client, path, base_url, expected):
        """UT-CLIENT-006: 路径与基础地址拼接"""
        assert client._build_url(path, base_url) == expected

    @pytest.mark.unit
    def test_oauth_base_url_drops_version(self, client):
        """UT-CLIENT-007: OAuth 端点位于基础地址的根"""
        assert client.oauth_base_url == "https://api.twitter.com"


class TestClientRequests:
    """测试请求入口"""

    @pytest.mark.unit
    @responses.activate
    def test_get_json(self, client, queue_executor, recorder):
        """UT-CLIENT-008: GET 参数追加到查询字符串并解析 JSON"""
        # Arrange
        responses.add(responses.GET, "https://api.twitter.com/1.1/statuses/show.json", json={"id": 20})

        # Act
        client.get_json(
            "statuses/show.json",
            params={"id": 20, "trim_user": True},
            on_success=recorder.on_success,
            on_failure=recorder.on_failure,
        )
        queue_executor.run_pending()

        # Assert
        data, _ = recorder.successes[0]
        assert data["id"].integer == 20
        request = responses.calls[0].request
        assert request.url == "https://api.twitter.com/1.1/statuses/show.json?id=20&trim_user=true"
        assert request.headers["Authorization"].startswith("OAuth ")

    @pytest.mark.unit
    @responses.activate
    def test_post_json_with_upload(self, client, queue_executor, recorder):
        """UT-CLIENT-009: 带附件的 POST 使用 multipart"""
        # Arrange
        responses.add(responses.POST, "https://upload.twitter.com/1.1/media/upload.json", json={"media_id": 1})

        # Act
        client.post_json(
            "media/upload.json",
            base_url=client.upload_url,
            params={"media_category": "tweet_image"},
            uploads=[UploadPart(data=b"\x89PNG", name="media", mime_type="image/png")],
            on_success=recorder.on_success,
            on_failure=recorder.on_failure,
        )
        queue_executor.run_pending()

        # Assert
        assert recorder.successes[0][0]["media_id"].integer == 1
        request = responses.calls[0].request
        assert request.headers["Content-Type"].startswith("multipart/form-data; boundary=")
        assert b'name="media_category"' in request.body
        assert request.headers["Content-Length"] == str(len(request.body))

    @pytest.mark.unit
    @responses.activate
    def test_post_raw(self, client, queue_executor, recorder):
        """UT-CLIENT-010: post() 未配置解析器时成功回调收到原始字节"""
        responses.add(responses.POST, "https://api.twitter.com/1.1/statuses/update.json", body=b"done")

        client.post("statuses/update.json", params={"status": "hi"}, on_success=recorder.on_success)
        queue_executor.run_pending()

        assert recorder.successes[0][0] == b"done"
        assert responses.calls[0].request.body == b"status=hi"

    @pytest.mark.unit
    @responses.activate
    def test_streaming_json_request(self, client, queue_executor, recorder):
        """UT-CLIENT-011: 流式请求逐个投递文档，成功回调收到原始响应体"""
        # Arrange
        body = b'{"text":"one"}\r\n{"text":"two"}\r\n'
        responses.add(responses.POST, "https://stream.twitter.com/1.1/statuses/filter.json", body=body)

        # Act
        client.post_json(
            "statuses/filter.json",
            base_url=client.stream_url,
            params={"track": "python"},
            streaming=True,
            on_document=recorder.on_document,
            on_success=recorder.on_success,
            on_failure=recorder.on_failure,
        )
        queue_executor.run_pending()

        # Assert
        assert [d["text"].string for d in recorder.documents] == ["one", "two"]
        assert recorder.successes[0][0] == body

    @pytest.mark.unit
    @responses.activate
    def test_default_timeout_applied(self, client, queue_executor, recorder):
        """UT-CLIENT-012: 请求使用客户端默认超时"""
        responses.add(responses.GET, "https://api.twitter.com/1.1/help/configuration.json", json={})

        executor = client.get_json("help/configuration.json", on_success=recorder.on_success)
        queue_executor.run_pending()

        assert executor.spec.timeout == 60

    @pytest.mark.unit
    @responses.activate
    def test_user_stream_url_override(self, queue_executor, recorder):
        """UT-CLIENT-015: 用户流和站点流基础地址可由构造参数覆盖并用于请求"""
        # Arrange
        client = APIClient(
            "consumer-key",
            "consumer-secret",
            oauth_token="token",
            oauth_token_secret="token-secret",
            user_stream_url="https://userstream.example.com/2/",
            site_stream_url="https://sitestream.example.com/2/",
            io_executor=queue_executor,
            decode_executor=queue_executor,
            delivery_executor=queue_executor,
        )
        responses.add(responses.GET, "https://userstream.example.com/2/user.json", body=b'{"friends":[1]}\r\n')

        # Act
        client.get_json(
            "user.json",
            base_url=client.user_stream_url,
            streaming=True,
            on_document=recorder.on_document,
            on_failure=recorder.on_failure,
        )
        queue_executor.run_pending()

        # Assert
        assert client.site_stream_url == "https://sitestream.example.com/2/"
        assert recorder.failures == []
        assert len(recorder.documents) == 1
        assert responses.calls[0].request.url == "https://userstream.example.com/2/user.json"
        client.close()


class TestOtherMethods:
    """测试 DELETE/HEAD 请求"""

    @pytest.mark.unit
    def test_delete_appends_query(self, client, queue_executor, recorder, requests_mock):
        """UT-CLIENT-013: DELETE 参数追加到查询字符串"""
        # Arrange
        requests_mock.delete("https://api.twitter.com/1.1/lists/destroy.json", json={"ok": True})

        # Act
        client.json_request(
            "DELETE",
            "lists/destroy.json",
            params={"list_id": 7},
            on_success=recorder.on_success,
            on_failure=recorder.on_failure,
        )
        queue_executor.run_pending()

        # Assert
        assert recorder.successes[0][0]["ok"].boolean is True
        history = requests_mock.request_history
        assert history[0].method == "DELETE"
        assert history[0].qs == {"list_id": ["7"]}
        assert history[0].body is None

    @pytest.mark.unit
    def test_head_failure(self, client, queue_executor, recorder, requests_mock):
        """UT-CLIENT-014: HEAD 请求的 4xx 响应送达失败回调"""
        requests_mock.head("https://api.twitter.com/1.1/statuses/show.json", status_code=401, reason="Unauthorized")

        client.request("HEAD", "statuses/show.json", on_success=recorder.on_success, on_failure=recorder.on_failure)
        queue_executor.run_pending()

        assert recorder.successes == []
        assert recorder.failures[0].status_code == 401


class TestWireSignature:
    """测试线上请求的签名可被服务器校验"""

    @pytest.mark.unit
    @responses.activate
    @pytest.mark.parametrize(
        "method,params,encode_parameters",
        [
            ("POST", {"status": "hello"}, False),
            ("POST", {"status": "hello world!", "lat": 37.5}, True),
            ("GET", {"screen_name": "bob", "count": 5}, False),
        ],
    )
    def test_signature_verifies_server_side(self, client, queue_executor, recorder, method, params, encode_parameters):
        """UT-CLIENT-016: 服务器按线上请求重算签名与 Authorization 头一致"""
        # Arrange
        url = "https://api.twitter.com/1.1/statuses/update.json"
        responses.add(method, url, body=b"{}")

        # Act
        client.request(
            method,
            "statuses/update.json",
            params=params,
            encode_parameters=encode_parameters,
            on_success=recorder.on_success,
            on_failure=recorder.on_failure,
        )
        queue_executor.run_pending()

        # Assert
        assert recorder.failures == []
        request = responses.calls[0].request
        if method == "POST":
            assert request.headers["Content-Type"].startswith("application/x-www-form-urlencoded")
        assert verify_wire_signature(request) is True

    @pytest.mark.unit
    def test_signer_error_reaches_failure_callback(self, client, queue_executor, recorder, mocker):
        """UT-CLIENT-017: 签名器异常不从 request() 抛出，而是送达 on_failure"""
        mocker.patch.object(client.signer, "authorization_header", side_effect=KeyError("Authorization"))

        executor = client.post("statuses/update.json", params={"status": "hi"}, on_failure=recorder.on_failure)
        queue_executor.run_pending()

        assert executor.state is ExecutionState.FAILED
        assert "Failed to sign request" in str(recorder.failures[0])
