"""
REST/流式客户端常量配置模块

定义客户端使用的常量、默认配置、OAuth 端点路径等
"""

# HTTP 方法常量
HTTP_METHOD_GET = "GET"
HTTP_METHOD_POST = "POST"
HTTP_METHOD_DELETE = "DELETE"
HTTP_METHOD_HEAD = "HEAD"

# 参数追加到查询字符串的 HTTP 方法集合
QUERY_STRING_METHODS = {HTTP_METHOD_GET, HTTP_METHOD_HEAD, HTTP_METHOD_DELETE}

# 默认配置
DEFAULT_TIMEOUT = 60  # 默认超时时间（秒）
DEFAULT_MAX_WORKERS = 10  # 默认 I/O 线程数
DEFAULT_DECODE_WORKERS = 2  # 默认解码线程数
DEFAULT_CHUNK_SIZE = 8192  # 默认分块大小（字节）
DEFAULT_ENCODING = "utf-8"
DEFAULT_MIME_TYPE = "application/octet-stream"

# API 基础地址
API_URL = "https://api.twitter.com/1.1/"
UPLOAD_URL = "https://upload.twitter.com/1.1/"
STREAM_URL = "https://stream.twitter.com/1.1/"
USER_STREAM_URL = "https://userstream.twitter.com/1.1/"
SITE_STREAM_URL = "https://sitestream.twitter.com/1.1/"

# OAuth 端点路径（相对于 API 基础地址的根）
OAUTH_REQUEST_TOKEN_PATH = "/oauth/request_token"
OAUTH_AUTHORIZE_PATH = "/oauth/authorize"
OAUTH_ACCESS_TOKEN_PATH = "/oauth/access_token"
OAUTH2_TOKEN_PATH = "/oauth2/token"
OAUTH2_INVALIDATE_TOKEN_PATH = "/oauth2/invalidate_token"

# 由签名器负责放置的参数前缀，编解码器不处理
OAUTH_PARAM_PREFIX = "oauth_"

# 百分号转义：额外强制转义的字符、保持原样的字符
URL_ESCAPE_EXTRA_CHARACTERS = ":/?&=;+!@#$()',*"
URL_LEAVE_UNESCAPED_CHARACTERS = "[]."

# 流式 JSON 文档分隔符
STREAM_DELIMITER = b"\r\n"

# Content-Type
CONTENT_TYPE_FORM_URLENCODED = "application/x-www-form-urlencoded"
CONTENT_TYPE_MULTIPART = "multipart/form-data"
MULTIPART_BOUNDARY_PREFIX = "----------restflex"

# 错误域
ERROR_DOMAIN_HTTP = "http"
ERROR_DOMAIN_CLIENT = "restflex"

# 应用级认证失败错误代码
APP_ONLY_AUTHENTICATION_ERROR_CODE = 1

# 握手失败原因
HANDSHAKE_REASON_IN_PROGRESS = "handshake_in_progress"
HANDSHAKE_REASON_BAD_TOKEN_RESPONSE = "bad_token_response"
HANDSHAKE_REASON_MISSING_VERIFIER = "missing_verifier"
HANDSHAKE_REASON_TOKEN_MISMATCH = "token_mismatch"
HANDSHAKE_REASON_UNEXPECTED_TOKEN_TYPE = "unexpected_token_type"
HANDSHAKE_REASON_API_ERROR = "api_error"
HANDSHAKE_REASON_UNPARSEABLE_RESPONSE = "unparseable_response"
