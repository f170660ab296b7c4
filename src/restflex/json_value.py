"""
JSON 值模块

对解码后的 JSON 数据做一层带类型的包装，所有访问器都返回可选值，
缺失或类型不符的字段不会抛出异常
"""

from __future__ import annotations

import json
from typing import Any

from restflex.constants import DEFAULT_ENCODING
from restflex.exceptions import APIClientDecodeError


class JSONValue:
    """
    JSON 值包装

    使用示例:
        >>> value = JSONValue.parse(b'{"errors": [{"code": 89}]}')
        >>> value["errors"][0]["code"].integer
        89
        >>> value["missing"]["deeper"].string is None
        True
    """

    __slots__ = ("_value",)

    def __init__(self, value: Any = None):
        self._value = value.raw if isinstance(value, JSONValue) else value

    @classmethod
    def parse(cls, data: bytes | bytearray | str, encoding: str = DEFAULT_ENCODING) -> JSONValue:
        """
        解析 JSON 文本

        异常:
            APIClientDecodeError: 数据不是合法 JSON 时抛出
        """
        try:
            if isinstance(data, (bytes, bytearray)):
                data = bytes(data).decode(encoding)
            return cls(json.loads(data))
        except (UnicodeDecodeError, ValueError) as e:
            raise APIClientDecodeError(f"Invalid JSON: {e}", payload=data) from e

    @property
    def raw(self) -> Any:
        return self._value

    @property
    def is_null(self) -> bool:
        return self._value is None

    @property
    def string(self) -> str | None:
        return self._value if isinstance(self._value, str) else None

    @property
    def integer(self) -> int | None:
        if isinstance(self._value, bool):
            return None
        return self._value if isinstance(self._value, int) else None

    @property
    def number(self) -> float | None:
        if isinstance(self._value, bool) or not isinstance(self._value, (int, float)):
            return None
        return float(self._value)

    @property
    def boolean(self) -> bool | None:
        return self._value if isinstance(self._value, bool) else None

    @property
    def array(self) -> list[JSONValue] | None:
        if not isinstance(self._value, list):
            return None
        return [JSONValue(item) for item in self._value]

    @property
    def object(self) -> dict[str, JSONValue] | None:
        if not isinstance(self._value, dict):
            return None
        return {key: JSONValue(item) for key, item in self._value.items()}

    def get(self, key: str | int) -> JSONValue:
        return self[key]

    def __getitem__(self, key: str | int) -> JSONValue:
        if isinstance(key, str) and isinstance(self._value, dict):
            return JSONValue(self._value.get(key))
        if isinstance(key, int) and isinstance(self._value, list) and -len(self._value) <= key < len(self._value):
            return JSONValue(self._value[key])
        return JSONValue(None)

    def __contains__(self, key: str) -> bool:
        return isinstance(self._value, dict) and key in self._value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, JSONValue):
            return self._value == other._value
        return self._value == other

    def __repr__(self) -> str:
        return f"JSONValue({self._value!r})"
