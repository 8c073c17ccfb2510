from typing import NewType, NotRequired, TypedDict

Url = NewType('Url', str)
CacheKey = NewType('CacheKey', str)


class ErrorBody(TypedDict):
  error: str
  message: str
  upstream_status: NotRequired[int]
