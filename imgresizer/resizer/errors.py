from http import HTTPStatus
from typing import Optional

from imgresizer.typing import ErrorBody


class ResizerError(Exception):
  status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

  def to_body(self) -> ErrorBody:
    return {'error': type(self).__name__, 'message': str(self)}


class InvalidArgument(ResizerError):
  status = HTTPStatus.BAD_REQUEST


class NotFound(ResizerError):
  status = HTTPStatus.NOT_FOUND

  def __init__(self, message: str, upstream_status: Optional[int] = None):
    super().__init__(message)
    self.upstream_status = upstream_status

  def to_body(self) -> ErrorBody:
    body = super().to_body()
    if self.upstream_status is not None:
      body['upstream_status'] = self.upstream_status
    return body


class UnsupportedFormat(ResizerError):
  status = HTTPStatus.UNSUPPORTED_MEDIA_TYPE


class Internal(ResizerError):
  status = HTTPStatus.INTERNAL_SERVER_ERROR

  def to_body(self) -> ErrorBody:
    return {'error': 'Internal server error', 'message': 'Internal server error'}
