import datetime
import logging
import sys
from logging import Logger
from typing import Any, Sequence

from pythonjsonlogger.json import JsonFormatter

import imgresizer

LOGGER_NAME = 'imgresizer'


class JsonLogFormatter(JsonFormatter):

  def __init__(self) -> None:
    super().__init__(json_ensure_ascii=False)

  def add_fields(self, log_record: Any, record: Any, message_dict: Any) -> None:
    log_record['_ts'] = datetime.datetime.now(datetime.UTC).strftime('%Y-%m-%dT%H:%M:%S.%fZ')

    if log_record.get('level'):
      log_record['level'] = log_record['level'].upper()
    else:
      log_record['level'] = record.levelname

    log_record['version'] = imgresizer.version

    super().add_fields(log_record, record, message_dict)


def init_logging(level: int = logging.DEBUG, attach: Sequence[str] = ()) -> Logger:
  # https://stackoverflow.com/a/11548754/1160341
  root = logging.getLogger()
  root.setLevel(level)
  for h in list(root.handlers):
    root.removeHandler(h)

  logging.getLogger('httpx').setLevel(logging.WARNING)
  logging.getLogger('httpcore').setLevel(logging.WARNING)
  logging.getLogger('pyvips').setLevel(logging.WARNING)

  log = logging.getLogger(LOGGER_NAME)
  for h in list(log.handlers):
    log.removeHandler(h)

  log_handler = logging.StreamHandler()
  log_handler.setFormatter(JsonLogFormatter())
  log_handler.setLevel(level)
  log_handler.setStream(sys.stderr)
  log.addHandler(log_handler)
  log.setLevel(level)
  log.propagate = False

  for name in attach:
    other = logging.getLogger(name)
    other.handlers = [log_handler]
    other.propagate = False

  return log
