import logging
from logging import Logger
from pathlib import Path
from typing import Callable, Generator

import pytest
from pyvips import Image  # type: ignore

from imgresizer.jsonlog import JsonLogFormatter
from imgresizer.resizer.index import ResizerConfig


@pytest.fixture
def logger(tmp_path: Path) -> Generator[Logger, None, None]:
  log = logging.getLogger('imgresizer.test')
  log.setLevel(logging.DEBUG)

  log_file = open(tmp_path / 'test.log', 'w')

  log_handler = logging.StreamHandler()
  log_handler.setFormatter(JsonLogFormatter())
  log_handler.setLevel(logging.DEBUG)
  log_handler.setStream(log_file)
  log.addHandler(log_handler)

  yield log

  log.removeHandler(log_handler)
  log_file.close()


@pytest.fixture
def config(tmp_path: Path) -> ResizerConfig:
  return ResizerConfig(cache_dir=tmp_path / 'images', resize_workers=2, fetch_timeout=5.0)


@pytest.fixture
def make_image() -> Callable[..., bytes]:

  def fn(width: int, height: int, suffix: str = '.jpg') -> bytes:
    image = (Image.black(width, height, bands=3) + [40, 120, 200]).cast('uchar')
    return image.write_to_buffer(suffix)

  return fn


@pytest.fixture
def image_size() -> Callable[[bytes], tuple[int, int]]:

  def fn(body: bytes) -> tuple[int, int]:
    image = Image.new_from_buffer(body, '')
    return (image.get('width'), image.get('height'))

  return fn


@pytest.fixture
def image_loader() -> Callable[[bytes], str]:

  def fn(body: bytes) -> str:
    return Image.new_from_buffer(body, '').get('vips-loader')

  return fn
