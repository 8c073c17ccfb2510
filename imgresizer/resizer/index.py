import asyncio
import dataclasses
import functools
import logging
import os
import time
import weakref
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Hashable, Mapping, Optional, Tuple, TypeVar

from imgresizer.resizer.cachekey import cache_key
from imgresizer.resizer.errors import InvalidArgument
from imgresizer.resizer.fetcher import DEFAULT_USER_AGENT, Fetcher, HttpFetcher
from imgresizer.resizer.models import OriginalAsset, Size
from imgresizer.resizer.pipeline import Pipeline, VipsPipeline
from imgresizer.resizer.policy import (
    ADJUST_QUALITY_ABOVE,
    FORMATS_WITH_QUALITY,
    OUTPUT_QUALITY,
    FormatPolicy,
    parse_requested_format
)
from imgresizer.resizer.store import FileVariantStore, VariantStore
from imgresizer.typing import CacheKey

T = TypeVar('T')

MAX_DIMENSION = 2048
FETCH_TIMEOUT = 30.0


def default_resize_workers() -> int:
  return os.cpu_count() or 1


def env_number(environ: Mapping[str, str], key: str, default: float) -> float:
  value = environ.get(key)
  if value is None or value == '':
    return default
  try:
    return float(value)
  except ValueError:
    raise ValueError(f'Invalid environment variable "{key}" of type "number": {value}')


@dataclasses.dataclass(eq=True, frozen=True)
class ResizerConfig:
  cache_dir: Path
  quality_threshold: int = ADJUST_QUALITY_ABOVE
  quality: int = OUTPUT_QUALITY
  quality_formats: frozenset[str] = FORMATS_WITH_QUALITY
  fetch_timeout: float = FETCH_TIMEOUT
  resize_workers: int = dataclasses.field(default_factory=default_resize_workers)
  max_dimension: int = MAX_DIMENSION
  user_agent: str = DEFAULT_USER_AGENT

  @classmethod
  def from_env(cls, environ: Mapping[str, str] = os.environ) -> 'ResizerConfig':
    return cls(
        cache_dir=Path(environ.get('CACHE_DIR') or Path.cwd() / 'images'),
        quality_threshold=int(env_number(environ, 'ADJUST_QUALITY_ABOVE', ADJUST_QUALITY_ABOVE)),
        quality=int(env_number(environ, 'OUTPUT_QUALITY', OUTPUT_QUALITY)),
        fetch_timeout=env_number(environ, 'FETCH_TIMEOUT', FETCH_TIMEOUT),
        resize_workers=max(
            1, int(env_number(environ, 'RESIZE_WORKERS', default_resize_workers()))))


class ResizeSource(Enum):
  EXACT = 0
  BIGGER = 1
  ORIGINAL = 2


@dataclasses.dataclass(frozen=True)
class ResizeResult:
  body: bytes
  format: str
  size: Size
  source: ResizeSource

  @property
  def content_type(self) -> str:
    return f'image/{self.format}'


def proportional_height(original: Size, width: int) -> int:
  # round(width * h / w), halves rounded up
  return max(1, (2 * width * original.height + original.width) // (2 * original.width))


class ResizeCoordinator:

  def __init__(
      self,
      log: logging.Logger,
      config: ResizerConfig,
      store: Optional[VariantStore] = None,
      fetcher: Optional[Fetcher] = None,
      pipeline: Optional[Pipeline] = None,
      policy: Optional[FormatPolicy] = None,
  ):
    self.log = log
    self.config = config
    self.policy = policy or FormatPolicy(
        quality_threshold=config.quality_threshold,
        quality_formats=config.quality_formats,
        quality=config.quality)
    self.store = store or FileVariantStore(config.cache_dir)
    self.fetcher = fetcher or HttpFetcher(config.fetch_timeout, config.user_agent)
    self.pipeline = pipeline or VipsPipeline(self.policy)
    self.executor = ThreadPoolExecutor(
        max_workers=config.resize_workers, thread_name_prefix='imgresizer')
    self.inflight: dict[Tuple[CacheKey, Size, str], asyncio.Task[ResizeResult]] = {}
    self.originals: dict[CacheKey, asyncio.Task[OriginalAsset]] = {}
    self.locks: weakref.WeakValueDictionary[CacheKey, asyncio.Lock] = (
        weakref.WeakValueDictionary())

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **dict,
    })

  def validate_dimension(self, name: str, value: int) -> None:
    if value < 1 or self.config.max_dimension < value:
      raise InvalidArgument(f'{name} must be between 1 and {self.config.max_dimension}: {value}')

  async def resize(
      self,
      url: str,
      width: int,
      height: Optional[int] = None,
      fmt: Optional[str] = None,
  ) -> ResizeResult:
    self.validate_dimension('width', width)
    if height is not None:
      self.validate_dimension('height', height)
    requested = parse_requested_format(fmt)
    key = cache_key(url)

    original: Optional[OriginalAsset] = None

    if height is None:
      original = await self.ensure_original(key, url)
      height = proportional_height(original.info.size, width)

    if requested is None:
      if original is not None:
        source_format = original.info.format
      else:
        cached_format = await self.store.find_original_format(key)
        if cached_format is None:
          original = await self.ensure_original(key, url)
          source_format = original.info.format
        else:
          source_format = cached_format
      out_fmt = self.policy.output_format(source_format)
    else:
      out_fmt = requested

    target = Size(width, height)
    return await self.coalesce(
        self.inflight,
        (key, target, out_fmt),
        functools.partial(self.produce, url, key, target, out_fmt, original),
    )

  async def ensure_original(self, key: CacheKey, url: str) -> OriginalAsset:
    original = await self.coalesce(
        self.originals, key, functools.partial(self.load_original, key, url))
    self.policy.check_supported(original.info)
    return original

  async def load_original(self, key: CacheKey, url: str) -> OriginalAsset:
    loop = asyncio.get_running_loop()

    stored = await self.store.read_original(key)
    if stored is not None:
      body, _ = stored
      info = await loop.run_in_executor(self.executor, self.pipeline.inspect, body)
      return OriginalAsset(body=body, info=info)

    start_ns = time.time_ns()
    body = await self.fetcher.fetch_original(url)
    fetch_ms = (time.time_ns() - start_ns) // 1_000_000

    info = await loop.run_in_executor(self.executor, self.pipeline.inspect, body)
    await self.store.write_original(key, body, info.format)

    self.log_debug(
        'original fetched', {
            'key': key,
            'url': url,
            'format': info.format,
            'size': str(info.size),
            'bytes': len(body),
            'fetch_ms': fetch_ms,
        })

    return OriginalAsset(body=body, info=info)

  async def produce(
      self,
      url: str,
      key: CacheKey,
      target: Size,
      fmt: str,
      original: Optional[OriginalAsset],
  ) -> ResizeResult:
    async with self.key_lock(key):
      cached = await self.store.find_exact(key, target, fmt)
      if cached is not None:
        self.log_debug('exact hit', {'key': key, 'size': str(target), 'format': fmt})
        return ResizeResult(body=cached, format=fmt, size=target, source=ResizeSource.EXACT)

      best = await self.store.find_best_fit(key, target, fmt)
      if best is not None:
        source = ResizeSource.BIGGER
        source_body = best.body
        expected_format = best.format
        self.log_debug(
            'best fit found', {
                'key': key,
                'size': str(target),
                'best': str(best.size),
                'format': fmt,
            })
      else:
        if original is None:
          original = await self.ensure_original(key, url)
        source = ResizeSource.ORIGINAL
        source_body = original.body
        expected_format = original.info.format

      plan = self.policy.plan(fmt, target.width)

      start_ns = time.time_ns()
      body = await asyncio.get_running_loop().run_in_executor(
          self.executor, self.pipeline.transform, source_body, target, plan, expected_format)
      vips_us = (time.time_ns() - start_ns) // 1000

      await self.store.write_variant(key, target, fmt, body)

      self.log_debug(
          'variant stored', {
              'key': key,
              'size': str(target),
              'format': fmt,
              'quality': plan.quality,
              'source': source.name,
              'img_size': len(body),
              'vips_us': vips_us,
          })

      return ResizeResult(body=body, format=fmt, size=target, source=source)

  def key_lock(self, key: CacheKey) -> asyncio.Lock:
    lock = self.locks.get(key)
    if lock is None:
      lock = asyncio.Lock()
      self.locks[key] = lock
    return lock

  async def coalesce(
      self,
      registry: dict[Any, 'asyncio.Task[T]'],
      k: Hashable,
      factory: Callable[[], Awaitable[T]],
  ) -> T:
    task = registry.get(k)
    if task is None:
      task = asyncio.ensure_future(factory())
      registry[k] = task
      task.add_done_callback(functools.partial(self.settle, registry, k))
    else:
      self.log_debug('coalesced', {'operation': str(k)})

    # Cancelling a caller must not cancel the shared task.
    return await asyncio.shield(task)

  @staticmethod
  def settle(
      registry: dict[Any, 'asyncio.Task[Any]'],
      k: Hashable,
      task: 'asyncio.Task[Any]',
  ) -> None:
    if registry.get(k) is task:
      del registry[k]
    if not task.cancelled():
      task.exception()  # retrieved; waiters get it through shield

  async def aclose(self) -> None:
    await self.fetcher.aclose()
    self.executor.shutdown(wait=False)
