import asyncio
import os
from pathlib import Path
from typing import Optional, Protocol, Tuple
from uuid import uuid4

from imgresizer.resizer.cachekey import key_dir
from imgresizer.resizer.errors import Internal
from imgresizer.resizer.models import Size, Variant
from imgresizer.typing import CacheKey

ORIGINAL_STEM = 'original'


class VariantStore(Protocol):

  async def find_exact(self, key: CacheKey, size: Size, fmt: str) -> Optional[bytes]:
    ...

  async def find_best_fit(self, key: CacheKey, size: Size, fmt: str) -> Optional[Variant]:
    ...

  async def find_original_format(self, key: CacheKey) -> Optional[str]:
    ...

  async def read_original(
      self,
      key: CacheKey,
      fmt: Optional[str] = None,
  ) -> Optional[Tuple[bytes, str]]:
    ...

  async def write_original(self, key: CacheKey, body: bytes, fmt: str) -> None:
    ...

  async def write_variant(self, key: CacheKey, size: Size, fmt: str, body: bytes) -> None:
    ...


def is_temporary(name: str) -> bool:
  return name.startswith('.')


class FileVariantStore:
  """Immutable files under ``root/a/b/c/d/e/f/g/h/<key>/``.

  Every file is written to a dot-prefixed temporary name in the destination
  directory and renamed into place, so concurrent readers in other worker
  processes either see the complete file or nothing.
  """

  def __init__(self, root: Path):
    self.root = root

  def key_dir(self, key: CacheKey) -> Path:
    return key_dir(self.root, key)

  async def find_exact(self, key: CacheKey, size: Size, fmt: str) -> Optional[bytes]:
    return await asyncio.to_thread(self._read, self.key_dir(key) / size.filename(fmt))

  async def find_best_fit(self, key: CacheKey, size: Size, fmt: str) -> Optional[Variant]:
    return await asyncio.to_thread(self._find_best_fit, key, size, fmt)

  async def find_original_format(self, key: CacheKey) -> Optional[str]:
    return await asyncio.to_thread(self._find_original_format, key)

  async def read_original(
      self,
      key: CacheKey,
      fmt: Optional[str] = None,
  ) -> Optional[Tuple[bytes, str]]:
    return await asyncio.to_thread(self._read_original, key, fmt)

  async def write_original(self, key: CacheKey, body: bytes, fmt: str) -> None:
    await asyncio.to_thread(self._write_original, key, body, fmt)

  async def write_variant(self, key: CacheKey, size: Size, fmt: str, body: bytes) -> None:
    await asyncio.to_thread(self._write_atomic, self.key_dir(key) / size.filename(fmt), body)

  def _listdir(self, key: CacheKey) -> list[str]:
    try:
      return [name for name in os.listdir(self.key_dir(key)) if not is_temporary(name)]
    except FileNotFoundError:
      return []
    except OSError as e:
      raise Internal(f'cannot list cache directory: {e}') from e

  def _read(self, path: Path) -> Optional[bytes]:
    try:
      return path.read_bytes()
    except FileNotFoundError:
      return None
    except OSError as e:
      raise Internal(f'cannot read cache file: {e}') from e

  def _find_best_fit(self, key: CacheKey, size: Size, fmt: str) -> Optional[Variant]:
    candidates: list[Size] = []
    for name in self._listdir(key):
      parsed = Size.from_filename_convention(name)
      if parsed is None:
        continue
      stored, stored_fmt = parsed
      if stored_fmt == fmt and stored.covers(size):
        candidates.append(stored)

    # Smallest width first, then smallest height.
    for best in sorted(candidates):
      body = self._read(self.key_dir(key) / best.filename(fmt))
      if body is not None:
        return Variant(size=best, format=fmt, body=body)

    return None

  def _find_original_format(self, key: CacheKey) -> Optional[str]:
    for name in sorted(self._listdir(key)):
      stem, _, ext = name.partition('.')
      if stem == ORIGINAL_STEM and ext != '':
        return ext
    return None

  def _read_original(self, key: CacheKey, fmt: Optional[str]) -> Optional[Tuple[bytes, str]]:
    if fmt is None:
      fmt = self._find_original_format(key)
      if fmt is None:
        return None

    body = self._read(self.key_dir(key) / f'{ORIGINAL_STEM}.{fmt}')
    if body is None:
      return None

    return body, fmt

  def _write_original(self, key: CacheKey, body: bytes, fmt: str) -> None:
    if self._find_original_format(key) is not None:
      return

    self._write_atomic(self.key_dir(key) / f'{ORIGINAL_STEM}.{fmt}', body)

  def _write_atomic(self, path: Path, body: bytes) -> None:
    tmp_path = path.with_name(f'.{path.name}.tmp.{uuid4().hex}')
    try:
      path.parent.mkdir(parents=True, exist_ok=True)
      tmp_path.write_bytes(body)
      os.replace(tmp_path, path)
    except OSError as e:
      if tmp_path.exists():
        tmp_path.unlink()
      raise Internal(f'cannot write cache file: {e}') from e
