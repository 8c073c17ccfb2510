import hashlib
from pathlib import Path
from urllib import parse

from imgresizer.resizer.errors import InvalidArgument
from imgresizer.typing import CacheKey, Url

SHARD_DEPTH = 8

allowed_schemes = ['http', 'https']


def normalize_url(url: str) -> Url:
  try:
    parts = parse.urlsplit(url.strip())
    hostname = parts.hostname
  except ValueError as e:
    raise InvalidArgument(f'invalid url: {e}')

  if parts.scheme.lower() not in allowed_schemes or not hostname:
    raise InvalidArgument(f'not an absolute http(s) url: {url}')

  return Url(
      parse.urlunsplit(
          parts._replace(scheme=parts.scheme.lower(), netloc=parts.netloc.lower(), fragment='')))


def cache_key(url: str) -> CacheKey:
  return CacheKey(hashlib.sha256(normalize_url(url).encode('utf-8')).hexdigest())


def shard_path(root: Path, key: CacheKey, depth: int = SHARD_DEPTH) -> Path:
  return root.joinpath(*key[:depth])


def key_dir(root: Path, key: CacheKey) -> Path:
  return shard_path(root, key) / key
