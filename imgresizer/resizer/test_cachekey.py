from pathlib import Path

import pytest

from imgresizer.resizer.cachekey import cache_key, key_dir, normalize_url, shard_path
from imgresizer.resizer.errors import InvalidArgument
from imgresizer.typing import CacheKey

URL = 'https://images.example.com/photos/cat.jpg?v=2'


def test_cache_key_is_stable_sha256() -> None:
  key = cache_key(URL)
  assert key == cache_key(URL)
  assert len(key) == 64
  assert all(c in '0123456789abcdef' for c in key)


def test_cache_key_differs_between_urls() -> None:
  assert cache_key(URL) != cache_key('https://images.example.com/photos/dog.jpg?v=2')
  assert cache_key(URL) != cache_key('https://images.example.com/photos/cat.jpg?v=3')


@pytest.mark.parametrize(
    'variant', [
        'HTTPS://Images.Example.COM/photos/cat.jpg?v=2',
        'https://images.example.com/photos/cat.jpg?v=2#preview',
        '  https://images.example.com/photos/cat.jpg?v=2 ',
    ])
def test_cache_key_normalizes(variant: str) -> None:
  assert cache_key(variant) == cache_key(URL)


def test_normalize_url_keeps_path_case() -> None:
  assert normalize_url('https://EXAMPLE.com/A/B.JPG') == 'https://example.com/A/B.JPG'


@pytest.mark.parametrize(
    'url', [
        '',
        'not a url',
        '/relative/path.jpg',
        'ftp://example.com/cat.jpg',
        'https:///cat.jpg',
        'http://[::1/cat.jpg',
    ])
def test_cache_key_rejects_invalid_url(url: str) -> None:
  with pytest.raises(InvalidArgument):
    cache_key(url)


def test_shard_path_one_level_per_character() -> None:
  key = CacheKey('0123abcd' + 'f' * 56)
  root = Path('/cache')

  assert shard_path(root, key) == Path('/cache/0/1/2/3/a/b/c/d')
  assert key_dir(root, key) == Path('/cache/0/1/2/3/a/b/c/d') / key


def test_key_dir_from_url() -> None:
  key = cache_key(URL)
  path = key_dir(Path('/cache'), key)

  assert path.name == key
  assert path.parent.relative_to('/cache').parts == tuple(key[:8])
