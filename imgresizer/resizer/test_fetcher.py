import asyncio
import time

import httpx
import pytest
import respx

from imgresizer.resizer.errors import NotFound
from imgresizer.resizer.fetcher import HttpFetcher

URL = 'https://images.example.com/photos/cat.jpg'


async def fetch(url: str = URL) -> bytes:
  fetcher = HttpFetcher(timeout=5.0)
  try:
    return await fetcher.fetch_original(url)
  finally:
    await fetcher.aclose()


@respx.mock
def test_fetch_returns_body() -> None:
  route = respx.get(URL).mock(return_value=httpx.Response(200, content=b'image-bytes'))

  assert asyncio.run(fetch()) == b'image-bytes'
  assert route.call_count == 1
  assert route.calls.last.request.headers['user-agent'].startswith('imgresizer/')


@respx.mock
def test_fetch_follows_redirects() -> None:
  moved = 'https://cdn.example.com/cat.jpg'
  respx.get(URL).mock(return_value=httpx.Response(301, headers={'Location': moved}))
  respx.get(moved).mock(return_value=httpx.Response(200, content=b'moved-bytes'))

  assert asyncio.run(fetch()) == b'moved-bytes'


@pytest.mark.parametrize('status', [404, 403, 500, 503])
def test_fetch_non_success_raises_not_found(status: int) -> None:
  with respx.mock:
    respx.get(URL).mock(return_value=httpx.Response(status))

    with pytest.raises(NotFound) as e:
      asyncio.run(fetch())

  assert e.value.upstream_status == status
  assert str(status) in str(e.value)


@respx.mock
def test_fetch_timeout_raises_not_found() -> None:
  respx.get(URL).mock(side_effect=httpx.ReadTimeout('timed out'))

  with pytest.raises(NotFound) as e:
    asyncio.run(fetch())

  assert e.value.upstream_status is None
  assert 'timed out' in str(e.value)


@respx.mock
def test_fetch_connection_error_raises_not_found() -> None:
  respx.get(URL).mock(side_effect=httpx.ConnectError('connection refused'))

  with pytest.raises(NotFound):
    asyncio.run(fetch())


def test_fetch_slow_body_times_out() -> None:

  async def drip(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    await reader.readuntil(b'\r\n\r\n')
    writer.write(b'HTTP/1.1 200 OK\r\nContent-Type: image/jpeg\r\nContent-Length: 100\r\n\r\n')
    try:
      # Each byte arrives well within the read timeout.
      for _ in range(100):
        writer.write(b'x')
        await writer.drain()
        await asyncio.sleep(0.1)
    except ConnectionError:
      pass
    finally:
      writer.close()

  async def main() -> float:
    server = await asyncio.start_server(drip, '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]
    fetcher = HttpFetcher(timeout=0.5)
    start = time.monotonic()
    try:
      with pytest.raises(NotFound, match='timed out'):
        await fetcher.fetch_original(f'http://127.0.0.1:{port}/slow.jpg')
      return time.monotonic() - start
    finally:
      await fetcher.aclose()
      server.close()

  assert asyncio.run(main()) < 3.0
