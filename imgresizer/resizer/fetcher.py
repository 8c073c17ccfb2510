import asyncio
from typing import Protocol

import httpx

import imgresizer
from imgresizer.resizer.errors import NotFound

DEFAULT_USER_AGENT = f'imgresizer/{imgresizer.version}'


class Fetcher(Protocol):

  async def fetch_original(self, url: str) -> bytes:
    ...

  async def aclose(self) -> None:
    ...


class HttpFetcher:

  def __init__(self, timeout: float, user_agent: str = DEFAULT_USER_AGENT):
    self.timeout = timeout
    self.client = httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={
            'User-Agent': user_agent,
            'Accept': 'image/*,*/*;q=0.8',
        })

  async def fetch_original(self, url: str) -> bytes:
    try:
      # The client timeout bounds each read; this bounds the whole download.
      async with asyncio.timeout(self.timeout):
        res = await self.client.get(url)
    except TimeoutError as e:
      raise NotFound(f'Failed to fetch image: timed out after {self.timeout}s') from e
    except httpx.TimeoutException as e:
      raise NotFound(f'Failed to fetch image: timed out ({type(e).__name__})') from e
    except httpx.HTTPError as e:
      raise NotFound(f'Failed to fetch image: {type(e).__name__}: {e}') from e

    if not res.is_success:
      raise NotFound(
          f'Failed to fetch image: {res.status_code} {res.reason_phrase}',
          upstream_status=res.status_code)

    return res.content

  async def aclose(self) -> None:
    await self.client.aclose()
