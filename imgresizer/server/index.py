import contextlib
import os
from http import HTTPStatus
from pathlib import Path
from typing import AsyncIterator, Literal, Optional

import typer
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from imgresizer.jsonlog import init_logging
from imgresizer.resizer.errors import InvalidArgument, ResizerError
from imgresizer.resizer.index import MAX_DIMENSION, ResizeCoordinator, ResizerConfig

APP_FACTORY = 'imgresizer.server.index:create_app'

log = init_logging(attach=['uvicorn', 'uvicorn.error', 'uvicorn.access'])


def error_response(err: ResizerError) -> JSONResponse:
  return JSONResponse(status_code=err.status, content=dict(err.to_body()))


async def handle_resizer_error(request: Request, exc: ResizerError) -> JSONResponse:
  if exc.status == HTTPStatus.INTERNAL_SERVER_ERROR:
    log.error(
        {
            'message': 'internal error',
            'path': request.url.path,
            'qstr': request.url.query,
            'reason': str(exc),
        },
        exc_info=exc)
  else:
    log.debug({
        'message': 'request failed',
        'path': request.url.path,
        'qstr': request.url.query,
        'status': int(exc.status),
        'reason': str(exc),
    })
  return error_response(exc)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
  reasons = '; '.join(
      f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}" for e in exc.errors())
  return error_response(InvalidArgument(reasons))


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
  log.error(
      {
          'message': 'unexpected error',
          'path': request.url.path,
          'qstr': request.url.query,
          'reason': f'{type(exc).__name__}: {exc}',
      },
      exc_info=exc)
  return JSONResponse(
      status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
      content={
          'error': 'Internal server error',
          'message': 'Internal server error',
      })


async def resize_image(
    request: Request,
    url: str = Query(..., description='Absolute URL of the source image'),
    w: int = Query(..., ge=1, le=MAX_DIMENSION, description='Target width'),
    h: Optional[int] = Query(None, ge=1, le=MAX_DIMENSION, description='Target height'),
    f: Optional[Literal['jpg', 'png', 'webp', 'avif']] = Query(None, description='Output format'),
) -> Response:
  coordinator: ResizeCoordinator = request.app.state.coordinator
  result = await coordinator.resize(url, w, h, f)
  return Response(content=result.body, media_type=result.content_type)


def create_app(
    config: Optional[ResizerConfig] = None,
    coordinator: Optional[ResizeCoordinator] = None,
) -> FastAPI:

  @contextlib.asynccontextmanager
  async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if coordinator is not None:
      app.state.coordinator = coordinator
      yield
      return

    owned = ResizeCoordinator(log, config or ResizerConfig.from_env())
    app.state.coordinator = owned
    log.info({
        'message': 'worker started',
        'pid': os.getpid(),
        'cache_dir': str(owned.config.cache_dir),
    })
    try:
      yield
    finally:
      await owned.aclose()

  app = FastAPI(title='imgresizer', lifespan=lifespan)
  app.add_exception_handler(ResizerError, handle_resizer_error)  # type: ignore
  app.add_exception_handler(RequestValidationError, handle_validation_error)  # type: ignore
  app.add_exception_handler(Exception, handle_unexpected_error)
  app.add_api_route('/', resize_image, methods=['GET'])
  return app


def default_threads() -> int:
  return os.cpu_count() or 1


cli = typer.Typer(help='Serve resized images fetched from remote URLs.', add_completion=False)


@cli.command()
def serve(
    host: str = typer.Option('0.0.0.0', envvar='HOST', help='Address to listen on.'),
    port: int = typer.Option(3000, envvar='PORT', help='Port to listen on.'),
    threads: int = typer.Option(
        default_threads(), envvar='SERVER_THREADS', help='Number of worker processes.'),
    cache_dir: Optional[Path] = typer.Option(
        None, envvar='CACHE_DIR', help='Cache root shared by all workers.'),
) -> None:
  threads = max(1, threads)

  # Workers are separate processes and read their configuration from the environment.
  if cache_dir is not None:
    os.environ['CACHE_DIR'] = str(cache_dir.resolve())

  log.info({
      'message': 'starting server',
      'host': host,
      'port': port,
      'threads': threads,
  })

  uvicorn.run(
      APP_FACTORY,
      factory=True,
      host=host,
      port=port,
      workers=threads,
      log_config=None,
  )


def main() -> None:
  cli()
