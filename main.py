import os
import sys

import anyio
import uvicorn
from anyio.to_thread import current_default_thread_limiter
from loguru import logger

from app.core.config import settings


async def monitor_thread_limiter():
    """Signed payload decoding runs in worker threads, report when their usage changes"""
    limiter = current_default_thread_limiter()
    threads_in_use = limiter.borrowed_tokens
    while True:
        if threads_in_use != limiter.borrowed_tokens:
            logger.debug(f"Threads in use: {limiter.borrowed_tokens}")
            threads_in_use = limiter.borrowed_tokens
        await anyio.sleep(0.5)


def main():
    is_linux = sys.platform.startswith("linux")

    if settings.debug:
        os.environ["PYTHONASYNCIODEBUG"] = "1"
        config = uvicorn.Config(
            app="app.main:app",
            host=settings.backend_host,
            port=settings.backend_port,
            reload=settings.reload_uvicorn,
            workers=settings.workers_count,
            loop="uvloop",
        )
        server = uvicorn.Server(config)

        async def main_monitor():
            async with anyio.create_task_group() as tg:
                tg.start_soon(monitor_thread_limiter)
                await server.serve()
                tg.cancel_scope.cancel()

        anyio.run(main_monitor)
    elif is_linux:
        from app.web import GunicornApplication, gunicorn_options

        GunicornApplication("app.main:app", gunicorn_options(settings)).run()
    else:
        uvicorn.run(
            app="app.main:app",
            host=settings.backend_host,
            port=settings.backend_port,
            reload=settings.reload_uvicorn,
            workers=settings.workers_count,
        )


if __name__ == "__main__":
    main()
