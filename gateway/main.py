"""ASGI entry point: ``uvicorn gateway.main:app`` or the ``api-gateway`` script."""

from gateway.core.app_factory import create_app
from gateway.core.config import settings

app = create_app()


def run() -> None:
    """Serve the gateway on the configured HOST/PORT."""
    import uvicorn

    # log_config=None keeps the JSON logging configured by create_app()
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    run()
