"""Module executed when running ``python -m stalker_stremio``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import uvicorn

from app.config import Settings, settings

logger = logging.getLogger(__name__)


def tls_options(config: Settings) -> dict[str, Any]:
    """Return uvicorn TLS keyword arguments, or nothing to serve plain HTTP."""

    if not config.tls_enabled:
        return {}
    files = [config.ssl_keyfile, config.ssl_certfile]
    if config.ssl_ca_certs:
        files.append(config.ssl_ca_certs)
    missing = [name for name in files if not Path(str(name)).is_file()]
    if missing:
        logger.error(
            "HTTPS disabled, falling back to HTTP: unreadable TLS files %s",
            ", ".join(str(name) for name in missing),
        )
        return {}
    options: dict[str, Any] = {
        "ssl_keyfile": config.ssl_keyfile,
        "ssl_certfile": config.ssl_certfile,
    }
    if config.ssl_ca_certs:
        options["ssl_ca_certs"] = config.ssl_ca_certs
    return options


def main() -> None:
    """Start the uvicorn server using the configured settings."""

    logging.basicConfig(level=logging.INFO)
    options = tls_options(settings)
    scheme = "https" if options else "http"
    logger.info(
        "Serving on %s://%s:%s/configure",
        scheme,
        settings.server_host,
        settings.server_port,
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
        **options,
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
