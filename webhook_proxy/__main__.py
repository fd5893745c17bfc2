"""Run the proxy with uvicorn: ``python -m webhook_proxy``."""

import uvicorn

from webhook_proxy.config.loader import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "webhook_proxy.main:app",
        host="0.0.0.0",
        port=settings.listen_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
