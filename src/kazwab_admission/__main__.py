"""Run the admission controller with uvicorn: ``python -m kazwab_admission``."""

import structlog
import uvicorn

from kazwab_admission.config import get_settings
from kazwab_admission.logging import setup_logging

logger = structlog.get_logger()


def main() -> None:
    settings = get_settings()
    setup_logging()

    if settings.rate_limit_backend == "memory" and settings.debug:
        logger.warning("memory_counters_reset_on_reload")

    uvicorn.run(
        "kazwab_admission.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=False,
        # Client keys come from resolve_client_key, which honours X-Forwarded-For only with trust_proxy
        proxy_headers=False,
        server_header=False,
    )


if __name__ == "__main__":
    main()
