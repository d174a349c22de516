"""Run the guarded application with uvicorn."""

from __future__ import annotations

import uvicorn

from reqguard.config.loader import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("reqguard.main:app", host="0.0.0.0", port=settings.listen_port, log_config=None)


if __name__ == "__main__":
    main()
