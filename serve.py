"""Run the progression API under uvicorn.

Run with:  python3 serve.py
"""

from __future__ import annotations

import os

API_HOST = os.getenv("RUNQUEST_HOST", "127.0.0.1")
API_PORT = int(os.getenv("RUNQUEST_PORT", "8000"))


def main() -> None:
    import uvicorn

    from api.main import create_app
    from runquest.config import get_settings

    app = create_app()
    uvicorn.run(app, host=API_HOST, port=API_PORT, log_level=get_settings().log_level.lower())


if __name__ == "__main__":
    main()
