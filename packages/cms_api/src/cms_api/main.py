"""
Entry point for the CMS API.

Run with:
    uvicorn cms_api.main:app --reload

or through the installed ``cms-api`` script.
"""

import uvicorn
from cms_core.config import cms_settings

from .app import create_app

app = create_app(cms_settings)


def run() -> None:
    uvicorn.run(
        "cms_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=cms_settings.is_development(),
        log_level=cms_settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
