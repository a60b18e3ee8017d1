"""
Process entry point.

Run with: uvicorn callsteer.main:app --reload
"""

from callsteer.api import create_app
from callsteer.config import get_settings
from callsteer.logging import configure_logging

settings = get_settings()

# Configure logging before anything else logs
configure_logging(debug=settings.debug, json_output=settings.log_json)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "callsteer.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
