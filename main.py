from formshield.logging_config import setup_logging
from formshield.routes import create_app


# Configure logging once for the whole process.
setup_logging()

# FastAPI application instance for uvicorn.
app = create_app()


def run() -> None:
    import uvicorn

    from formshield.settings import settings

    # Logging is already configured by formshield.logging_config.
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment != "production",
        log_config=None,
    )


if __name__ == "__main__":
    run()
