import uvicorn

from storefront.config import settings


def main():
    uvicorn.run(
        "storefront.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
