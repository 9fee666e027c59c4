from linkguard.api.main import app

if __name__ == "__main__":
    import logging

    import uvicorn

    from linkguard.core.settings import load_settings

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
