import uvicorn

from .config import load_settings


def main():
    settings = load_settings()
    uvicorn.run("syshealth_server.main:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
