import uvicorn

from windowlimit.core.app_factory import create_app

app = create_app()


if __name__ == "__main__":
    uvicorn.run("windowlimit.main:app", host="0.0.0.0", port=8000)
