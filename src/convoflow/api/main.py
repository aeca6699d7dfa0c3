"""ASGI entrypoint: uvicorn convoflow.api.main:app"""

from .factory import create_app

app = create_app()
