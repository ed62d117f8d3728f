"""
ASGI entry point for the bridge server.

Used by uvicorn / gunicorn:  uvicorn server.asgi:app
Configuration comes from the environment (and .env, if present).
"""

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()
