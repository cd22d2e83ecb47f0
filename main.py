# main.py
# Role: ASGI entry point for the statement dashboard API.
#       `uvicorn main:app` builds the app from environment settings.

from extrato.main import create_app

app = create_app()
