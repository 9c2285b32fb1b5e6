"""ASGI entrypoint: ``uvicorn contact_exchange.api.asgi:app``."""

from contact_exchange.api.app import create_app
from contact_exchange.containers import build_container

container = build_container()
app = create_app(container)
