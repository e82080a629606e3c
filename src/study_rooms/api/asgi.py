"""ASGI entrypoint for the study rooms API."""

from study_rooms.api.app import create_app
from study_rooms.containers import build_container

app = create_app(build_container())
