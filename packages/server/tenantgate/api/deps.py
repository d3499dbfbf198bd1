"""
Request-scoped access to the engine objects built by `create_app`.
"""

from fastapi import Request

from tenantgate.core.config import Settings
from tenantgate.services.cascade import CascadeEngine


def get_cascade_engine(request: Request) -> CascadeEngine:
    return request.app.state.cascade_engine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
