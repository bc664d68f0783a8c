# Copyright (c)
# SPDX-License-Identifier: MIT
"""Settings dependency.

Routes read the settings the application was created with (stored on
``app.state.settings`` by ``create_app``), falling back to the process-wide
singleton for routers mounted on a bare app.
"""

from __future__ import annotations

from fastapi import Request

from hello_api.config.settings import Settings, get_settings


def app_settings(request: Request) -> Settings:
    """Return the settings bound to the running application."""
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, Settings) else get_settings()
