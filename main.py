from __future__ import annotations

from searchgate.app.api.app import create_app

app = create_app()
