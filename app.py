"""WSGI entry point for the game catalog service."""

from __future__ import annotations

import os

from web.app_factory import create_app

app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', '5000'))
    app.run(host='0.0.0.0', port=port)
