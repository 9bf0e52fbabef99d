"""
WSGI entry point for Gunicorn: ``gunicorn wsgi:app``
"""

import sys
from pathlib import Path

# Flat backend layout: modules are imported by bare name
sys.path.insert(0, str(Path(__file__).parent / "backend"))

from app import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run()
