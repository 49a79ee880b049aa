"""CRUD backend Flask application package.

To use the Flask app:
    from backend.flask_app import create_app

To use the services without Flask:
    from backend.config import load_settings
    from backend.core.registry import build_services
"""
# Note: flask_app is not imported here so the core package stays usable
# without a Flask application context
