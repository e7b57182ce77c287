"""
Flask route blueprints for StorybookWeb.

This module contains all route handlers organized by functionality:
- auth: Session snapshot, session check, login/logout, account, profile
- credits: Balance, history, packages, purchase and verification
- print_order: Print order wizard and placed orders
- characters: Character deletion with confirmation
- api: Health check

All endpoints speak JSON. Each blueprint is registered with the Flask app in
create_app().
"""

from .auth import auth_bp
from .credits import credits_bp
from .print_order import print_order_bp
from .characters import characters_bp
from .api import api_bp

__all__ = [
    "auth_bp",
    "credits_bp",
    "print_order_bp",
    "characters_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(auth_bp)
    app.register_blueprint(credits_bp)
    app.register_blueprint(print_order_bp)
    app.register_blueprint(characters_bp)
    app.register_blueprint(api_bp)
