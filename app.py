"""
StorybookWeb - Flask Application Entry Point.

This is a slim app factory that:
1. Configures logging
2. Builds the credential cache over the configured storage backend
3. Creates the shared API client and installs the 401 interceptor on it
4. Creates the services (session, credits, print orders)
5. Registers route blueprints and JSON error handlers
6. Starts the one-shot session check in the background

ARCHITECTURE:
    Main Thread
    ├── Flask request handling (threaded)
    └── Cleanup on shutdown

    SessionCheck Thread (background, once)
    └── GET /api/auth/me to confirm or drop the cached session

ONE API client is shared by all services, so every response passes through
the unauthorized-response interceptor.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import requests
from dotenv import load_dotenv
from flask import Flask
from werkzeug.exceptions import HTTPException

from logging_config import APP_LOGGER_NAME, setup_logging, get_logger
from core.api_client import StorybookAPIClient
from core.credential_cache import StoredCredentialCache
from core.exceptions import ApiError, StorybookWebError, TransportError, WizardStateError
from core.interceptor import UnauthorizedResponseInterceptor
from core.storage import create_storage
from services.credit_service import CreditLedger, CreditBalanceReconciler, CreditService
from services.session_service import SessionStateMachine
from services.print_order_service import PrintOrderService
from routes import register_blueprints
from routes.common import ServiceUnavailableError


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In PyInstaller bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def _status_for(error: StorybookWebError) -> int:
    """HTTP status for a typed error returned to the presentation layer."""
    if isinstance(error, (TransportError, ServiceUnavailableError)):
        return 503
    if isinstance(error, WizardStateError):
        return 409
    if isinstance(error, ApiError):
        if error.code == "INVALID_RESPONSE":
            return 502
        if 400 <= error.status < 600:
            return error.status
        return 400
    return 500


def create_app(
    config_object: str = "config.Config",
    storage=None,
    http_session: Optional[requests.Session] = None,
) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the config class
        storage: Credential storage backend (default: from config)
        http_session: requests.Session for the API client (tests mount a
            fake transport adapter on it)

    Returns:
        Configured Flask application
    """
    # Load .env from base path (next to executable in production)
    # Use override=True so .env file always takes precedence over shell environment
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)  # Default behavior

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        app_name=APP_LOGGER_NAME,
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting StorybookWeb in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CORE INITIALIZATION
    # =========================================================================

    if storage is None:
        storage = create_storage(
            app.config["CREDENTIAL_STORE_BACKEND"],
            app.config.get("CREDENTIAL_STORE_PATH"),
        )
    credential_cache = StoredCredentialCache(storage)
    app.config["CREDENTIAL_CACHE"] = credential_cache

    api_client = StorybookAPIClient(
        app.config["STORYBOOK_API_BASE_URL"],
        timeout_seconds=app.config["API_TIMEOUT_SECONDS"],
        session=http_session,
    )
    app.config["API_CLIENT"] = api_client

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    # Ledger first: the session hydrates the cached balance into it
    ledger = CreditLedger()
    session_machine = SessionStateMachine(api_client, credential_cache, ledger)
    app.config["SESSION_MACHINE"] = session_machine

    # Interceptor is installed before the client is shared between threads
    interceptor = UnauthorizedResponseInterceptor(
        get_session=session_machine.snapshot,
        force_clear=session_machine.forced_clear,
    )
    api_client.add_response_hook(interceptor)
    app.config["INTERCEPTOR"] = interceptor

    reconciler = CreditBalanceReconciler(ledger, on_server_balance=session_machine.persist_current_user)
    credit_service = CreditService(
        api_client,
        ledger,
        reconciler,
        history_page_size=app.config["CREDIT_HISTORY_PAGE_SIZE"],
    )
    app.config["CREDIT_SERVICE"] = credit_service
    logger.info("Credit service initialized")

    print_order_service = PrintOrderService(
        api_client,
        max_quantity=app.config["MAX_PRINT_QUANTITY"],
    )
    app.config["PRINT_ORDER_SERVICE"] = print_order_service
    logger.info("Print order service initialized")

    # =========================================================================
    # CLEANUP
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        session_machine.wait_for_session_check()
        api_client.session.close()

        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(StorybookWebError)
    def handle_storybook_error(e):
        status = _status_for(e)
        if status >= 500:
            logger.error(f"Request failed: {e}")
        else:
            logger.info(f"Request rejected ({status}): {e.message}")
        return e.to_dict(), status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return {"success": False, "message": e.description}, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"success": False, "message": "An unexpected error occurred. Please try again."}, 500

    # =========================================================================
    # STARTUP SESSION CHECK
    # =========================================================================

    if not app.config.get("TESTING"):
        session_machine.begin_session_check_in_background()

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode, threaded=True)
