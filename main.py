"""Process entry point: build configuration and clients once, serve the app.

Run with:  uvicorn main:app
"""

import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

from api.app import build_guards, create_app
from auth.codes import CodeManager
from auth.config import load_auth_config
from auth.database import AuthDatabase
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionRegistry
from auth.tokens import TokenService
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import get_database_url, get_email_config, get_valkey_url

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_app():
    """Wire every component from Vault-sourced settings."""
    config = load_auth_config()

    postgres = PostgresClient(get_database_url(), timeout_seconds=config.store_timeout_seconds)
    valkey = ValkeyClient(get_valkey_url(), timeout_seconds=config.store_timeout_seconds)
    email_client = EmailGatewayClient(**get_email_config())

    token_service = TokenService(config)
    session_registry = SessionRegistry(valkey, config)
    code_manager = CodeManager(valkey, config)

    auth_service = AuthService(
        config=config,
        auth_db=AuthDatabase(postgres),
        token_service=token_service,
        session_registry=session_registry,
        code_manager=code_manager,
        email_client=email_client,
        security_logger=SecurityLogger(postgres),
    )

    guards = build_guards(config, token_service, session_registry, code_manager)
    logger.info("Auth service wired")
    return create_app(config, auth_service, guards)


app = build_app()
