import logging
import uuid

from dotenv import load_dotenv
from flask import Flask, g
from werkzeug.exceptions import HTTPException

from app.docledger.config import Settings, load_config, load_settings
from app.docledger.db import init_db, teardown_db_session
from app.docledger.errors import DocLedgerError
from app.docledger.modules.documents.api import bp as documents_bp
from app.docledger.modules.documents.ledger import MemoryLedger, ledger_from_settings
from app.docledger.modules.documents.runner import BatchRunner
from app.docledger.modules.documents.service import IssuanceService
from app.docledger.routes import bp as routes_bp
from app.docledger.storage import blob_store_from_settings

logger = logging.getLogger(__name__)


def _check_production(settings: Settings) -> None:
    if not settings.is_production:
        return
    if not settings.database_url or settings.database_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if settings.secret_key in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
    if settings.ledger_backend != "web3":
        raise RuntimeError("LEDGER_BACKEND must be 'web3' in production (the memory ledger is not durable).")


def create_app(settings: Settings | None = None) -> Flask:
    load_dotenv()
    settings = settings or load_settings()
    _check_production(settings)

    app = Flask(__name__)
    app.config.from_mapping(load_config(settings))

    init_db(app)

    ledger = ledger_from_settings(settings)
    blob_store = blob_store_from_settings(settings)
    app.extensions["docledger.settings"] = settings
    app.extensions["docledger.ledger"] = ledger
    app.extensions["docledger.blob_store"] = blob_store
    app.extensions["docledger.issuance"] = IssuanceService(ledger, blob_store)
    app.extensions["docledger.batch_runner"] = BatchRunner(app)
    if isinstance(ledger, MemoryLedger):
        app.logger.warning("Using in-memory ledger; anchors are lost on restart.")
    app.logger.info(
        "Backends: storage=%s ledger=%s",
        type(blob_store).__name__,
        type(ledger).__name__,
    )

    app.register_blueprint(routes_bp)
    app.register_blueprint(documents_bp, url_prefix="/api")

    @app.before_request
    def _assign_request_id():
        g.request_id = uuid.uuid4().hex

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(DocLedgerError)
    def _err_docledger(e: DocLedgerError):  # type: ignore[no-redef]
        body: dict[str, object] = {"error": e.code, "message": str(e), "retryable": e.retryable}
        if getattr(e, "partial", False):
            body["partial"] = True
        if getattr(e, "transaction_id", None):
            body["transactionID"] = e.transaction_id
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s): %s", type(e).__name__, getattr(g, "request_id", None), e)
        else:
            app.logger.info("%s (request_id=%s): %s", type(e).__name__, getattr(g, "request_id", None), e)
        return body, e.status_code

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
        return {"error": "too_large", "message": f"File too large. Maximum size is {limit_mb}MB."}, 413

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return {"error": (e.name or "error").lower().replace(" ", "_"), "message": e.description}, e.code or 500

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": "internal_error", "message": "Internal server error"}, 500

    logger.info("create_app() complete; app ready to serve")

    return app
