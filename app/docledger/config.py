import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    max_content_length: int

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    pinata_jwt: str
    pinata_api_url: str
    pinata_gateway_url: str

    ledger_backend: str
    ledger_rpc_url: str
    ledger_private_key: str
    ledger_contract_address: str
    ledger_abi_path: str
    ledger_chain_id: int | None
    ledger_gas_headroom: float
    ledger_receipt_timeout: int

    network_retries: int

    @property
    def is_production(self) -> bool:
        return self.env in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    return int(raw) if raw else default


def load_settings() -> Settings:
    chain_id = _getenv("LEDGER_CHAIN_ID")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///docledger.db"),
        # 25MB per document; archives share the same ceiling
        max_content_length=_getenv_int("MAX_CONTENT_LENGTH", 25 * 1024 * 1024),
        storage_backend=_getenv("STORAGE_BACKEND", "local").lower(),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", os.path.join(os.getcwd(), "storage")),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        pinata_jwt=_getenv("PINATA_JWT", ""),
        pinata_api_url=_getenv("PINATA_API_URL", "https://api.pinata.cloud"),
        pinata_gateway_url=_getenv("PINATA_GATEWAY_URL", "https://gateway.pinata.cloud"),
        ledger_backend=_getenv("LEDGER_BACKEND", "memory").lower(),
        ledger_rpc_url=_getenv("LEDGER_RPC_URL", ""),
        ledger_private_key=_getenv("LEDGER_PRIVATE_KEY", ""),
        ledger_contract_address=_getenv("LEDGER_CONTRACT_ADDRESS", ""),
        ledger_abi_path=_getenv("LEDGER_ABI_PATH", ""),
        ledger_chain_id=int(chain_id) if chain_id else None,
        ledger_gas_headroom=float(_getenv("LEDGER_GAS_HEADROOM", "1.2")),
        ledger_receipt_timeout=_getenv_int("LEDGER_RECEIPT_TIMEOUT", 120),
        network_retries=_getenv_int("NETWORK_RETRIES", 3),
    )


def load_config(settings: Settings | None = None) -> dict:
    s = settings or load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "LEDGER_BACKEND": s.ledger_backend,
        "MAX_CONTENT_LENGTH": s.max_content_length,
        "JSON_SORT_KEYS": False,
    }
