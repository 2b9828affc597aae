from pydantic_settings import BaseSettings
from typing import List, Optional
import os
from dotenv import load_dotenv

load_dotenv()


SANDBOX = "sandbox"
PRODUCTION = "production"

BASE_SCOPE = "https://api.ebay.com/oauth/api_scope"


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET: Optional[str] = None
    ALGORITHM: str = "HS256"
    DEBUG: bool = False

    @property
    def secret_key(self) -> str:
        return self.JWT_SECRET or self.SECRET_KEY

    # Default environment for newly connected accounts. Each account stores its
    # own environment, so sandbox and production accounts may coexist.
    EBAY_ENVIRONMENT: str = SANDBOX

    EBAY_SANDBOX_CLIENT_ID: Optional[str] = None
    EBAY_SANDBOX_DEV_ID: Optional[str] = None
    EBAY_SANDBOX_CERT_ID: Optional[str] = None
    EBAY_SANDBOX_RUNAME: Optional[str] = None

    EBAY_PRODUCTION_CLIENT_ID: Optional[str] = None
    EBAY_PRODUCTION_DEV_ID: Optional[str] = None
    EBAY_PRODUCTION_CERT_ID: Optional[str] = None
    EBAY_PRODUCTION_RUNAME: Optional[str] = None

    # Space-separated scopes requested when the caller does not pick any.
    EBAY_DEFAULT_SCOPES: str = " ".join([
        BASE_SCOPE,
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.fulfillment",
        "https://api.ebay.com/oauth/api_scope/sell.account",
        "https://api.ebay.com/oauth/api_scope/commerce.identity.readonly",
    ])

    # Token lifecycle
    EBAY_TOKEN_REFRESH_SKEW_SECONDS: int = 300
    EBAY_AUTH_STATE_TTL_SECONDS: int = 600
    # eBay user refresh tokens live ~18 months; used when the exchange
    # response omits refresh_token_expires_in.
    EBAY_REFRESH_TOKEN_DEFAULT_TTL_SECONDS: int = 47304000

    # Upstream HTTP
    EBAY_HTTP_TIMEOUT_SECONDS: float = 30.0
    EBAY_HTTP_CONNECT_TIMEOUT_SECONDS: float = 10.0
    EBAY_HTTP_MAX_ATTEMPTS: int = 3
    EBAY_HTTP_BACKOFF_SECONDS: float = 0.5

    EBAY_MARKETPLACE_ID: str = "EBAY_US"
    EBAY_TRADING_COMPATIBILITY_LEVEL: int = 1157
    EBAY_TRADING_SITE_ID: int = 0

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./ebay_gateway.db")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        # Do not silently read .env in CI; the platform injects env
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def default_scopes(self) -> List[str]:
        return [s for s in self.EBAY_DEFAULT_SCOPES.split() if s]

    def ebay_client_id(self, environment: str) -> Optional[str]:
        if environment == SANDBOX:
            return self.EBAY_SANDBOX_CLIENT_ID
        return self.EBAY_PRODUCTION_CLIENT_ID

    def ebay_cert_id(self, environment: str) -> Optional[str]:
        if environment == SANDBOX:
            return self.EBAY_SANDBOX_CERT_ID
        return self.EBAY_PRODUCTION_CERT_ID

    def ebay_runame(self, environment: str) -> Optional[str]:
        if environment == SANDBOX:
            return self.EBAY_SANDBOX_RUNAME
        return self.EBAY_PRODUCTION_RUNAME

    def ebay_api_base_url(self, environment: str) -> str:
        if environment == SANDBOX:
            return "https://api.sandbox.ebay.com"
        return "https://api.ebay.com"

    def ebay_auth_base_url(self, environment: str) -> str:
        if environment == SANDBOX:
            return "https://auth.sandbox.ebay.com"
        return "https://auth.ebay.com"

    def ebay_identity_base_url(self, environment: str) -> str:
        if environment == SANDBOX:
            return "https://apiz.sandbox.ebay.com"
        return "https://apiz.ebay.com"


settings = Settings()

if not settings.DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not configured.")
