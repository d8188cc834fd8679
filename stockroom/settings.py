from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+psycopg://stockroom@localhost:5432/stockroom"
    db_auto_create_tables: bool = False

    # Signs the session cookie written by the login service.
    session_secret: str = ""

    app_url: str = "http://localhost:8000"
    credentials_settings_path: str = "/settings/ebay-auth"

    # eBay
    ebay_client_id: str = ""
    ebay_client_secret: str = ""
    ebay_redirect_uri: str = ""
    ebay_api_base_url: str = "https://api.ebay.com"
    ebay_auth_base_url: str = "https://auth.ebay.com"
    ebay_marketplace_id: str = "EBAY_US"
    ebay_search_limit: int = 10
    ebay_scopes: list[str] = [
        "https://api.ebay.com/oauth/api_scope",
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.marketing",
        "https://api.ebay.com/oauth/api_scope/sell.account",
    ]
    ebay_token_retry_count: int = 3

    # Gemini
    gemini_api_key: str = ""  # Backwards compatibility
    gemini_api_keys: list[str] = []  # List of keys for rotation
    gemini_model: str = "gemini-2.0-flash-001"
    gemini_temperature: float = 0.2
    gemini_top_p: float = 0.8
    gemini_top_k: int = 40
    gemini_max_output_tokens: int = 8192

    # Timeouts (seconds)
    ai_timeout_seconds: float = 30.0
    marketplace_timeout_seconds: float = 10.0

    # Batch analysis / image pipeline throttling
    analysis_batch_size: int = 5
    analysis_batch_delay_seconds: float = 1.0
    image_max_dimension: int = 600
    image_jpeg_quality: int = 60
    image_max_file_bytes: int = 4 * 1024 * 1024
    image_max_batch_bytes: int = 10 * 1024 * 1024
    image_inter_file_delay_seconds: float = 1.0
    image_max_source_pixels: int = 64_000_000

    log_level: str = "INFO"

    def get_gemini_keys(self) -> list[str]:
        """Env single key first, then the rotation list, without duplicates."""
        keys = [k for k in self.gemini_api_keys if k]
        if self.gemini_api_key and self.gemini_api_key not in keys:
            keys.insert(0, self.gemini_api_key)
        return keys

    def get_redirect_uri(self) -> str:
        if self.ebay_redirect_uri:
            return self.ebay_redirect_uri
        return f"{self.app_url.rstrip('/')}/api/credentials/callback"

    @field_validator("app_url", "ebay_api_base_url", "ebay_auth_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with 'http://' or 'https://'.")
        return v.rstrip("/")

    @field_validator("ai_timeout_seconds")
    @classmethod
    def validate_ai_timeout(cls, v: float) -> float:
        if v < 30:
            raise ValueError("ai_timeout_seconds must be at least 30.")
        return v

    @field_validator("marketplace_timeout_seconds")
    @classmethod
    def validate_marketplace_timeout(cls, v: float) -> float:
        if v < 10:
            raise ValueError("marketplace_timeout_seconds must be at least 10.")
        return v

    @field_validator("analysis_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if not 1 <= v <= 5:
            raise ValueError("analysis_batch_size must be between 1 and 5.")
        return v

    @field_validator("analysis_batch_delay_seconds", "image_inter_file_delay_seconds")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 1:
            raise ValueError("Throttle delays must be at least 1 second.")
        return v

    @field_validator("gemini_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0 <= v <= 0.7:
            raise ValueError("gemini_temperature must be between 0 and 0.7.")
        return v

    @field_validator("gemini_top_p")
    @classmethod
    def validate_top_p(cls, v: float) -> float:
        if not 0 < v <= 0.8:
            raise ValueError("gemini_top_p must be in (0, 0.8].")
        return v

    @field_validator("gemini_top_k")
    @classmethod
    def validate_top_k(cls, v: int) -> int:
        if not 1 <= v <= 40:
            raise ValueError("gemini_top_k must be between 1 and 40.")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
