"""Configuration management for the application."""
from pydantic_settings import BaseSettings
from typing import Optional


DEFAULT_PROPOSAL_SECRET = "change-me-proposal-secret"


class Settings(BaseSettings):
    """Application settings."""

    # LLM (Gemini generateContent API)
    gemini_api_key: str = ""
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_model: str = "gemini-2.0-flash"
    llm_temperature: float = 0.7
    llm_top_p: float = 0.95
    llm_top_k: int = 40
    llm_max_output_tokens: int = 8192
    llm_request_timeout: float = 20.0  # must stay below agent_time_budget
    llm_max_attempts: int = 3

    # Agent loop
    agent_max_steps: int = 5
    agent_time_budget: float = 25.0  # seconds, measured from the first LLM call

    # Database
    database_url: str = "sqlite:///./cart_assistant.db"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3565

    # Sessions
    session_timeout: int = 1800  # sliding window, 30 minutes
    session_absolute_lifetime: int = 43200  # 12 hours, 0 disables the cap

    # Rate Limiting
    rate_limit_requests: int = 10
    rate_limit_window: int = 60

    # Redis Cache
    redis_url: str = "redis://localhost:6379/0"
    cache_enabled: bool = True

    # Cache TTLs (in seconds)
    cache_product_search_ttl: int = 300
    cache_cart_view_ttl: int = 30
    cache_kit_listing_ttl: int = 300

    # Proposals
    proposal_secret: str = DEFAULT_PROPOSAL_SECRET
    proposal_ttl: int = 600

    # Usage telemetry
    analytics_endpoint: Optional[str] = None
    analytics_secret: Optional[str] = None
    analytics_salt: str = "cart-assistant"
    analytics_timeout: float = 5.0
    cost_input_per_million: float = 0.075
    cost_output_per_million: float = 0.30

    # Audit
    audit_debug: bool = False  # record routine chat_completed events too

    # Catalog defaults
    default_model_preference: str = "Standard"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/app.log"

    # Environment Configuration
    environment: str = "development"  # development, staging, production

    # Production Settings
    production_mode: bool = False  # Auto-detected from environment

    # CORS Configuration (for production)
    cors_origins: str = "*"  # Comma-separated list of allowed origins

    class Config:
        env_file = ".env"
        case_sensitive = False

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-detect production mode
        self.production_mode = (
            self.environment.lower() == "production" or
            self.environment.lower() == "prod"
        )

        if self.production_mode:
            # More restrictive logging in production
            if self.log_level == "INFO":
                self.log_level = "WARNING"

            if self.proposal_secret == DEFAULT_PROPOSAL_SECRET:
                import warnings
                warnings.warn(
                    "WARNING: Using default proposal secret in production! "
                    "Change PROPOSAL_SECRET in .env file immediately."
                )

    @property
    def generation_config(self) -> dict:
        """Generation parameters in the shape the LLM API expects."""
        return {
            "temperature": self.llm_temperature,
            "topP": self.llm_top_p,
            "topK": self.llm_top_k,
            "maxOutputTokens": self.llm_max_output_tokens,
        }


settings = Settings()
