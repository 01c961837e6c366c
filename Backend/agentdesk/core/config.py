from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "AgentDesk API"
    ENVIRONMENT: str = "development"  # "development", "production" or "test"
    DATABASE_URL: str = "sqlite:///./agentdesk.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"
    MAX_UPLOAD_SIZE_MB: int = 10
    UPLOAD_DIR: str = "temp_uploads"

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # ─── AI Categorization ───────────────────────────────────────────────
    ENABLE_AI_CATEGORIZATION: bool = True
    AI_API_KEY: str | None = None
    AI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    AI_MODEL_CANDIDATES: str = "gemini-2.5-flash,gemini-1.5-flash,gemini-1.5-pro,gemini-pro"
    AI_REQUESTS_PER_MINUTE: int = 5  # free tier budget, shared by every job

    class Config:
        env_file = ".env"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def model_candidates(self) -> list[str]:
        return [m.strip() for m in self.AI_MODEL_CANDIDATES.split(",") if m.strip()]

settings = Settings()
