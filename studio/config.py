from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Generative Language API
    genai_base_url: str = "https://generativelanguage.googleapis.com"
    genai_api_version: str = "v1beta"
    genai_api_key: str | None = None  # Seeds the credential store unvalidated (session-scoped)

    # Default models per feature
    studio_text_model: str = "gemini-2.5-flash"
    studio_image_model: str = "gemini-2.5-flash-image-preview"
    studio_tts_model: str = "gemini-2.5-flash-preview-tts"
    studio_video_model: str = "gemini-2.0-flash-exp"
    studio_pdf_model: str = "gemini-2.5-flash"

    # Database
    studio_db_url: str = "sqlite+aiosqlite:///data/studio.db"

    # Logging
    studio_log_level: str = "info"

    # HTTP client timeouts (seconds)
    studio_http_connect_timeout: float = 5.0
    studio_http_read_timeout: float = 120.0

    # Uploaded file processing
    studio_file_poll_interval: float = 3.0
    studio_file_poll_max_attempts: int = 100

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
