from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    # Database
    supabase_url: str
    supabase_key: str

    # Progression
    cas_max_retries: int = 5
    seed_catalog_on_startup: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    # App
    app_name: str = "StudyRank"
    version: str = "1.0.0"
    debug: bool = True
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    class Config:
        env_file = ".env"

settings = Settings()
