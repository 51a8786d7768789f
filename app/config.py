"""
Configuration management for the insight pipeline
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Insight Pipeline"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./insights.db"

    # DeepSeek (lite/pro family)
    deepseek_api_key: Optional[str] = None
    deepseek_api_base: str = "https://api.deepseek.com/v1"
    deepseek_lite_model: str = "deepseek-chat"
    deepseek_pro_model: str = "deepseek-reasoner"
    deepseek_timeout_seconds: float = 120.0

    # Hosted chat family (Claude + Gemini)
    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-sonnet-4-20250514"
    gemini_api_key: Optional[str] = None
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-1.5-pro"
    hosted_chat_timeout_seconds: float = 60.0

    # Generation defaults
    default_insight_model: str = "deepseek-lite"
    default_temperature: float = 0.2
    default_max_tokens: int = 2048
    default_timeframe_days: int = 30

    # RAG
    rag_top_k: int = 4
    rag_max_chars: int = 4000

    # Scheduler
    scheduler_timezone: str = "UTC"
    enable_scheduler: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
