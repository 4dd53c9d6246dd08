"""Runtime configuration loaded from environment variables.

This module centralizes settings such as the reasoning-service mode and
client options, bus and memory bounds, consensus timeouts, and the species
provider endpoint.
"""

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Typed settings object used across the package."""

    env: str = os.getenv("ENV", "dev")
    ai_mode: str = os.getenv("AI_MODE", "mock").lower()
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str | None = os.getenv("OPENAI_BASE_URL") or None
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
    openai_timeout_ms: int = int(os.getenv("OPENAI_TIMEOUT_MS", "30000"))
    openai_concurrency: int = int(os.getenv("OPENAI_CONCURRENCY", "3"))
    agent_memory_size: int = int(os.getenv("AGENT_MEMORY_SIZE", "50"))
    bus_history_size: int = int(os.getenv("BUS_HISTORY_SIZE", "200"))
    interaction_log_size: int = int(os.getenv("INTERACTION_LOG_SIZE", "100"))
    vote_timeout_ms: int = int(os.getenv("VOTE_TIMEOUT_MS", "5000"))
    negotiation_max_rounds: int = int(os.getenv("NEGOTIATION_MAX_ROUNDS", "3"))
    species_api_url: str = os.getenv("SPECIES_API_URL", "https://pokeapi.co/api/v2").rstrip("/")
    species_timeout_ms: int = int(os.getenv("SPECIES_TIMEOUT_MS", "10000"))
    species_lookup: bool = os.getenv("SPECIES_LOOKUP", "false").lower() in {"1", "true", "yes"}
    session_limit: int = int(os.getenv("SESSION_LIMIT", "64"))
    cors_origins: list[str] = [x.strip() for x in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if x.strip()]


settings = Settings()
