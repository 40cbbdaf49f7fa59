"""Initialize LLM environment before any CrewAI imports.

Import this module first: it loads ``.env`` and disables CrewAI/OpenTelemetry
telemetry, which CrewAI reads at import time.
"""
import os

from dotenv import load_dotenv


def load_env_with_optional_override() -> None:
    """Load .env without clobbering explicit environment overrides."""

    load_dotenv(override=False)
    if os.getenv("DOTENV_FORCE_OVERRIDE", "").strip().lower() in {"1", "true", "yes", "on"}:
        load_dotenv(override=True)


load_env_with_optional_override()

# CrewAI initializes OpenTelemetry on import
os.environ["OTEL_SDK_DISABLED"] = "true"
os.environ["OTEL_TRACES_EXPORTER"] = "none"
os.environ["OTEL_METRICS_EXPORTER"] = "none"
os.environ["OTEL_LOGS_EXPORTER"] = "none"
os.environ["CREWAI_DISABLE_TELEMETRY"] = "true"


def initialize_api_key() -> str:
    """
    Initialize API key configuration for LiteLLM/OpenAI clients.

    Returns:
        The configured API key
    """
    base_url = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
    api_key = os.getenv("OPENAI_API_KEY", "dummy-key")

    os.environ["OPENAI_API_BASE"] = base_url
    os.environ["OPENAI_API_KEY"] = api_key

    return api_key


API_KEY = initialize_api_key()
