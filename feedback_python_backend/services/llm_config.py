import os
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

ORACLE_CONFIG_KEY = "oracle_config"
DEFAULT_GATEWAY_BASE_URL = "https://openrouter.ai/api"
ORACLE_MODES = {"gateway", "anthropic"}

# Stage name -> config key holding the model used for that stage
STAGE_MODEL_KEYS = {
    "session": "session_model",
    "cluster": "cluster_model",
    "analytics": "analytics_model",
    "narrative": "narrative_model",
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    return value_str in {"1", "true", "yes", "on"}


def get_env_oracle_defaults() -> Dict[str, Any]:
    return {
        "mode": os.getenv("DEFAULT_ORACLE_MODE", "gateway"),
        "base_url": os.getenv("ORACLE_BASE_URL", DEFAULT_GATEWAY_BASE_URL),
        "api_key": os.getenv("ORACLE_API_KEY"),
        "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY"),
        "session_model": os.getenv("ORACLE_SESSION_MODEL", "google/gemini-2.5-flash-lite"),
        "cluster_model": os.getenv("ORACLE_CLUSTER_MODEL", "google/gemini-2.5-flash"),
        "analytics_model": os.getenv("ORACLE_ANALYTICS_MODEL", "google/gemini-2.5-flash"),
        "narrative_model": os.getenv("ORACLE_NARRATIVE_MODEL", "google/gemini-2.5-pro"),
        # Used in anthropic mode for stages whose model is not a Claude id
        "anthropic_model": os.getenv("ORACLE_ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929"),
        "max_tokens": int(os.getenv("ORACLE_MAX_TOKENS", "8000")),
        "temperature": float(os.getenv("ORACLE_TEMPERATURE", "0.3")),
        "timeout_seconds": float(os.getenv("ORACLE_TIMEOUT_SECONDS", "120")),
        "trace": _to_bool(os.getenv("TRACE_API_CALLS", "true")),
        "preview_chars": int(os.getenv("API_LOG_PREVIEW_CHARS", "280")),
    }


def merge_oracle_config(overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    config = get_env_oracle_defaults()
    if not overrides:
        return config

    sanitized = {}
    for key, value in overrides.items():
        if key == "trace":
            sanitized[key] = _to_bool(value)
        elif key == "mode":
            normalized = str(value).strip().lower()
            sanitized[key] = normalized if normalized in ORACLE_MODES else config["mode"]
        elif key in {"max_tokens", "preview_chars"}:
            sanitized[key] = int(value)
        elif key in {"temperature", "timeout_seconds"}:
            sanitized[key] = float(value)
        else:
            sanitized[key] = value

    config.update(sanitized)
    return config


def model_for_stage(config: Dict[str, Any], stage: str) -> str:
    return config[STAGE_MODEL_KEYS[stage]]


async def load_oracle_config(session: Optional[AsyncSession] = None) -> Dict[str, Any]:
    config = get_env_oracle_defaults()
    if session is None:
        return config

    from feedback_python_backend.models import AppSetting

    result = await session.execute(
        select(AppSetting).where(AppSetting.key == ORACLE_CONFIG_KEY)
    )
    setting = result.scalar_one_or_none()
    overrides = setting.value if setting else {}
    return merge_oracle_config(overrides)
