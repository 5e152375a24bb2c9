"""Settings from the environment, with `.env` support.

Process environment variables win over values in the `.env` file. A value
that cannot be parsed falls back to its default with a warning rather than
stopping the server.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from dotenv import dotenv_values
from pydantic import BaseModel, Field

from .llm import LLM, HttpLLM, NullLLM, ProviderFormat
from .store import DecayPolicy

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = Path(".env")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseModel):
    data_dir: Path = Path("data")
    classifier_url: str = ""
    classifier_api_key: str = ""
    classifier_format: ProviderFormat = "koboldcpp"
    classifier_model: str = ""
    classifier_timeout: float = 10.0
    decay: DecayPolicy = Field(default_factory=DecayPolicy)
    log_level: LogLevel = "INFO"


def _float(
    env: Mapping[str, str | None], key: str, default: float, *, positive: bool = False,
) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        logger.warning("ignoring %s=%r: not a number, using %s", key, raw, default)
        return default
    if value < 0:
        logger.warning("ignoring %s=%r: negative, using %s", key, raw, default)
        return default
    if positive and value == 0:
        logger.warning("ignoring %s=%r: must be greater than 0, using %s", key, raw, default)
        return default
    return value


def _int(env: Mapping[str, str | None], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("ignoring %s=%r: not an integer, using %s", key, raw, default)
        return default
    if value < 1:
        logger.warning("ignoring %s=%r: must be at least 1, using %s", key, raw, default)
        return default
    return value


def _choice(env: Mapping[str, str | None], key: str, choices: tuple[str, ...], default: str) -> str:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    for choice in choices:
        if raw.lower() == choice.lower():
            return choice
    logger.warning("ignoring %s=%r: expected one of %s, using %s", key, raw, choices, default)
    return default


def load_settings(env_file: Path | None = None) -> Settings:
    """Read settings from `env_file` (default ./.env) overlaid by os.environ."""
    path = env_file or DEFAULT_ENV_FILE
    env: dict[str, str | None] = {}
    if path.is_file():
        env.update(dotenv_values(path))
    env.update(os.environ)

    defaults = DecayPolicy()
    decay = DecayPolicy(
        entity_rate=_float(env, "ENTITY_DECAY_RATE", defaults.entity_rate),
        fact_rate=_float(env, "FACT_DECAY_RATE", defaults.fact_rate),
        stable_fact_rate=_float(env, "STABLE_FACT_DECAY_RATE", defaults.stable_fact_rate),
        consequence_rate=_float(env, "CONSEQUENCE_DECAY_RATE", defaults.consequence_rate),
        every_n_turns=_int(env, "DECAY_EVERY_N_TURNS", defaults.every_n_turns),
    )
    return Settings(
        data_dir=Path(env.get("DATA_DIR") or "data"),
        classifier_url=(env.get("CLASSIFIER_URL") or "").strip(),
        classifier_api_key=env.get("CLASSIFIER_API_KEY") or "",
        classifier_format=_choice(env, "CLASSIFIER_FORMAT", ("koboldcpp", "openai"), "koboldcpp"),
        classifier_model=env.get("CLASSIFIER_MODEL") or "",
        classifier_timeout=_float(env, "CLASSIFIER_TIMEOUT", 10.0, positive=True),
        decay=decay,
        log_level=_choice(
            env, "LOG_LEVEL", ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"), "INFO",
        ),
    )


def build_classifier(settings: Settings) -> LLM:
    """HttpLLM when a classifier URL is configured, otherwise NullLLM."""
    if not settings.classifier_url:
        return NullLLM()
    return HttpLLM(
        settings.classifier_url,
        api_key=settings.classifier_api_key,
        provider_format=settings.classifier_format,
        model=settings.classifier_model,
        timeout=settings.classifier_timeout,
    )
