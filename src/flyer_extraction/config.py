import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: Optional[str]) -> Dict[str, str]:
    """Read the nearest .env into a mapping; does not mutate the environment."""
    path = _find_upwards(dotenv_dir or os.getcwd(), ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir or '.')}")
        return {}
    try:
        values = dotenv_values(path)
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
        return {}
    env = {k: v.strip() for k, v in values.items() if k and v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def _lookup(env: Dict[str, str], *names: str) -> Optional[str]:
    for name in names:
        v = os.environ.get(name)
        if v and v.strip():
            return v.strip()
    for name in names:
        v = env.get(name)
        if v:
            return v
    return None


def _int_setting(env: Dict[str, str], name: str, default: int) -> int:
    raw = _lookup(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default


def _float_setting(env: Dict[str, str], name: str, default: float) -> float:
    raw = _lookup(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("%s=%r is not a number; using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class VisionConfig:
    """Settings for the OpenAI-compatible vision endpoint."""

    api_key: Optional[str]
    model_name: str = "gemini-2.0-flash"
    base_url: Optional[str] = GEMINI_OPENAI_BASE_URL
    max_output_tokens: int = 8192
    temperature: float = 0.2
    timeout_seconds: int = 120


@dataclass(frozen=True)
class PipelineSettings:
    max_tiles: int = 200
    tile_size: int = 1024
    tile_overlap: int = 96
    http_timeout_sec: int = 30
    render_enabled: bool = True


def load_vision(dotenv_dir: Optional[str] = None) -> VisionConfig:
    """Return the vision endpoint config from env or .env.

    The key is read from VISION_API_KEY, then GEMINI_API_KEY, then
    OPENAI_API_KEY. A missing key is not an error here; callers decide.
    """
    env = _read_dotenv(dotenv_dir)
    api_key = _lookup(env, "VISION_API_KEY", "GEMINI_API_KEY", "OPENAI_API_KEY")
    base_url = _lookup(env, "VISION_BASE_URL")
    if base_url is None and not _lookup(env, "VISION_API_KEY", "GEMINI_API_KEY") and api_key:
        # Only an OpenAI key present: let the SDK use its default endpoint.
        base_url = None
    elif base_url is None:
        base_url = GEMINI_OPENAI_BASE_URL
    cfg = VisionConfig(
        api_key=api_key,
        model_name=_lookup(env, "VISION_MODEL", "GEMINI_MODEL") or "gemini-2.0-flash",
        base_url=base_url,
        max_output_tokens=_int_setting(env, "VISION_MAX_OUTPUT_TOKENS", 8192),
        temperature=_float_setting(env, "VISION_TEMPERATURE", 0.2),
        timeout_seconds=_int_setting(env, "VISION_TIMEOUT_SEC", 120),
    )
    if not cfg.api_key:
        log.debug("No vision API key found in env or .env")
    return cfg


def load_pipeline_settings(dotenv_dir: Optional[str] = None) -> PipelineSettings:
    env = _read_dotenv(dotenv_dir)
    render_raw = (_lookup(env, "FLYER_RENDER_ENABLED") or "true").lower()
    return PipelineSettings(
        max_tiles=_int_setting(env, "FLYER_MAX_TILES", 200),
        tile_size=_int_setting(env, "FLYER_TILE_SIZE", 1024),
        tile_overlap=_int_setting(env, "FLYER_TILE_OVERLAP", 96),
        http_timeout_sec=_int_setting(env, "HTTP_TIMEOUT_SEC", 30),
        render_enabled=render_raw not in {"0", "false", "no", "off"},
    )
