import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ValidationError
from .tax import require_tax_rate

logger = logging.getLogger("prexiopa.config")

CONFIG_ENV = "PREXIOPA_CONFIG"

# 环境变量 -> Settings 字段
ENV_OVERRIDES = {
    "PREXIOPA_HISTORY_LIMIT": "history_limit",
    "PREXIOPA_DEFAULT_TAX_RATE": "default_tax_rate_code",
    "PREXIOPA_PRICE_INCLUDES_TAX": "default_price_includes_tax",
    "PREXIOPA_DEFAULT_UNIT": "default_unit",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    history_limit: int = 10
    default_tax_rate_code: str = "general"
    default_price_includes_tax: bool = True
    default_unit: str = "unidad"


def _coerce(key: str, value: Any) -> Any:
    if key == "history_limit":
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError(key, f"must be an integer, got {value!r}") from None
        if value < 0:
            raise ValidationError(key, "must be >= 0")
        return value
    if key == "default_price_includes_tax":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValidationError(key, f"must be a boolean, got {value!r}")
    if key == "default_tax_rate_code":
        return require_tax_rate(str(value)).code
    return str(value)


def _apply(settings: Settings, values: Mapping[str, Any]) -> Settings:
    known = Settings.__dataclass_fields__
    changes: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning("ignoring unknown setting %r", key)
            continue
        changes[key] = _coerce(key, value)
    return replace(settings, **changes)


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """按 默认值 < YAML 文件 < 环境变量 的顺序加载配置。"""
    env = os.environ if environ is None else environ
    settings = Settings()

    path = path or env.get(CONFIG_ENV)
    if path:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValidationError(CONFIG_ENV, f"{path} must contain a mapping")
        # 支持顶层 prexiopa: 小节
        section = data.get("prexiopa", data)
        settings = _apply(settings, section)
        logger.info("loaded settings from %s", path)

    overrides = {field: env[name] for name, field in ENV_OVERRIDES.items() if name in env}
    return _apply(settings, overrides)
