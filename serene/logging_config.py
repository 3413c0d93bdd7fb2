import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Set by SessionStore for the duration of each operation
op_id_var: ContextVar[str] = ContextVar("op_id", default="-")

_REDACTED_KEYS = {"password", "access_token", "refresh_token", "provider_token", "code_verifier"}


def redact(meta: dict) -> dict:
    """Return a copy of ``meta`` with secret values replaced by their length."""
    out = {}
    for key, value in meta.items():
        if key in _REDACTED_KEYS and value:
            out[key] = f"[REDACTED:{len(str(value))}chars]"
        else:
            out[key] = value
    return out


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "op_id": getattr(record, "op_id", op_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        env = os.getenv("ENV", "").strip()
        if env:
            payload["env"] = env
        meta = getattr(record, "meta", None)
        if isinstance(meta, dict):
            payload["meta"] = redact(meta)
            if meta.get("user_id"):
                payload["user_id"] = meta["user_id"]
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return payload["msg"]


class DebugBannerFormatter(logging.Formatter):
    """Formatter that prefixes level banners for local development."""

    _banners = {
        "DEBUG": "🔍",
        "INFO": "ℹ️",
        "WARNING": "⚠️",
        "ERROR": "❌",
        "CRITICAL": "🚨",
    }

    def __init__(self) -> None:
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - [%(op_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        banner = self._banners.get(record.levelname, "📝")
        return f"{banner} {super().format(record)}"


class OperationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Propagate operation id from context-var into every log line
        record.op_id = op_id_var.get()
        return True


def configure_logging(level: str | None = None, *, debug_banners: bool | None = None) -> None:
    """
    Call once at app startup.
    SERENE_LOG_LEVEL controls verbosity (default INFO).
    SERENE_DEBUG_BANNERS switches to a human readable stdout format.
    """
    from .settings import get_settings

    settings = get_settings()
    level = (level or settings.LOG_LEVEL or "INFO").upper()
    if debug_banners is None:
        debug_banners = settings.DEBUG_BANNERS

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if debug_banners:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(DebugBannerFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    handler.addFilter(OperationIdFilter())
    root_logger.addHandler(handler)

    # Reduce third-party verbosity unless LOG_LEVEL is DEBUG
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "logging_configured", extra={"meta": {"level": level, "banners": bool(debug_banners)}}
    )
