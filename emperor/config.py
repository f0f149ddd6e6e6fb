# Copyright (c) 2025 sprowii
import os

from dotenv import load_dotenv

load_dotenv()


def _resolve_redis_url(raw_url: str) -> str:
    if ".upstash.io" in raw_url and raw_url.startswith("redis://"):
        return "rediss" + raw_url[len("redis") :]
    return raw_url


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Переменная окружения {name} должна быть целым числом, получено: {raw!r}")


TG_TOKEN = os.getenv("TG_TOKEN") or os.getenv("BOT_TOKEN")

REDIS_URL = _resolve_redis_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"))

# Канал для обязательной подписки, например "@its4_Four" (пусто = выключено)
FORCE_JOIN = os.getenv("FORCE_JOIN", "")
CAPTCHA_TIMEOUT_SEC = _int_env("CAPTCHA_TIMEOUT_SEC", 120)

WEBHOOK_URL = os.getenv("WEBHOOK_URL")
if WEBHOOK_URL and WEBHOOK_URL.endswith("/"):
    WEBHOOK_URL = WEBHOOK_URL[:-1]
WEBHOOK_PORT = _int_env("WEBHOOK_PORT", 8443)
WEBHOOK_SECRET_TOKEN = os.getenv("WEBHOOK_SECRET_TOKEN")

FLASK_HOST = "0.0.0.0"
FLASK_PORT = _int_env("PORT", 10000)

# Эскалация предупреждений
WARN_BAN_THRESHOLD = 3

# Мут по умолчанию, если длительность не указана
DEFAULT_MUTE_SEC = 10 * 60

# Антифлуд: N одинаковых сообщений подряд с интервалом < FLOOD_WINDOW_SEC
FLOOD_REPEAT_LIMIT = 4
FLOOD_WINDOW_SEC = 6
FLOOD_MUTE_SEC = 2 * 60
FLOOD_CACHE_SIZE = _int_env("FLOOD_CACHE_SIZE", 10000)
FLOOD_CACHE_TTL_SEC = 10 * 60

# Кэш статуса админа (5 минут)
ADMIN_CACHE_TTL = 300
ADMIN_CACHE_SIZE = 5000

# Завершённые проверки новичков (VERIFIED/BANNED)
ADMISSION_RESOLVED_TTL_SEC = 24 * 60 * 60
ADMISSION_RESOLVED_SIZE = _int_env("ADMISSION_RESOLVED_SIZE", 10000)

CACHE_CLEANUP_INTERVAL_SEC = 5 * 60

CHAT_KEY_PREFIX = "chat:"
ROLES_KEY_PREFIX = "roles:"
WARNS_KEY_PREFIX = "warns:"
MUTES_KEY_PREFIX = "mutes:"
MODLOG_KEY_PREFIX = "modlog:"
