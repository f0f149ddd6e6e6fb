# Copyright (c) 2025 sprowii
"""Защита персональных данных в журнале модерации.

Модуль обеспечивает:
- Псевдонимизацию user_id/chat_id в логах приложения (HMAC с солью)
- Шифрование причин в журнале аудита (Fernet)

Реальные ID хранятся в журнале аудита, так как по ним работают модераторы.
"""
import base64
import hashlib
import hmac
import os
import re
import secrets
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from emperor.logging_config import log


ENCRYPTED_PREFIX = "enc:"

# Соль для хэширования ID - должна быть в переменных окружения!
# Если не задана, генерируется при запуске (псевдонимы меняются после рестарта)
_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning(
        "DATA_HASH_SALT не задан! Генерирую временную соль. "
        "Задайте DATA_HASH_SALT в переменных окружения для production."
    )
    _HASH_SALT = secrets.token_hex(32)


def _build_fernet(raw_key: Optional[str]) -> Optional[Fernet]:
    if not raw_key:
        return None
    try:
        # Ключ уже в формате Fernet (base64)
        return Fernet(raw_key.encode())
    except ValueError:
        # Обычный пароль - деривируем ключ
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_HASH_SALT.encode()[:16],
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(raw_key.encode()))
        return Fernet(key)


_fernet: Optional[Fernet] = _build_fernet(os.getenv("DATA_ENCRYPTION_KEY"))
if _fernet is None:
    log.warning("DATA_ENCRYPTION_KEY не задан! Причины в журнале аудита хранятся открытым текстом.")


# ============================================================================
# ПСЕВДОНИМИЗАЦИЯ
# ============================================================================

def pseudonymize_id(user_id: int, context: str = "default") -> str:
    """Псевдонимизирует user_id через HMAC-SHA256.

    Один и тот же user_id в одном контексте всегда даёт один и тот же псевдоним.
    """
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def pseudonymize_chat_id(chat_id: int) -> str:
    """Псевдонимизирует chat_id."""
    return pseudonymize_id(chat_id, context="chat")


# ============================================================================
# ШИФРОВАНИЕ ПРИЧИН
# ============================================================================

def encrypt_reason(reason: str) -> str:
    """Шифрует причину действия. Без ключа возвращает исходную строку."""
    if not _fernet or not reason:
        return reason
    token = _fernet.encrypt(reason.encode()).decode()
    return f"{ENCRYPTED_PREFIX}{token}"


def decrypt_reason(stored: str) -> Optional[str]:
    """Расшифровывает причину. Незашифрованные значения возвращаются как есть."""
    if not stored or not stored.startswith(ENCRYPTED_PREFIX):
        return stored
    if not _fernet:
        log.warning("Попытка расшифровать причину без ключа шифрования")
        return None
    try:
        return _fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode()).decode()
    except InvalidToken:
        log.error("Не удалось расшифровать причину: неверный ключ")
        return None


# ============================================================================
# БЕЗОПАСНОЕ ЛОГИРОВАНИЕ
# ============================================================================

def safe_log_action(
    action_type: str,
    target_user_id: Optional[int],
    chat_id: int,
    admin_id: Optional[int] = None,
    reason: Optional[str] = None
) -> str:
    """Формирует безопасную строку для лога действия модерации."""
    target = pseudonymize_id(target_user_id) if target_user_id else "-"
    chat = pseudonymize_chat_id(chat_id)
    admin = pseudonymize_id(admin_id) if admin_id else "auto"

    safe_reason = ""
    if reason:
        # Убираем @username из причины
        safe_reason = re.sub(r"@\w+", "@***", reason)[:50]

    return f"[{action_type}] target={target} chat={chat} by={admin} reason={safe_reason}"


def generate_encryption_key() -> str:
    """Генерирует новый ключ шифрования Fernet.

    python -c "from emperor.security.data_protection import generate_encryption_key; print(generate_encryption_key())"
    """
    return Fernet.generate_key().decode()


def check_security_config() -> Dict[str, Any]:
    """Проверяет конфигурацию безопасности."""
    issues = []

    if not os.getenv("DATA_HASH_SALT"):
        issues.append("DATA_HASH_SALT не задан - используется временная соль")

    if not os.getenv("DATA_ENCRYPTION_KEY"):
        issues.append("DATA_ENCRYPTION_KEY не задан - шифрование отключено")

    if os.getenv("WEBHOOK_URL") and not os.getenv("WEBHOOK_SECRET_TOKEN"):
        issues.append("WEBHOOK_SECRET_TOKEN не задан - вебхук принимает запросы без секрета")

    return {
        "encryption_enabled": _fernet is not None,
        "hash_salt_configured": bool(os.getenv("DATA_HASH_SALT")),
        "issues": issues,
        "secure": len(issues) == 0,
    }
