# Copyright (c) 2025 sprowii
"""Security-related helpers.

Модули:
- data_protection: Псевдонимизация ID и шифрование журнала аудита
"""
from emperor.security.data_protection import (
    check_security_config,
    decrypt_reason,
    encrypt_reason,
    generate_encryption_key,
    pseudonymize_chat_id,
    pseudonymize_id,
    safe_log_action,
)

__all__ = [
    "check_security_config",
    "decrypt_reason",
    "encrypt_reason",
    "generate_encryption_key",
    "pseudonymize_chat_id",
    "pseudonymize_id",
    "safe_log_action",
]
