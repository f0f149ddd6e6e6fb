# Copyright (c) 2025 sprowii
from telegram.ext import CallbackContext

from emperor.logging_config import log
from emperor.moderation.controller import get_moderation_controller


async def cleanup_caches_job(context: CallbackContext):
    removed = get_moderation_controller().cleanup_caches()
    if removed:
        log.debug(f"Очищено {removed} истёкших записей кэша")
