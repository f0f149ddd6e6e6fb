# Copyright (c) 2025 sprowii
import logging
import os


def configure_logging() -> logging.Logger:
    logging.basicConfig(
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    # httpx пишет каждый запрос к Bot API на уровне INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("emperor")


log = configure_logging()
