"""Root conftest: test settings must be in the environment before chat_sync.config is imported."""
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env.test", override=False)

logging.getLogger("websockets").setLevel(logging.WARNING)
