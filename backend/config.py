"""Application-wide configuration constants."""

import os
from pathlib import Path

# --- Identity ---
APP_ID = "courier-v1"

# --- Networking ---
API_HOST = "0.0.0.0"
API_PORT = 8765
# Links handed to the peer point back at this address
PUBLIC_URL = f"http://localhost:{API_PORT}/"
# Browser origins allowed to call the API
CORS_ORIGINS = [PUBLIC_URL.rstrip("/")]

STUN_SERVERS = ["stun:stun.l.google.com:19302"]
CHANNEL_LABEL = "fileTransfer"

# --- Transfer ---
CHUNK_SIZE = 16384  # 16 KB
# Sender pauses once this much data is queued on the channel
BUFFERED_AMOUNT_HIGH = 1024 * 1024
BUFFERED_AMOUNT_LOW = 256 * 1024
PROGRESS_INTERVAL = 0.2  # seconds between progress broadcasts

# --- Storage ---
CONFIG_DIR = Path.home() / ".courier"
os.makedirs(CONFIG_DIR, exist_ok=True)

PENDING_OFFER_FILE = CONFIG_DIR / "pending_offer.json"

DEFAULT_SAVE_DIR = str(
    Path.home() / "Downloads" / "Courier"
)
os.makedirs(DEFAULT_SAVE_DIR, exist_ok=True)
