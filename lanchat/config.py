"""Application-wide configuration constants."""

import os
import platform

# --- Identity ---
APP_NAME = "lan-chat"
# Runtime identity; the command line overrides these
DEVICE_NAME = os.environ.get("LANCHAT_NAME") or platform.node()
PASSWORD = os.environ.get("LANCHAT_PASSWORD", "")
DEBUG = os.environ.get("LANCHAT_DEBUG", "").lower() in ("1", "true", "yes")

# --- Networking ---
UDP_PORT = 9999  # discovery
TCP_PORT = 8080  # chat, files, verification
BROADCAST_INTERVAL = 3  # seconds
CONNECT_TIMEOUT = 2.0  # seconds
MAX_HEADER_BYTES = 4 * 1024 * 1024  # ECHAT lines carry the whole ciphertext

API_HOST = "127.0.0.1"
API_PORT = 8765

# --- Listener supervision ---
MAX_RETRIES = 3
RETRY_DELAY = 2  # seconds, doubled after each failed bind

# --- Transfer ---
CHUNK_SIZE = 65536  # 64 KB
RECEIVED_PREFIX = "received_"
RECEIVE_DIR = "."  # current working directory

# --- Crypto ---
FINGERPRINT_PREFIX = "LAN-CHAT-VERIFY:"

# --- Logging ---
DEBUG_LOG_FILE = "debug.log"
