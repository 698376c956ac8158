# env vars + constants
import os

NODE_ID = os.getenv("NODE_ID", "nodeX")
PORT = int(os.getenv("PORT", "8000"))
PEERS = [p.strip() for p in os.getenv("PEERS", "").split(",") if p.strip()]

ROOM = os.getenv("ROOM", "votingRoom")
UPDATE_EVENT = "votingUpdate"

STORAGE_PATH = os.getenv("STORAGE_PATH", "voting-storage.json")
STORAGE_KEY = os.getenv("STORAGE_KEY", "voting-storage")

RECONNECTION_ATTEMPTS = int(os.getenv("RECONNECTION_ATTEMPTS", "5"))
RECONNECTION_DELAY = float(os.getenv("RECONNECTION_DELAY", "1.0"))

HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "1.0"))
SUSPECT_TIMEOUT = float(os.getenv("SUSPECT_TIMEOUT", "3.0"))
DEAD_TIMEOUT = float(os.getenv("DEAD_TIMEOUT", "6.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
