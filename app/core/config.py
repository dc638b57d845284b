# app/core/config.py
import os
from dotenv import load_dotenv

load_dotenv()

# ---------------- MongoDB ----------------
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "fleet_scheduling")

# ---------------- Collections ----------------
COLLECTION_VEHICLES = "vehicles"
COLLECTION_USERS = "users"
COLLECTION_DEPLOYMENTS = "deployments"
COLLECTION_MAINTENANCE = "maintenance_windows"
COLLECTION_HISTORY = "deployment_history"
COLLECTION_SEQUENCES = "id_sequences"
COLLECTION_LOCKS = "resource_locks"

# ---------------- Identifier generation ----------------
ID_MAX_ATTEMPTS = int(os.getenv("ID_MAX_ATTEMPTS", "5"))
ID_SEQUENCE_WIDTH = 3

# ---------------- Resource locks ----------------
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))
LOCK_LEASE_SECONDS = float(os.getenv("LOCK_LEASE_SECONDS", "30"))
LOCK_POLL_INTERVAL_SECONDS = float(os.getenv("LOCK_POLL_INTERVAL_SECONDS", "0.05"))

# ---------------- Logging ----------------
LOG_FILE = os.getenv("LOG_FILE", "fleet_scheduling_fastapi.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
