import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

# "redis" for shared state across instances, "memory" for a single process
STORE_BACKEND = os.getenv("STORE_BACKEND", "redis")
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", 5))
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", 86400))  # 0 disables expiry

DOMAIN = os.getenv("DOMAIN", "localhost")

# Excludes look-alikes: 0/O, 1/I/L, 5/S, 8/B, G/6, Z
ROOM_CODE_ALPHABET = "23467ACDEFHJKMNPQRTUVWXY"
ROOM_CODE_LENGTH = 4
MAX_NAME_LENGTH = 50
