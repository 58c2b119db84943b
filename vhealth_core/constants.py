# vhealth_core/constants.py

# Key material
DEFAULT_KEYS_DIR = "keys"
PRIVATE_KEY_FILE = "private_key.pem"
PUBLIC_KEY_FILE = "public_key.pem"
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# Hybrid cipher: AES-256 key, 96-bit nonce || 32-bit block counter (GCM)
SYMMETRIC_KEY_BYTES = 32
NONCE_BYTES = 12
HYBRID_ALGORITHM = "RSA-2048-OAEP+AES-256-GCM"

# Signatures
SIGNATURE_ALGORITHM = "RSA-PSS-SHA256"
DEFAULT_AUTHORITY = "V-Health Sistema de Medicina Natural"
SIGNED_DESCRIPTION_VERSION = "1.0"
DIGEST_PREFIX_LEN = 32

# Ephemeral cache
CACHE_TTL_SECONDS = 60 * 60
CACHE_SWEEP_INTERVAL_SECONDS = 30 * 60
CACHE_OPERATION_LOG_LIMIT = 1000

# Storage
DEFAULT_STORAGE_PROVIDER = "sqlite"
DEFAULT_DB_PATH = "db/vhealth_archive.db"
