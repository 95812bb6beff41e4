import os
from dotenv import load_dotenv

load_dotenv()

BRIOCAST_API_BASE = os.getenv("BRIOCAST_API_BASE", "https://api.briolabs.io")
# Revenue sharing terms differ per deployment; both must be set explicitly.
PLATFORM_FEE_RATE = os.getenv("PLATFORM_FEE_RATE", "")
MINIMUM_PAYOUT_NTD = os.getenv("MINIMUM_PAYOUT_NTD", "")
UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", "15"))
UPSTREAM_DEADLINE = float(os.getenv("UPSTREAM_DEADLINE", "45"))
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "/tmp/briocast_reports")
