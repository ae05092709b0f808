from __future__ import annotations
import os

CACHE_DIR = os.environ.get("RELAYCI_CACHE_DIR", ".relayci/cache")
CACHE_KEEP = int(os.environ.get("RELAYCI_CACHE_KEEP", "3"))
MAX_WORKERS = int(os.environ["RELAYCI_WORKERS"]) if os.environ.get("RELAYCI_WORKERS") else None
# chars of step output kept for failure reports
OUTPUT_TAIL = int(os.environ.get("RELAYCI_OUTPUT_TAIL", "4000"))
