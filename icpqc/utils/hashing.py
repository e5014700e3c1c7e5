# icpqc/utils/hashing.py
"""
Config fingerprint used to tag run logs.

Two invocations against the same store config share a hash, so their logs
under run_logs/ can be grouped by the `__cfg-<hash>` part of the file name.
"""

import json
import hashlib
from typing import Any, Mapping, Optional


def config_hash(cfg: Optional[Mapping[str, Any]], length: int = 7) -> str:
    """
    Short SHA-256 of the config, independent of key order.

    Path values (from CLI overrides) are hashed by their string form; a missing
    config hashes like an empty one.
    """
    payload = json.dumps(dict(cfg or {}), sort_keys=True, ensure_ascii=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:length]
