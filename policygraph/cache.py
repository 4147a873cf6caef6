"""
Config cache module.

This module provides in-memory caching of configuration files
to avoid repeated disk I/O on every request.
"""

import json
import os
from typing import Dict, Any, Optional
from threading import Lock

import yaml

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "config")

SWALLOW = "swallow"
SURFACE = "surface"
FAILURE_ACTIONS = (SWALLOW, SURFACE)


class ConfigCache:
    """Thread-safe configuration cache."""

    def __init__(self, config_dir: str = CONFIG_DIR):
        self.config_dir = config_dir
        self._seed_data: Optional[Dict[str, Any]] = None
        self._sync_policy: Optional[Dict[str, str]] = None
        self._lock = Lock()

    def get_seed_data(self) -> Dict[str, Any]:
        """Get cached seed data, loading from disk if not cached."""
        if self._seed_data is None:
            with self._lock:
                if self._seed_data is None:  # Double-check locking
                    seed_file = os.path.join(self.config_dir, "seed.json")
                    with open(seed_file, 'r') as f:
                        self._seed_data = json.load(f)
        return self._seed_data

    def get_sync_policy(self) -> Dict[str, str]:
        """
        Get the per-mutation policy table: mutation kind -> failure action.

        Raises:
            ValueError: if the file names an action other than swallow/surface
        """
        if self._sync_policy is None:
            with self._lock:
                if self._sync_policy is None:
                    policy_file = os.path.join(self.config_dir, "sync_policy.yaml")
                    with open(policy_file, 'r') as f:
                        config = yaml.safe_load(f) or {}

                    table = {}
                    for kind, entry in (config.get("mutations") or {}).items():
                        action = (entry or {}).get("on_derived_failure", SWALLOW)
                        if action not in FAILURE_ACTIONS:
                            raise ValueError(
                                f"Invalid on_derived_failure for {kind}: {action}"
                            )
                        table[kind] = action
                    self._sync_policy = table
        return self._sync_policy

    def clear_cache(self):
        """Clear all cached data (useful for testing)."""
        with self._lock:
            self._seed_data = None
            self._sync_policy = None


# Global cache instance
config_cache = ConfigCache()
