"""Configuration module for luma-sync."""

from luma_sync.config.settings import Credentials, SyncConfig, load_config

__all__ = ["Credentials", "SyncConfig", "load_config"]
