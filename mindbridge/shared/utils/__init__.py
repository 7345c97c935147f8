"""Shared utilities for the MindBridge crisis pipeline."""
from .pii import hash_pii, hash_text_for_audit, configure_pii_salt, privacy_snippet

__all__ = ["hash_pii", "hash_text_for_audit", "configure_pii_salt", "privacy_snippet"]
