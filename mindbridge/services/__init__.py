"""MindBridge crisis pipeline services.

- analysis_service: local + remote risk classification, /analyze
- alert_service: deduplicated crisis alerts and their state machine
- notification_service: author support and moderator escalation
- audit_service: append-only, hash-chained analysis log

Every service hashes student identifiers with hash_pii() before logging.
"""
