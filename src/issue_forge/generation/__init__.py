"""Resilient, idempotent generation of issue drafts."""
