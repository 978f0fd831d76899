"""Staged upload -> analyze -> save orchestration."""
