"""Data models for NotePocket."""
