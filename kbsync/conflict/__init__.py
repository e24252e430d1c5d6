"""Conflict resolution: apply keep_current / use_website / keep_both / merge / dismiss."""
