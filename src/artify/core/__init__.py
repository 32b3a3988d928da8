"""Artify engines: project store, sync, validation, credits, power path."""
