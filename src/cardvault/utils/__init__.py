"""Utility helpers for cardvault."""
