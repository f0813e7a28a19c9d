"""Nephrawn remote monitoring backend."""
