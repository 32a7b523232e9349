"""Swap transaction orchestration: gate, compose, sign, execute."""
