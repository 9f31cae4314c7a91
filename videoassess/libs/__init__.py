"""Shared helpers for videoassess tools."""
