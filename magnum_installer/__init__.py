"""Magnum Arch installer (Python-first, state-driven).

Two stages:
- outer stage on the live medium: partition, encrypt, format, pacstrap
- second stage inside the new root: configure, swap, UKI, Secure Boot, boot entry

The outer stage hands a frozen parameter record to the second stage by
rendering it into a generated program; nothing is re-derived afterwards.
"""

__all__ = []
