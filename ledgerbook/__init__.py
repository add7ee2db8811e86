# -*- coding: utf-8 -*-
"""Ledgerbook: personal finance ledger with multi-device sync."""

__version__ = "1.0.0"
