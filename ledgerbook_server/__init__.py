# -*- coding: utf-8 -*-
"""Ledgerbook sync server: remote record store for multi-device sync."""
