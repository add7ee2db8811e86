# -*- coding: utf-8 -*-
"""Sync configuration persistence."""

from __future__ import annotations

import unittest

from support import TempDatabase

from ledgerbook.sync.config import (
    MIN_SYNC_INTERVAL, SyncConfig, clear_sync_config, get_config_value,
    get_sync_config, save_config_value, save_sync_config,
)


class SyncConfigTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._db = TempDatabase()

    def tearDown(self) -> None:
        self._db.cleanup()

    def test_defaults_when_nothing_saved(self) -> None:
        config = get_sync_config(self._db.path)

        self.assertFalse(config.cloud_sync_enabled)
        self.assertFalse(config.is_configured)
        self.assertFalse(config.auto_sync_allowed)
        self.assertEqual(config.last_sync_version, 0)

    def test_save_and_load_round_trip(self) -> None:
        config = SyncConfig(
            cloud_sync_enabled=True,
            sync_interval_seconds=120,
            endpoint_url="https://sync.example",
            auth_token="tok",
            user_id="acct",
            last_sync_version=42,
            last_push_version=40,
        )
        save_sync_config(self._db.path, config)

        loaded = get_sync_config(self._db.path)

        self.assertEqual(loaded, config)
        self.assertTrue(loaded.auto_sync_allowed)
        self.assertEqual(loaded.endpoint_credentials, ("https://sync.example", "tok", "acct"))

    def test_missing_credentials_force_automatic_mode_off(self) -> None:
        config = SyncConfig(cloud_sync_enabled=True, endpoint_url="https://sync.example")
        self.assertFalse(config.auto_sync_allowed)

    def test_interval_has_a_floor(self) -> None:
        self.assertEqual(SyncConfig(sync_interval_seconds=1).sync_interval_seconds, MIN_SYNC_INTERVAL)

    def test_unknown_keys_are_ignored(self) -> None:
        save_config_value(self._db.path, "legacy_option", True)
        save_config_value(self._db.path, "user_id", "acct-9")

        config = get_sync_config(self._db.path)

        self.assertEqual(config.user_id, "acct-9")
        self.assertTrue(get_config_value(self._db.path, "legacy_option"))
        self.assertIsNone(get_config_value(self._db.path, "absent"))

    def test_clear_can_keep_cursors(self) -> None:
        save_sync_config(self._db.path, SyncConfig(auth_token="tok", last_sync_version=7,
                                                   last_push_version=5))

        clear_sync_config(self._db.path, keep_cursors=True)
        config = get_sync_config(self._db.path)

        self.assertEqual(config.auth_token, "")
        self.assertEqual((config.last_sync_version, config.last_push_version), (7, 5))

        clear_sync_config(self._db.path)
        self.assertEqual(get_sync_config(self._db.path).last_sync_version, 0)


if __name__ == "__main__":
    unittest.main()
