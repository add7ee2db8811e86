# -*- coding: utf-8 -*-
"""Versioned record store: upsert rules, scans, timestamps, compaction."""

from __future__ import annotations

import unittest

from support import TempDatabase, make_record

from ledgerbook.sync.models import RecordKind
from ledgerbook.sync.record_store import RecordStore, ValidationError


class RecordStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._db = TempDatabase()
        self.store = RecordStore(self._db.path)

    def tearDown(self) -> None:
        self._db.cleanup()

    def test_upsert_inserts_and_reads_back(self) -> None:
        self.assertTrue(self.store.upsert(make_record("t1", 100, amount=50.0, note="lunch")))

        stored = self.store.get(RecordKind.TRANSACTION, "t1")
        self.assertIsNotNone(stored)
        self.assertEqual(stored.updated_at, 100)
        self.assertFalse(stored.is_deleted)
        self.assertEqual(stored.ledger_id, "L1")
        self.assertEqual(stored.data["amount"], 50.0)
        self.assertEqual(stored.data["note"], "lunch")

    def test_reapplying_same_version_is_a_no_op(self) -> None:
        record = make_record("t1", 100, amount=50.0)
        self.assertTrue(self.store.upsert(record))
        self.assertFalse(self.store.upsert(record))
        self.assertEqual(self.store.get(RecordKind.TRANSACTION, "t1").updated_at, 100)

    def test_older_version_raises_validation_error(self) -> None:
        self.store.upsert(make_record("t1", 200, amount=1.0))

        with self.assertRaises(ValidationError) as ctx:
            self.store.upsert(make_record("t1", 150, amount=2.0))

        self.assertEqual(ctx.exception.record_id, "t1")
        self.assertEqual(ctx.exception.kind, "transaction")
        self.assertEqual(self.store.get(RecordKind.TRANSACTION, "t1").data["amount"], 1.0)

    def test_equal_timestamp_tombstone_replaces_live_record(self) -> None:
        self.store.upsert(make_record("t1", 100, amount=1.0))
        self.assertTrue(self.store.upsert(make_record("t1", 100, is_deleted=True)))
        self.assertTrue(self.store.get(RecordKind.TRANSACTION, "t1").is_deleted)

        # a live record at the same timestamp cannot undo it
        with self.assertRaises(ValidationError):
            self.store.upsert(make_record("t1", 100, amount=1.0))

    def test_changed_since_includes_tombstones_in_order(self) -> None:
        self.store.upsert(make_record("L1", 300, kind=RecordKind.LEDGER, name="Home"))
        self.store.upsert(make_record("t1", 100))
        self.store.upsert(make_record("t2", 200, is_deleted=True))
        self.store.upsert(make_record("c1", 250, kind=RecordKind.CATEGORY, name="Food"))

        changed = self.store.get_changed_since(100)

        self.assertEqual([r.id for r in changed], ["t2", "c1", "L1"])
        self.assertTrue(changed[0].is_deleted)
        self.assertEqual(self.store.count_changed_since(100), 3)
        self.assertEqual(len(self.store.get_all()), 4)

    def test_json_and_bool_columns_round_trip(self) -> None:
        self.store.upsert(make_record("g1", 10, kind=RecordKind.GROUP,
                                      name="Daily", category_ids=["c1", "c2"], sort_order=1))
        self.store.upsert(make_record("c1", 11, kind=RecordKind.CATEGORY,
                                      name="Food", is_custom=True))

        group = self.store.get(RecordKind.GROUP, "g1")
        category = self.store.get(RecordKind.CATEGORY, "c1")
        self.assertEqual(group.data["category_ids"], ["c1", "c2"])
        self.assertIs(category.data["is_custom"], True)

    def test_unknown_payload_keys_are_not_stored(self) -> None:
        self.store.upsert(make_record("t1", 10, amount=5.0, color="red"))
        self.assertNotIn("color", self.store.get(RecordKind.TRANSACTION, "t1").data)

    def test_next_timestamp_is_above_every_stored_version(self) -> None:
        far_future = 10 ** 15
        self.store.upsert(make_record("t1", far_future))

        self.assertEqual(self.store.next_timestamp(), far_future + 1)

        record = self.store.write_local(make_record("t2", 0, amount=3.0))
        self.assertEqual(record.updated_at, far_future + 1)
        self.assertGreater(self.store.next_timestamp(), record.updated_at)

    def test_write_local_bumps_timestamp_of_existing_record(self) -> None:
        first = self.store.write_local(make_record("t1", 0, amount=1.0))
        first_ts = first.updated_at

        first.data["amount"] = 2.0
        second = self.store.write_local(first)

        self.assertGreater(second.updated_at, first_ts)
        self.assertEqual(self.store.get(RecordKind.TRANSACTION, "t1").data["amount"], 2.0)

    def test_list_live_filters_deleted_and_ledger(self) -> None:
        self.store.upsert(make_record("t1", 10, ledger_id="L1"))
        self.store.upsert(make_record("t2", 11, ledger_id="L2"))
        self.store.upsert(make_record("t3", 12, ledger_id="L1", is_deleted=True))

        live = self.store.list_live(RecordKind.TRANSACTION, "L1")
        self.assertEqual([r.id for r in live], ["t1"])
        self.assertEqual(len(self.store.list_live(RecordKind.TRANSACTION)), 2)

    def test_compact_removes_only_old_pushed_tombstones(self) -> None:
        self.store.upsert(make_record("t1", 100, is_deleted=True))
        self.store.upsert(make_record("t2", 300, is_deleted=True))
        self.store.upsert(make_record("t3", 50))

        removed = self.store.compact_tombstones(watermark=200, older_than=1000)

        self.assertEqual(removed, 1)
        self.assertIsNone(self.store.get(RecordKind.TRANSACTION, "t1"))
        self.assertIsNotNone(self.store.get(RecordKind.TRANSACTION, "t2"))
        self.assertIsNotNone(self.store.get(RecordKind.TRANSACTION, "t3"))


if __name__ == "__main__":
    unittest.main()
