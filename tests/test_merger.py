# -*- coding: utf-8 -*-
"""Reconciler: last-writer-wins merge, tombstones, idempotence, ordering."""

from __future__ import annotations

import itertools
import unittest

from support import TempDatabase, make_record

from ledgerbook.sync.merger import Reconciler, resolve
from ledgerbook.sync.models import RecordKind, SyncRecord, pick_winner, supersedes
from ledgerbook.sync.record_store import RecordStore


def snapshot(store: RecordStore):
    return sorted(
        (r.kind.value, r.id, r.updated_at, r.is_deleted, sorted(r.data.items()))
        for r in store.get_all()
    )


class ConflictRuleTestCase(unittest.TestCase):
    def test_tombstone_dominance_over_equal_or_older_live(self) -> None:
        for local_ts, remote_ts in [(100, 150), (150, 150)]:
            local = make_record("1", local_ts, amount=50)
            remote = make_record("1", remote_ts, is_deleted=True)
            self.assertIs(resolve(local, remote), remote)

    def test_newer_tombstone_wins_over_local_tombstone(self) -> None:
        local = make_record("1", 100, is_deleted=True)
        remote = make_record("1", 120, is_deleted=True)
        self.assertIs(resolve(local, remote), remote)

    def test_newer_live_version_resurrects_only_with_greater_timestamp(self) -> None:
        local = make_record("1", 100, is_deleted=True)
        self.assertIs(resolve(local, make_record("1", 100, amount=1)), local)
        self.assertIs(resolve(local, make_record("1", 90, amount=1)), local)
        newer = make_record("1", 101, amount=1)
        self.assertIs(resolve(local, newer), newer)

    def test_equal_timestamp_keeps_local(self) -> None:
        local = make_record("1", 100, amount=1)
        remote = make_record("1", 100, amount=2)
        self.assertIs(resolve(local, remote), local)

    def test_no_local_accepts_remote(self) -> None:
        remote = make_record("1", 5, is_deleted=True)
        self.assertIs(resolve(None, remote), remote)
        self.assertTrue(supersedes(remote, None))

    def test_pick_winner_is_symmetric(self) -> None:
        pairs = [
            (make_record("1", 100, amount=1), make_record("1", 100, amount=2)),
            (make_record("1", 100), make_record("1", 100, is_deleted=True)),
            (make_record("1", 90), make_record("1", 100)),
        ]
        for a, b in pairs:
            self.assertEqual(pick_winner(a, b).to_dict(), pick_winner(b, a).to_dict())


class ReconcilerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._db = TempDatabase()
        self.store = RecordStore(self._db.path)
        self.reconciler = Reconciler(self.store)

    def tearDown(self) -> None:
        self._db.cleanup()

    def test_remote_tombstone_deletes_older_local_record(self) -> None:
        self.store.upsert(make_record("1", 100, amount=50))

        stats = self.reconciler.merge([make_record("1", 150, is_deleted=True)])

        merged = self.store.get(RecordKind.TRANSACTION, "1")
        self.assertTrue(merged.is_deleted)
        self.assertEqual(merged.updated_at, 150)
        self.assertEqual(stats.deleted, 1)
        self.assertEqual(stats.max_updated_at, 150)

    def test_older_remote_is_ignored_and_local_still_pushed(self) -> None:
        self.store.upsert(make_record("2", 200, amount=10))

        stats = self.reconciler.merge([make_record("2", 150, amount=99)])

        local = self.store.get(RecordKind.TRANSACTION, "2")
        self.assertEqual(local.updated_at, 200)
        self.assertEqual(local.data["amount"], 10)
        self.assertEqual(stats.ignored, 1)
        self.assertEqual(stats.ignored_ids, ["2"])
        self.assertIn("2", [r.id for r in self.reconciler.push_candidates(150)])
        self.assertNotIn("2", [r.id for r in self.reconciler.push_candidates(200)])

    def test_merge_counts_inserts_and_updates(self) -> None:
        self.store.upsert(make_record("a", 10, amount=1))

        stats = self.reconciler.merge([
            make_record("a", 20, amount=2),
            make_record("b", 5, amount=3),
        ])

        self.assertEqual((stats.inserted, stats.updated, stats.deleted), (1, 1, 0))
        self.assertEqual(stats.applied, 2)

    def test_wire_dicts_are_accepted(self) -> None:
        stats = self.reconciler.merge([make_record("w", 7, amount=4).to_dict()])

        self.assertEqual(stats.inserted, 1)
        self.assertEqual(self.store.get(RecordKind.TRANSACTION, "w").data["amount"], 4)

    def test_malformed_records_are_skipped_rest_applied(self) -> None:
        batch = [
            {"kind": "transaction", "id": "bad1", "updated_at": "soon", "data": {}},
            {"kind": "unknown", "id": "bad2", "updated_at": 5, "data": {}},
            {"kind": "transaction", "updated_at": 5},
            "not a record",
            make_record("ok", 10, amount=1).to_dict(),
        ]

        stats = self.reconciler.merge(batch)

        self.assertEqual(stats.skipped, 4)
        self.assertEqual(len(stats.skipped_reasons), 4)
        self.assertTrue(any("bad1" in reason for reason in stats.skipped_reasons))
        self.assertEqual(stats.inserted, 1)
        self.assertIsNotNone(self.store.get(RecordKind.TRANSACTION, "ok"))

    def test_non_boolean_tombstone_flag_is_skipped(self) -> None:
        self.store.upsert(make_record("keep", 10, amount=1))
        wire = dict(make_record("keep", 20, amount=2).to_dict(), is_deleted="false")

        stats = self.reconciler.merge([wire])

        self.assertEqual(stats.skipped, 1)
        stored = self.store.get(RecordKind.TRANSACTION, "keep")
        self.assertEqual((stored.updated_at, stored.is_deleted), (10, False))

    def test_merge_is_idempotent(self) -> None:
        self.store.upsert(make_record("1", 100, amount=1))
        self.store.upsert(make_record("2", 300, amount=2))
        batch = [
            make_record("1", 150, is_deleted=True),
            make_record("2", 250, amount=9),
            make_record("3", 120, amount=3),
            make_record("L9", 50, kind=RecordKind.LEDGER, name="Trip"),
        ]

        self.reconciler.merge(batch)
        once = snapshot(self.store)
        stats = self.reconciler.merge(batch)

        self.assertEqual(snapshot(self.store), once)
        self.assertEqual(stats.applied, 0)
        self.assertEqual(stats.skipped, 0)

    def test_merge_order_does_not_matter(self) -> None:
        batch = [
            make_record("1", 150, is_deleted=True),
            make_record("1", 150, amount=7),
            make_record("1", 140, amount=8),
            make_record("2", 90, amount=1),
            make_record("2", 90, amount=2),
        ]
        seed = [make_record("1", 100, amount=5), make_record("3", 10, amount=0)]

        results = set()
        for order in itertools.permutations(batch):
            db = TempDatabase()
            try:
                store = RecordStore(db.path)
                for record in seed:
                    store.upsert(SyncRecord.from_dict(record.to_dict()))
                Reconciler(store).merge([SyncRecord.from_dict(r.to_dict()) for r in order])
                results.add(repr(snapshot(store)))
            finally:
                db.cleanup()

        self.assertEqual(len(results), 1)

    def test_split_batches_converge_like_one_batch(self) -> None:
        batch = [
            make_record("1", 200, amount=1),
            make_record("1", 300, is_deleted=True),
            make_record("2", 100, amount=2),
        ]
        self.reconciler.merge(batch)
        combined = snapshot(self.store)

        other_db = TempDatabase()
        try:
            other = RecordStore(other_db.path)
            reconciler = Reconciler(other)
            reconciler.merge(batch[1:])
            reconciler.merge(batch[:1])
            self.assertEqual(snapshot(other), combined)
        finally:
            other_db.cleanup()

    def test_full_push_candidates_include_everything(self) -> None:
        self.store.upsert(make_record("1", 10))
        self.store.upsert(make_record("2", 20, is_deleted=True))

        self.assertEqual(len(self.reconciler.push_candidates(100, full=True)), 2)
        self.assertEqual(self.reconciler.push_candidates(100), [])
        self.assertEqual([r.id for r in self.reconciler.push_candidates(10)], ["2"])


if __name__ == "__main__":
    unittest.main()
