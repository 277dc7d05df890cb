import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from google.api_core import exceptions

from backend.store import FirestoreDocumentStore, InMemoryDocumentStore, StoredDocument

PATH = "artifacts/acme-1/public/data/photos"


def _ts(day):
    return datetime(2025, 1, day, tzinfo=timezone.utc)


class InMemoryDocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.snapshots = []
        self.errors = []

    def _watch(self, path=PATH):
        return self.store.watch(path, self.snapshots.append, self.errors.append)

    def test_watch_delivers_initial_and_ordered_snapshots(self):
        self.store.add(PATH, {"caption": "old", "timestamp": _ts(1)})
        self._watch()
        self.store.add(PATH, {"caption": "new", "timestamp": _ts(2)})

        self.assertEqual(len(self.snapshots), 2)
        self.assertEqual([d.data["caption"] for d in self.snapshots[-1]], ["new", "old"])

    def test_documents_without_timestamp_are_not_listed(self):
        self.store.add(PATH, {"caption": "untimed"})
        self._watch()
        self.assertEqual(self.snapshots, [[]])

    def test_unsubscribe_stops_notifications(self):
        unsubscribe = self._watch()
        unsubscribe()
        self.store.add(PATH, {"caption": "x", "timestamp": _ts(1)})

        self.assertEqual(len(self.snapshots), 1)
        self.assertEqual(self.store.watcher_count(PATH), 0)

    def test_denied_path_reports_error(self):
        self.store.denied_paths.add(PATH)

        self._watch()

        self.assertEqual(self.snapshots, [])
        self.assertIsInstance(self.errors[0], exceptions.PermissionDenied)
        with self.assertRaises(exceptions.PermissionDenied):
            self.store.add(PATH, {"timestamp": _ts(1)})

    def test_update_missing_document_raises_not_found(self):
        with self.assertRaises(exceptions.NotFound):
            self.store.update(PATH, "missing", {"isFeatured": True})

    def test_update_many_is_all_or_nothing(self):
        doc_id = self.store.add(PATH, {"isFeatured": True, "timestamp": _ts(1)})

        with self.assertRaises(exceptions.NotFound):
            self.store.update_many(
                PATH, {doc_id: {"isFeatured": False}, "missing": {"isFeatured": True}}
            )

        self.assertTrue(self.store.get(PATH, doc_id)["isFeatured"])

    def test_exists(self):
        doc_id = self.store.add(PATH, {"timestamp": _ts(1)})

        self.assertTrue(self.store.exists(PATH, doc_id))
        self.assertFalse(self.store.exists(PATH, "missing"))
        self.store.denied_paths.add(PATH)
        with self.assertRaises(exceptions.PermissionDenied):
            self.store.exists(PATH, doc_id)

    def test_find_equal_and_delete(self):
        featured = self.store.add(PATH, {"isFeatured": True, "timestamp": _ts(1)})
        self.store.add(PATH, {"isFeatured": False, "timestamp": _ts(2)})

        found = self.store.find_equal(PATH, "isFeatured", True)
        self.assertEqual([doc.id for doc in found], [featured])

        self.store.delete(PATH, featured)
        self.store.delete(PATH, featured)
        self.assertIsNone(self.store.get(PATH, featured))


class FirestoreDocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self.db = MagicMock()
        self.collection = self.db.collection.return_value
        self.store = FirestoreDocumentStore(self.db)

    def test_add_returns_generated_id(self):
        doc_ref = MagicMock()
        doc_ref.id = "generated"
        self.collection.add.return_value = (None, doc_ref)

        doc_id = self.store.add(PATH, {"caption": "Hi"})

        self.assertEqual(doc_id, "generated")
        self.db.collection.assert_called_with(PATH)
        self.collection.add.assert_called_once_with({"caption": "Hi"})

    def test_exists_reads_the_document_snapshot(self):
        document = self.collection.document.return_value
        document.get.return_value.exists = False

        self.assertFalse(self.store.exists(PATH, "p1"))
        self.collection.document.assert_called_with("p1")
        document.get.assert_called_once_with()

    def test_update_many_uses_one_batch(self):
        batch = self.db.batch.return_value

        self.store.update_many(PATH, {"a": {"isFeatured": False}, "b": {"isFeatured": True}})

        self.assertEqual(batch.update.call_count, 2)
        batch.commit.assert_called_once()

    def test_watch_orders_newest_first_and_maps_documents(self):
        query = self.collection.order_by.return_value
        watch = query.on_snapshot.return_value
        received = []

        unsubscribe = self.store.watch(PATH, received.append, lambda e: None)

        callback = query.on_snapshot.call_args[0][0]
        doc = MagicMock()
        doc.id = "p1"
        doc.to_dict.return_value = {"caption": "Hi"}
        callback([doc], [], None)

        self.assertEqual(received, [[StoredDocument(id="p1", data={"caption": "Hi"})]])
        self.assertEqual(self.collection.order_by.call_args[0][0], "timestamp")
        self.assertEqual(unsubscribe, watch.unsubscribe)

    def test_watch_reports_permission_denied(self):
        query = self.collection.order_by.return_value
        query.limit.return_value.get.side_effect = exceptions.PermissionDenied("denied")
        errors = []

        unsubscribe = self.store.watch(PATH, lambda docs: None, errors.append)
        unsubscribe()

        self.assertIsInstance(errors[0], exceptions.PermissionDenied)
        query.on_snapshot.assert_not_called()


if __name__ == "__main__":
    unittest.main()
