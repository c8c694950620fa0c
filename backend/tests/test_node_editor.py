"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - NodeStore / NodeEditor                                    ║
║                                                                              ║
║  1. Type inconnu rejeté AVANT tout accès base                                ║
║  2. Ajout racine / enfant, sort_order en fin de groupe                       ║
║  3. Mise à jour partielle, NodeNotFound                                      ║
║  4. Suppression en cascade complète et partielle                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
Run: cd backend && pytest tests/test_node_editor.py -v
"""

import asyncio

import pytest
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import PyMongoError

from services.node_editor import NodeEditor
from services.taxonomy_errors import (
    CascadeDeleteFailure,
    NodeNotFound,
    PersistenceError,
    UnknownTaxonomyType,
)
from services.taxonomy_store import NodeStore


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _fresh_db():
    return AsyncMongoMockClient()["callcenter_crm_test"]


class FailingDeleteStore(NodeStore):
    """Échoue sur la suppression des ids listés"""

    def __init__(self, database, failing_ids):
        super().__init__(database)
        self.failing_ids = set(failing_ids)

    async def delete(self, taxonomy_type, node_id):
        if node_id in self.failing_ids:
            raise PersistenceError(f"write refused for {node_id}")
        return await super().delete(taxonomy_type, node_id)


class UnreachableStore(NodeStore):
    """Toute opération base fait échouer le test"""

    def collection(self, taxonomy_type):
        raise AssertionError("database must not be touched")


async def _seed_location(editor):
    gov = await editor.add("صنعاء", None, "location")
    d1 = await editor.add("الوحدة", gov["id"], "location")
    d2 = await editor.add("السبعين", gov["id"], "location")
    sub = await editor.add("حي الجامعة", d1["id"], "location")
    other = await editor.add("عدن", None, "location")
    return gov, d1, d2, sub, other


# ═══════════════════════════════════════════════════════════════
# 1. TYPE VALIDATION
# ═══════════════════════════════════════════════════════════════

class TestUnknownType:
    def test_add_rejected_before_io(self):
        editor = NodeEditor(UnreachableStore(_fresh_db()))
        with pytest.raises(UnknownTaxonomyType):
            _db_op(editor.add("x", None, "regions"))

    def test_update_rejected_before_io(self):
        editor = NodeEditor(UnreachableStore(_fresh_db()))
        with pytest.raises(UnknownTaxonomyType):
            _db_op(editor.update("some-id", "x", "regions"))

    def test_delete_rejected_before_io(self):
        editor = NodeEditor(UnreachableStore(_fresh_db()))
        with pytest.raises(UnknownTaxonomyType):
            _db_op(editor.delete("some-id", "regions"))


# ═══════════════════════════════════════════════════════════════
# 2. ADD
# ═══════════════════════════════════════════════════════════════

class TestAdd:
    def test_add_root_and_child(self):
        db = _fresh_db()
        editor = NodeEditor(NodeStore(db))
        root = _db_op(editor.add("  صنعاء ", None, "location"))
        child = _db_op(editor.add("الوحدة", root["id"], "location"))

        assert root["name"] == "صنعاء"
        assert root["parent_id"] is None
        assert child["parent_id"] == root["id"]
        assert child["sort_order"] == 0
        stored = _db_op(db.locations.find_one({"id": child["id"]}, {"_id": 0}))
        assert stored["name"] == "الوحدة"

    def test_sort_order_appends(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        a = _db_op(editor.add("A", None, "classification"))
        b = _db_op(editor.add("B", None, "classification"))
        c = _db_op(editor.add("C", None, "classification"))
        assert [a["sort_order"], b["sort_order"], c["sort_order"]] == [0, 1, 2]

    def test_sort_order_after_sibling_deleted(self):
        """Après suppression du premier frère, le suivant reste en dernière position"""
        editor = NodeEditor(NodeStore(_fresh_db()))
        a = _db_op(editor.add("A", None, "classification"))
        _db_op(editor.add("B", None, "classification"))
        c = _db_op(editor.add("C", None, "classification"))
        _db_op(editor.delete(a["id"], "classification"))

        d = _db_op(editor.add("D", None, "classification"))
        assert d["sort_order"] == 3
        assert d["sort_order"] > c["sort_order"]

    def test_missing_parent(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        with pytest.raises(NodeNotFound) as exc:
            _db_op(editor.add("child", "ghost", "classification"))
        assert exc.value.node_id == "ghost"

    def test_parent_from_other_type_rejected(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        location = _db_op(editor.add("صنعاء", None, "location"))
        with pytest.raises(NodeNotFound):
            _db_op(editor.add("child", location["id"], "classification"))

    def test_root_only_type_ignores_parent(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        node = _db_op(editor.add("اتصال", "anything", "action"))
        assert node["parent_id"] is None

    def test_blank_name(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        with pytest.raises(ValueError):
            _db_op(editor.add("   ", None, "procedure"))

    def test_audit_event_written(self):
        db = _fresh_db()
        editor = NodeEditor(NodeStore(db), user="agent@callcenter.ye")
        node = _db_op(editor.add("شكوى", None, "classification"))
        event = _db_op(db.event_log.find_one({"entity_id": node["id"]}, {"_id": 0}))
        assert event["action"] == "add_node"
        assert event["user"] == "agent@callcenter.ye"

    def test_audit_failure_does_not_abort_add(self, monkeypatch):
        async def unreachable_log(**kwargs):
            raise PyMongoError("event_log unreachable")

        monkeypatch.setattr("services.node_editor.log_event", unreachable_log)
        db = _fresh_db()
        node = _db_op(NodeEditor(NodeStore(db)).add("صنعاء", None, "location"))

        assert _db_op(db.locations.find_one({"id": node["id"]}, {"_id": 0}))["name"] == "صنعاء"
        assert _db_op(db.event_log.count_documents({})) == 0


# ═══════════════════════════════════════════════════════════════
# 3. UPDATE
# ═══════════════════════════════════════════════════════════════

class TestUpdate:
    def test_partial_update(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        node = _db_op(editor.add("قديم", None, "classification"))
        updated = _db_op(editor.update(node["id"], None, "classification", is_required=True))
        assert updated["name"] == "قديم"
        assert updated["is_required"] is True

        renamed = _db_op(editor.update(node["id"], "جديد", "classification"))
        assert renamed["name"] == "جديد"
        assert renamed["is_required"] is True

    def test_update_missing_node(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        with pytest.raises(NodeNotFound):
            _db_op(editor.update("ghost", "x", "classification"))

    def test_update_without_fields_missing_node(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        with pytest.raises(NodeNotFound):
            _db_op(editor.update("ghost", None, "classification"))


# ═══════════════════════════════════════════════════════════════
# 4. CASCADE DELETE
# ═══════════════════════════════════════════════════════════════

class TestCascadeDelete:
    def test_deletes_whole_subtree(self):
        db = _fresh_db()
        editor = NodeEditor(NodeStore(db))
        gov, d1, d2, sub, other = _db_op(_seed_location(editor))

        result = _db_op(editor.delete(gov["id"], "location"))

        assert result.ok
        assert set(result.deleted_ids) == {gov["id"], d1["id"], d2["id"], sub["id"]}
        # Enfants supprimés avant leur parent
        assert result.deleted_ids.index(sub["id"]) < result.deleted_ids.index(d1["id"])
        assert result.deleted_ids[-1] == gov["id"]

        remaining = _db_op(db.locations.find({}, {"_id": 0}).to_list(100))
        assert [n["id"] for n in remaining] == [other["id"]]

    def test_leaf_delete(self):
        db = _fresh_db()
        editor = NodeEditor(NodeStore(db))
        gov, d1, d2, sub, other = _db_op(_seed_location(editor))
        result = _db_op(editor.delete(d2["id"], "location"))
        assert result.deleted_ids == [d2["id"]]
        assert _db_op(db.locations.count_documents({})) == 4

    def test_delete_missing(self):
        editor = NodeEditor(NodeStore(_fresh_db()))
        with pytest.raises(NodeNotFound):
            _db_op(editor.delete("ghost", "location"))

    def test_partial_failure_reported(self):
        db = _fresh_db()
        gov, d1, d2, sub, other = _db_op(_seed_location(NodeEditor(NodeStore(db))))

        editor = NodeEditor(FailingDeleteStore(db, [d1["id"]]))
        with pytest.raises(CascadeDeleteFailure) as exc:
            _db_op(editor.delete(gov["id"], "location"))

        result = exc.value.result
        assert not result.ok
        assert result.failed_ids == [d1["id"]]
        # Les branches soeurs et le reste continuent
        assert sub["id"] in result.deleted_ids
        assert d2["id"] in result.deleted_ids
        assert gov["id"] in result.deleted_ids

        remaining = {n["id"] for n in _db_op(db.locations.find({}, {"_id": 0}).to_list(100))}
        assert remaining == {d1["id"], other["id"]}

    def test_root_only_type_deletes_single_node(self):
        db = _fresh_db()
        editor = NodeEditor(NodeStore(db))
        a = _db_op(editor.add("A", None, "account_type"))
        _db_op(editor.add("B", None, "account_type"))
        result = _db_op(editor.delete(a["id"], "account_type"))
        assert result.deleted_ids == [a["id"]]
        assert _db_op(db.account_types.count_documents({})) == 1
