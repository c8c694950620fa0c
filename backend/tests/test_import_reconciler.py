"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Call-Center CRM - Import tableur (parse → plan → confirm)                   ║
║                                                                              ║
║  1. Détection de la ligne d'entête (et repli sur la première ligne)          ║
║  2. Plan des localités manquantes dédoublonné                                ║
║  3. Confirmation: création séquentielle, re-résolution, écriture par lots    ║
║  4. Lots en échec et annulation                                              ║
╚══════════════════════════════════════════════════════════════════════════════╝
Run: cd backend && pytest tests/test_import_reconciler.py -v
"""

import asyncio

from mongomock_motor import AsyncMongoMockClient

from models.imports import ImportRunState
from services.cancellation import CancellationToken
from services.import_reconciler import (
    ImportReconciler,
    LocationSnapshot,
    find_header_row,
    parse_matrix,
    plan_rows,
)
from services.node_editor import NodeEditor
from services.service_points import ServicePointRepository
from services.taxonomy_store import NodeStore
from services.tree_builder import build_tree


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _reconciler(db, chunk_size=100, writer=None):
    store = NodeStore(db)
    return ImportReconciler(
        store=store,
        editor=NodeEditor(store),
        writer=writer or ServicePointRepository(db, store),
        chunk_size=chunk_size,
    )


async def _seed_sanaa(db):
    editor = NodeEditor(NodeStore(db))
    gov = await editor.add("صنعاء", None, "location")
    dist = await editor.add("الوحدة", gov["id"], "location")
    return gov, dist


def _matrix(rows):
    return [["الاسم", "المحافظة", "المديرية", "الهاتف"]] + rows


class FailingSecondChunkWriter(ServicePointRepository):
    def __init__(self, database, store):
        super().__init__(database, store)
        self.calls = 0

    async def insert_many(self, records):
        self.calls += 1
        if self.calls == 2:
            raise RuntimeError("bulk write rejected")
        return await super().insert_many(records)


class CancelAfterFirstChunkWriter(ServicePointRepository):
    def __init__(self, database, store, token):
        super().__init__(database, store)
        self.token = token

    async def insert_many(self, records):
        count = await super().insert_many(records)
        self.token.cancel("stop")
        return count


class CancelAfterFirstGovernorateEditor(NodeEditor):
    def __init__(self, store, token):
        super().__init__(store)
        self.token = token

    async def add(self, name, parent_id=None, taxonomy_type="classification", is_required=False):
        node = await super().add(name, parent_id, taxonomy_type, is_required)
        if parent_id is None:
            self.token.cancel("stop")
        return node


class ParentVanishesEditor(NodeEditor):
    """Supprime le parent juste avant de créer l'enfant"""

    async def add(self, name, parent_id=None, taxonomy_type="classification", is_required=False):
        if parent_id:
            await self.store.collection(taxonomy_type).delete_one({"id": parent_id})
        return await super().add(name, parent_id, taxonomy_type, is_required)


# ═══════════════════════════════════════════════════════════════
# 1. PHASE 0: PARSE
# ═══════════════════════════════════════════════════════════════

class TestParseMatrix:
    def test_header_detected_below_title_rows(self):
        matrix = [
            ["تقرير نوفمبر", None],
            [None, None],
            ["الوكيل ", " المناطقة", "البنديه"],
            ["وكيل 1", "صنعاء", "الوحدة"],
        ]
        assert find_header_row(matrix) == 2
        rows = parse_matrix(matrix)
        assert rows == [{"الوكيل": "وكيل 1", "المناطقة": "صنعاء", "البنديه": "الوحدة"}]

    def test_fallback_to_first_row(self):
        matrix = [["col_a", "col_b"], [1, 2]]
        assert find_header_row(matrix) == -1
        assert parse_matrix(matrix) == [{"col_a": 1, "col_b": 2}]

    def test_empty_rows_skipped_and_short_rows_padded(self):
        matrix = [["Name", "Governorate", "District"], ["", None, " "], ["A", "Aden"]]
        assert parse_matrix(matrix) == [{"Name": "A", "Governorate": "Aden", "District": None}]

    def test_empty_matrix(self):
        assert parse_matrix([]) == []


# ═══════════════════════════════════════════════════════════════
# 2. PHASE 1: PLAN
# ═══════════════════════════════════════════════════════════════

class TestPlanRows:
    def _snapshot(self):
        return LocationSnapshot(build_tree([
            {"id": "g1", "name": "أمانة العاصمة", "parent_id": None},
            {"id": "d1", "name": "الوحدة", "parent_id": "g1"},
        ]))

    def test_invalid_rows_counted(self):
        rows = [
            {"الاسم": "A", "المحافظة": "أمانة العاصمة", "المديرية": "الوحدة"},
            {"الاسم": "", "المحافظة": "أمانة العاصمة", "المديرية": "الوحدة"},
            {"الاسم": "C", "المحافظة": "أمانة العاصمة"},
        ]
        result = plan_rows(rows, self._snapshot())
        assert result.total == 3
        assert result.valid == 1
        assert result.invalid == 2
        assert result.missing_plan == {}

    def test_orthographic_variants_resolve(self):
        rows = [{"الاسم": "A", "المحافظة": "امانه العاصمه", "المديرية": "الوحده"}]
        assert plan_rows(rows, self._snapshot()).missing_plan == {}

    def test_missing_entries_deduplicated(self):
        rows = [
            {"الاسم": "A", "المحافظة": "الحديدة", "المديرية": "الميناء"},
            {"الاسم": "B", "المحافظة": "الحديده", "المديرية": "الميناء"},
            {"الاسم": "C", "المحافظة": "أمانة العاصمة", "المديرية": "شعوب"},
            {"الاسم": "D", "المحافظة": "أمانة العاصمة", "المديرية": "شعوب"},
        ]
        plan = plan_rows(rows, self._snapshot()).missing_plan
        assert set(plan) == {"الحديده", "امانه العاصمه"}

        hodeidah = plan["الحديده"]
        assert hodeidah.governorate_missing is True
        assert hodeidah.original_name == "الحديدة"
        assert hodeidah.missing_districts == {"الميناء": "الميناء"}

        capital = plan["امانه العاصمه"]
        assert capital.governorate_missing is False
        assert list(capital.missing_districts.values()) == ["شعوب"]


# ═══════════════════════════════════════════════════════════════
# 3. PHASE 2: CONFIRM
# ═══════════════════════════════════════════════════════════════

class TestConfirm:
    def test_dedup_creates_single_district(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        gov, existing = _db_op(_seed_sanaa(db))
        reconciler = _reconciler(db)

        parsed = _db_op(reconciler.run_parse(_matrix([
            ["A", "صنعاء", "الوحدة", "773000001"],
            ["B", "صنعاء", "جديدة", 773000002.0],
        ])))
        assert parsed.valid == 2
        assert len(parsed.missing_plan) == 1

        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows))

        assert result.created_governorates == 0
        assert result.created_districts == 1
        assert result.inserted_count == 2
        assert result.status == ImportRunState.DONE
        assert result.outcome == "imported_with_new_taxonomy"

        new_district = _db_op(db.locations.find_one({"name": "جديدة"}, {"_id": 0}))
        assert new_district["parent_id"] == gov["id"]

        points = _db_op(db.service_points.find({}, {"_id": 0}).sort("name", 1).to_list(10))
        assert [p["district_id"] for p in points] == [existing["id"], new_district["id"]]
        assert all(p["governorate_id"] == gov["id"] for p in points)
        assert points[1]["phone"] == "773000002"

    def test_creates_missing_governorate_then_districts(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        reconciler = _reconciler(db)
        parsed = _db_op(reconciler.run_parse(_matrix([
            ["A", "تعز", "المظفر", ""],
            ["B", "تعز", "القاهرة", ""],
            ["C", "تعز", "المظفر", ""],
        ])))

        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows))

        assert result.created_governorates == 1
        assert result.created_districts == 2
        assert result.inserted_count == 3
        assert _db_op(db.locations.count_documents({"parent_id": None})) == 1

    def test_governorate_created_between_parse_and_confirm_is_reused(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        reconciler = _reconciler(db)
        parsed = _db_op(reconciler.run_parse(_matrix([
            ["A", "تعز", "المظفر", ""],
            ["B", "تعز", "المظفر", ""],
        ])))
        assert parsed.missing_plan["تعز"].governorate_missing is True

        existing = _db_op(NodeEditor(NodeStore(db)).add("تعز", None, "location"))
        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows))

        assert result.created_governorates == 0
        assert result.created_districts == 1
        assert result.inserted_count == 2
        assert _db_op(db.locations.count_documents({"parent_id": None})) == 1
        points = _db_op(db.service_points.find({}, {"_id": 0}).to_list(10))
        assert {p["governorate_id"] for p in points} == {existing["id"]}

    def test_confirm_without_plan(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        _db_op(_seed_sanaa(db))
        reconciler = _reconciler(db)
        parsed = _db_op(reconciler.run_parse(_matrix([["A", "صنعاء", "الوحدة", ""]])))
        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows))
        assert result.outcome == "imported"
        assert result.created_districts == 0

    def test_nothing_to_import(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        result = _db_op(_reconciler(db).confirm({}, []))
        assert result.outcome == "nothing_imported"
        assert result.inserted_count == 0

    def test_rows_stamped_with_run_id(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        _db_op(_seed_sanaa(db))
        reconciler = _reconciler(db)
        parsed = _db_op(reconciler.run_parse(_matrix([["A", "صنعاء", "الوحدة", ""]])))
        _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows, run_id="run-1"))
        point = _db_op(db.service_points.find_one({}, {"_id": 0}))
        assert point["import_run_id"] == "run-1"


# ═══════════════════════════════════════════════════════════════
# 4. PARTIAL FAILURE / CANCELLATION
# ═══════════════════════════════════════════════════════════════

class TestConfirmFailures:
    def _rows(self, count):
        return _matrix([[f"وكيل {i:03d}", "صنعاء", "الوحدة", ""] for i in range(count)])

    def test_failed_chunk_does_not_stop_others(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        _db_op(_seed_sanaa(db))
        store = NodeStore(db)
        reconciler = _reconciler(db, chunk_size=100, writer=FailingSecondChunkWriter(db, store))

        parsed = _db_op(reconciler.run_parse(self._rows(250)))
        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows))

        assert result.inserted_count == 150
        assert result.failed_count == 100
        assert result.failed_chunks == 1
        assert result.outcome == "imported_with_partial_failures"
        assert _db_op(db.service_points.count_documents({})) == 150

    def test_cancel_before_start(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        reconciler = _reconciler(db)
        parsed = _db_op(reconciler.run_parse(_matrix([["A", "تعز", "المظفر", ""]])))

        token = CancellationToken()
        token.cancel()
        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows, token=token))

        assert result.status == ImportRunState.CANCELLED
        assert _db_op(db.locations.count_documents({})) == 0
        assert _db_op(db.service_points.count_documents({})) == 0

    def test_cancel_between_chunks_keeps_written_chunks(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        _db_op(_seed_sanaa(db))
        store = NodeStore(db)
        token = CancellationToken()
        reconciler = _reconciler(db, chunk_size=10, writer=CancelAfterFirstChunkWriter(db, store, token))

        parsed = _db_op(reconciler.run_parse(self._rows(25)))
        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows, token=token))

        assert result.status == ImportRunState.CANCELLED
        assert result.inserted_count == 10
        assert _db_op(db.service_points.count_documents({})) == 10

    def test_cancel_between_governorates_keeps_created_nodes(self):
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        store = NodeStore(db)
        token = CancellationToken()
        reconciler = ImportReconciler(
            store=store,
            editor=CancelAfterFirstGovernorateEditor(store, token),
            writer=ServicePointRepository(db, store),
        )
        parsed = _db_op(reconciler.run_parse(_matrix([
            ["A", "تعز", "المظفر", ""],
            ["B", "إب", "الظهار", ""],
        ])))
        assert len(parsed.missing_plan) == 2

        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows, token=token))

        assert result.status == ImportRunState.CANCELLED
        assert result.created_governorates == 1
        locations = _db_op(db.locations.find({}, {"_id": 0}).to_list(10))
        assert [n["name"] for n in locations] == ["تعز"]
        assert _db_op(db.service_points.count_documents({})) == 0

    def test_governorate_deleted_during_confirm(self):
        """Le gouvernorat disparaît avant la création de son district: la ligne est écartée"""
        db = AsyncMongoMockClient()["callcenter_crm_test"]
        store = NodeStore(db)
        reconciler = ImportReconciler(
            store=store,
            editor=ParentVanishesEditor(store),
            writer=ServicePointRepository(db, store),
        )
        parsed = _db_op(reconciler.run_parse(_matrix([["A", "تعز", "المظفر", ""]])))

        result = _db_op(reconciler.confirm(parsed.missing_plan, parsed.rows))

        assert result.status == ImportRunState.DONE
        assert result.created_governorates == 1
        assert result.created_districts == 0
        assert result.dropped_rows == 1
        assert result.outcome == "nothing_imported"
        assert _db_op(db.service_points.count_documents({})) == 0
