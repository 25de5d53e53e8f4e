from inspector_api.models import ChecklistInstanceItem, WorkOrder
from inspector_api.services import checklist_service


class TestEnsureInstance:
    def test_creates_items_in_template_order(self, db, seed):
        instance, created = checklist_service.ensure_instance(db, seed.work_order)

        assert created is True
        assert instance.status == "in_progress"
        names = [item.name for item in checklist_service.ordered_items(db, instance.id)]
        assert names == ["Exterior", "Roof", "Plumbing", "Electrical", "Interior"]

    def test_second_call_returns_same_instance(self, db, seed):
        first, _ = checklist_service.ensure_instance(db, seed.work_order)
        second, created = checklist_service.ensure_instance(db, seed.work_order)

        assert created is False
        assert second.id == first.id
        assert db.query(ChecklistInstanceItem).count() == 5

    def test_repairs_missing_items(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        roof = checklist_service.ordered_items(db, instance.id)[1]
        db.delete(roof)
        db.flush()
        assert len(checklist_service.ordered_items(db, instance.id)) == 4

        checklist_service.ensure_instance(db, seed.work_order)

        names = [item.name for item in checklist_service.ordered_items(db, instance.id)]
        assert names == ["Exterior", "Roof", "Plumbing", "Electrical", "Interior"]


class TestItemNumbers:
    def test_resolve_is_one_based(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        assert checklist_service.resolve_item_number(db, instance.id, 1).name == "Exterior"
        assert checklist_service.resolve_item_number(db, instance.id, 5).name == "Interior"

    def test_out_of_range(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        assert checklist_service.resolve_item_number(db, instance.id, 0) is None
        assert checklist_service.resolve_item_number(db, instance.id, 6) is None
        assert checklist_service.resolve_item_number(db, instance.id, -1) is None

    def test_item_number_roundtrip(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        item = checklist_service.resolve_item_number(db, instance.id, 4)
        assert checklist_service.item_number(db, item) == 4


class TestItemStatus:
    def test_set_status_with_comment(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        item = checklist_service.resolve_item_number(db, instance.id, 1)

        checklist_service.set_item_status(db, item, "issue_found", comment="cracked step")

        assert item.status == "issue_found"
        assert item.comments == "cracked step"
        assert item.completed_at is not None

    def test_status_comment_replaces_notes(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        item = checklist_service.resolve_item_number(db, instance.id, 2)
        checklist_service.append_comment(item, "looks fine")

        checklist_service.set_item_status(db, item, "issue_found", comment="cracked render")

        assert item.comments == "cracked render"

    def test_status_without_comment_keeps_notes(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        item = checklist_service.resolve_item_number(db, instance.id, 2)
        checklist_service.append_comment(item, "looks fine")

        checklist_service.set_item_status(db, item, "completed")

        assert item.comments == "looks fine"

    def test_invalid_status_raises(self, db, seed):
        import pytest

        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        item = checklist_service.resolve_item_number(db, instance.id, 1)
        with pytest.raises(ValueError):
            checklist_service.set_item_status(db, item, "maybe")

    def test_empty_comment_is_ignored(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        item = checklist_service.resolve_item_number(db, instance.id, 1)
        checklist_service.append_comment(item, "   ")
        assert item.comments is None


class TestCompletionGate:
    def _decide_all(self, db, instance_id, status="completed"):
        for item in checklist_service.ordered_items(db, instance_id):
            checklist_service.set_item_status(db, item, status)

    def test_pending_items_block(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        checklist_service.set_item_status(db, checklist_service.resolve_item_number(db, instance.id, 1), "completed")

        ready, pending = checklist_service.can_complete(db, instance.id)

        assert ready is False
        assert [number for number, _ in pending] == [2, 3, 4, 5]
        result = checklist_service.complete_instance(db, instance)
        assert result.ok is False
        assert result.error_code == "pending_items"
        assert instance.status == "in_progress"

    def test_skipped_and_issues_count_as_decided(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        self._decide_all(db, instance.id, "skipped")
        checklist_service.set_item_status(db, checklist_service.resolve_item_number(db, instance.id, 2), "issue_found")

        assert checklist_service.can_complete(db, instance.id) == (True, [])

    def test_completion_is_idempotent(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        self._decide_all(db, instance.id)

        first = checklist_service.complete_instance(db, instance)
        second = checklist_service.complete_instance(db, instance)

        assert first.ok and first.value == (instance, True)
        assert second.ok and second.value == (instance, False)
        work_order = db.get(WorkOrder, seed.work_order.id)
        assert work_order.status == "completed"
        assert instance.completed_at is not None

    def test_progress_counts(self, db, seed):
        instance, _ = checklist_service.ensure_instance(db, seed.work_order)
        checklist_service.set_item_status(db, checklist_service.resolve_item_number(db, instance.id, 3), "skipped")
        assert checklist_service.checklist_progress(db, instance.id) == (1, 5)
