from inspector_api.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("test value")
        assert result.ok is True
        assert result.value == "test value"
        assert result.error is None

    def test_success_with_tuple_value(self):
        result = Result.success(("instance", True))
        assert result.value == ("instance", True)


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Checklist has pending items", "pending_items")
        assert result.ok is False
        assert result.error == "Checklist has pending items"
        assert result.error_code == "pending_items"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("Error message").error_code == "unknown"

    def test_failure_can_carry_value(self):
        result = Result.failure("Checklist has pending items", "pending_items", value=[(2, "Roof")])
        assert result.value == [(2, "Roof")]


class TestResultFailedWith:
    def test_matches_failure_code(self):
        assert Result.failure("blocked", "pending_items").failed_with("pending_items") is True

    def test_other_code_or_success(self):
        assert Result.failure("blocked", "foreign_media").failed_with("pending_items") is False
        assert Result.success(1).failed_with("pending_items") is False
