"""
Tests for the error taxonomy and entry-point error trapping.
"""

import pytest

from nemopy.errors import (DataIntegrityError, ErrorTrap, InfeasibleModelError, NemoError, SchemaError,
                           UnclassifiedError, standard_message)


class TestStandardMessage:
    """Test the user-facing error message"""

    def test_names_class_reason_and_help(self):
        message = standard_message(SchemaError("version 9 found"))
        assert message.startswith("Scenario calculation failed with SchemaError: version 9 found.")
        assert "issue tracker" in message

    def test_foreign_errors_are_unclassified(self):
        assert "UnclassifiedError: boom" in standard_message(RuntimeError("boom"))

    def test_empty_reason_uses_class_name(self):
        assert "ValueError" in standard_message(ValueError())


class TestErrorTrap:
    """Test rewriting of errors leaving an entry point"""

    def test_no_error(self):
        with ErrorTrap("op") as trap:
            value = 1
        assert value == 1
        assert not trap.propagate

    def test_nemo_error_keeps_class(self, caplog):
        with pytest.raises(DataIntegrityError) as excinfo:
            with ErrorTrap("op"):
                raise DataIntegrityError("YearSplit does not sum to 1")
        assert str(excinfo.value).startswith("Scenario calculation failed with DataIntegrityError")
        assert "op" in caplog.text

    def test_infeasible_keeps_model(self):
        model = object()
        with pytest.raises(InfeasibleModelError) as excinfo:
            with ErrorTrap("op"):
                raise InfeasibleModelError("infeasible", model=model)
        assert excinfo.value.model is model

    def test_other_errors_become_unclassified(self):
        with pytest.raises(UnclassifiedError) as excinfo:
            with ErrorTrap("op"):
                raise ZeroDivisionError("division by zero")
        assert isinstance(excinfo.value, NemoError)
        assert "division by zero" in str(excinfo.value)

    def test_propagate_passes_errors_through(self):
        with pytest.raises(ZeroDivisionError):
            with ErrorTrap("op", propagate=True):
                raise ZeroDivisionError("division by zero")

    def test_keyboard_interrupt_is_not_rewritten(self):
        with pytest.raises(KeyboardInterrupt):
            with ErrorTrap("op"):
                raise KeyboardInterrupt
