"""Tests for gridcalc.calc dependency graph and evaluation ordering."""

from __future__ import annotations

from gridcalc import Workbook
from gridcalc.calc._graph import DependencyGraph


class TestAddFormula:
    def test_simple_dependency(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!B1", "=Sheet1!A1+1", "Sheet1")
        assert "Sheet1!A1" in g.dependencies["Sheet1!B1"]
        assert "Sheet1!B1" in g.dependents["Sheet1!A1"]

    def test_unqualified_reference_uses_current_sheet(self) -> None:
        g = DependencyGraph()
        g.add_formula("Data!B1", "A1*2", "Data")
        assert g.dependencies["Data!B1"] == {"Data!A1"}

    def test_range_dependency(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!A4", "=SUM(A1:A3)", "Sheet1")
        assert g.dependencies["Sheet1!A4"] == {"Sheet1!A1", "Sheet1!A2", "Sheet1!A3"}

    def test_cross_sheet_dependency(self) -> None:
        g = DependencyGraph()
        g.add_formula("Summary!B1", "=Data!A1+'My Data'!A2", "Summary")
        deps = g.dependencies["Summary!B1"]
        assert "Data!A1" in deps
        assert "My Data!A2" in deps

    def test_absolute_markers_are_canonicalized(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!C1", "=$A$1+B$2", "Sheet1")
        assert g.dependencies["Sheet1!C1"] == {"Sheet1!A1", "Sheet1!B2"}

    def test_unparseable_formula_has_no_dependencies(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!A1", "=SUM(", "Sheet1")
        assert g.dependencies["Sheet1!A1"] == set()
        assert g.formulas["Sheet1!A1"] == "=SUM("


class TestEvaluationOrder:
    def test_empty(self) -> None:
        g = DependencyGraph()
        assert g.partition() == ([], set())

    def test_linear_chain(self) -> None:
        """A1 -> B1 -> C1 (B1=A1+1, C1=B1*2)"""
        g = DependencyGraph()
        g.add_formula("Sheet1!C1", "=Sheet1!B1*2", "Sheet1")
        g.add_formula("Sheet1!B1", "=Sheet1!A1+1", "Sheet1")
        assert g.partition() == (["Sheet1!B1", "Sheet1!C1"], set())

    def test_diamond(self) -> None:
        """A1 feeds B1 and C1, both feed D1."""
        g = DependencyGraph()
        g.add_formula("Sheet1!D1", "=Sheet1!B1+Sheet1!C1", "Sheet1")
        g.add_formula("Sheet1!B1", "=Sheet1!A1+1", "Sheet1")
        g.add_formula("Sheet1!C1", "=Sheet1!A1*2", "Sheet1")
        order, _ = g.partition()
        assert order.index("Sheet1!B1") < order.index("Sheet1!D1")
        assert order.index("Sheet1!C1") < order.index("Sheet1!D1")

    def test_order_is_deterministic(self) -> None:
        g = DependencyGraph()
        for label in ("C1", "A1", "B1"):
            g.add_formula(f"Sheet1!{label}", "=1", "Sheet1")
        assert g.partition()[0] == ["Sheet1!A1", "Sheet1!B1", "Sheet1!C1"]

    def test_circular_cells_are_left_out(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!A1", "=Sheet1!B1+1", "Sheet1")
        g.add_formula("Sheet1!B1", "=Sheet1!A1+1", "Sheet1")
        assert g.partition() == ([], {"Sheet1!A1", "Sheet1!B1"})

    def test_self_reference(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!A1", "=A1+1", "Sheet1")
        order, cyclic = g.partition()
        assert order == []
        assert cyclic == {"Sheet1!A1"}


class TestPartition:
    def test_downstream_of_cycle_is_cyclic(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!A1", "=B1", "Sheet1")
        g.add_formula("Sheet1!B1", "=A1", "Sheet1")
        g.add_formula("Sheet1!C1", "=A1+1", "Sheet1")
        g.add_formula("Sheet1!D1", "=5", "Sheet1")
        order, cyclic = g.partition()
        assert order == ["Sheet1!D1"]
        assert cyclic == {"Sheet1!A1", "Sheet1!B1", "Sheet1!C1"}


class TestAffectedCells:
    def test_transitive(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!B1", "=A1+1", "Sheet1")
        g.add_formula("Sheet1!C1", "=B1*2", "Sheet1")
        g.add_formula("Sheet1!D1", "=Z9", "Sheet1")
        assert g.affected_cells({"Sheet1!A1"}) == ["Sheet1!B1", "Sheet1!C1"]

    def test_unrelated_change(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!B1", "=A1+1", "Sheet1")
        assert g.affected_cells({"Sheet1!Q7"}) == []

    def test_changed_formula_cell_included(self) -> None:
        g = DependencyGraph()
        g.add_formula("Sheet1!B1", "=A1+1", "Sheet1")
        g.add_formula("Sheet1!C1", "=B1*2", "Sheet1")
        assert g.affected_cells({"Sheet1!B1"}) == ["Sheet1!B1", "Sheet1!C1"]


class TestFromWorkbook:
    def test_scans_every_sheet(self) -> None:
        wb = Workbook(["Data", "Summary"])
        wb["Data"]["A1"] = 10
        wb["Data"]["A2"] = "=A1*2"
        wb["Summary"]["A1"] = "=SUM(Data!A1:A2)"
        g = DependencyGraph.from_workbook(wb)
        assert set(g.formulas) == {"Data!A2", "Summary!A1"}
        assert g.partition()[0] == ["Data!A2", "Summary!A1"]

    def test_ranges_clipped_to_used_range(self) -> None:
        wb = Workbook(["Data", "Summary"])
        for row in range(1, 4):
            wb["Data"][f"A{row}"] = row
            wb["Data"][f"B{row}"] = f"=A{row}*2"
        wb["Summary"]["A1"] = "=SUM(Data!A1:XFD1048576)"
        g = DependencyGraph.from_workbook(wb)
        assert len(g.dependencies["Summary!A1"]) == 6
        assert g.partition()[0][-1] == "Summary!A1"

    def test_range_on_empty_sheet_has_no_dependencies(self) -> None:
        wb = Workbook(["Data", "Summary"])
        wb["Summary"]["A1"] = "=SUM(Data!A1:C1048576)"
        g = DependencyGraph.from_workbook(wb)
        assert g.dependencies["Summary!A1"] == set()
