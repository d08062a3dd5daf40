"""
Tests for the display and edit pipelines
"""

from _drawio_helpers import SHAPE_CELL, build_mxfile, cell, cell_ids, find_cell

from drawio_edit.pipeline import display_diagram, edit_diagram  # type: ignore
from drawio_edit.validator import validate_mxcell_structure  # type: ignore


class TestDisplayDiagram:
    """Tests for display_diagram"""

    def test_replaces_diagram(self):
        """The fragment becomes the whole diagram"""
        result = display_diagram(build_mxfile(cell('old')), SHAPE_CELL)
        assert result.success is True
        assert cell_ids(result.xml) == ['0', '1', '2']
        assert validate_mxcell_structure(result.xml) is None

    def test_repairs_fragment_first(self):
        """Fixable fragments are repaired and the fixes reported"""
        result = display_diagram('', cell('2', 'R&D') + cell('2', 'Ops'))
        assert result.success is True
        assert cell_ids(result.xml) == ['0', '1', '2', '2_dup1']
        assert "Escaped unescaped & characters" in result.fixes
        assert "Renamed 1 duplicate ID(s)" in result.fixes

    def test_streaming_keeps_complete_cells(self):
        """A truncated stream shows the cells received so far"""
        result = display_diagram('', cell('2', 'A') + '<mxCell id="3" value="B" ver', streaming=True)
        assert result.success is True
        assert cell_ids(result.xml) == ['0', '1', '2']

    def test_unrepairable_fragment(self):
        """Errors are returned, not raised"""
        result = display_diagram(build_mxfile(), cell('2') + '</root></root>')
        assert result.success is False
        assert result.xml is None
        assert result.error.startswith("Invalid XML")

    def test_empty_fragment(self):
        """An empty fragment is an error"""
        result = display_diagram(build_mxfile(), '')
        assert result.success is False


class TestEditDiagram:
    """Tests for edit_diagram"""

    def test_applies_edits(self):
        """Edits produce a new valid document"""
        result = edit_diagram(build_mxfile(SHAPE_CELL), [{'search': 'value="Start"', 'replace': 'value="Begin"'}])
        assert result.success is True
        assert find_cell(result.xml, '2').get('value') == 'Begin'
        assert [m.strategy for m in result.matches] == ['substring']

    def test_edit_result_is_repaired(self):
        """An edit that breaks the markup is repaired afterwards"""
        result = edit_diagram(build_mxfile(SHAPE_CELL), [{'search': 'value="Start"', 'replace': 'value="R&D"'}])
        assert result.success is True
        assert find_cell(result.xml, '2').get('value') == 'R&D'
        assert "Escaped unescaped & characters" in result.fixes

    def test_failed_edit_message(self):
        """A failed edit carries the retry message and current document"""
        current = build_mxfile(SHAPE_CELL)
        result = edit_diagram(current, [{'search': '<mxCell id="77" value="Ghost"/>', 'replace': ''}])
        assert result.success is False
        output = result.to_tool_output()
        assert output.startswith("Edit failed: Edit #1 failed: Search pattern not found")
        assert current in output
        assert "retry with an adjusted search pattern" in output

    def test_strict_ambiguity_reported(self):
        """Strict mode failures come back as results"""
        current = build_mxfile(cell('2', 'Same') + cell('3', 'Same'))
        result = edit_diagram(current, [{'search': 'value="Same"', 'replace': 'value="X"'}], strict=True)
        assert result.success is False
        assert "ambiguous" in result.error_message

    def test_success_output(self):
        """Successful results summarize the edit count"""
        result = edit_diagram(build_mxfile(SHAPE_CELL), [{'search': 'value="Start"', 'replace': 'value="Go"'}])
        assert result.to_tool_output() == "Successfully applied 1 edit(s) to the diagram."
