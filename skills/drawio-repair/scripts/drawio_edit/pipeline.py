"""
End-to-end flows for the two ways a producing agent changes a diagram:
full regeneration (display) and incremental search/replace edits (edit).
"""

from typing import Optional

from .common import DiagramEditError, DisplayResult, EditResult
from .fixer import validate_and_fix_xml
from .fragment import convert_to_legal_xml
from .merger import replace_nodes
from .patch_engine import FuzzyPatchEngine
from .validator import validate_mxcell_structure


def display_diagram(current_xml: str, fragment: str, streaming: bool = False,
                    verbose: bool = False) -> DisplayResult:
    """
    Replace the whole diagram with a regenerated fragment.

    Steps: normalize (streaming previews only), validate and repair, merge
    into the current document, validate the merged document.

    Args:
        current_xml: Current document (may be empty)
        fragment: New cells produced by the model
        streaming: Fragment may be truncated; keep only complete cells
        verbose: Print fixes as they are applied
    """
    nodes = convert_to_legal_xml(fragment) if streaming else fragment
    if not nodes or not nodes.strip():
        return DisplayResult(success=False, error="Diagram fragment is empty")

    repair = validate_and_fix_xml(nodes, verbose=verbose)
    if not repair.valid:
        return DisplayResult(success=False, error=repair.error, fixes=repair.fixes)
    nodes = repair.fixed or nodes

    try:
        merged = replace_nodes(current_xml, nodes)
    except DiagramEditError as e:
        return DisplayResult(success=False, error=str(e), fixes=repair.fixes)

    error = validate_mxcell_structure(merged)
    if error:
        return DisplayResult(success=False, error=error, fixes=repair.fixes)

    if verbose:
        print(f"  [Display] Merged diagram ({len(repair.fixes)} fix(es) applied)")
    return DisplayResult(success=True, xml=merged, fixes=repair.fixes)


def edit_diagram(current_xml: str, edits, strict: Optional[bool] = None,
                 verbose: bool = False) -> EditResult:
    """
    Apply search/replace edits to the current diagram, then validate and repair.

    On failure the result carries the document the edits were aimed at, so
    EditResult.to_tool_output() can ask the model for a corrected retry.
    """
    engine = FuzzyPatchEngine(strict=strict, verbose=verbose)
    try:
        patched = engine.apply(current_xml, edits)
    except DiagramEditError as e:
        return EditResult(success=False, error_message=str(e), current_xml=current_xml,
                          matches=list(engine.matches))

    repair = validate_and_fix_xml(patched, verbose=verbose)
    if not repair.valid:
        return EditResult(success=False, error_message=repair.error, fixes=repair.fixes,
                          matches=list(engine.matches), current_xml=current_xml)

    return EditResult(success=True, xml=repair.fixed or patched, fixes=repair.fixes,
                      matches=list(engine.matches))
