"""Auto-fixer for diagram markup, composed from focused repair mixins."""

from typing import List, Tuple

from .common import RepairResult
from .entity_fix_mixin import EntityFixMixin
from .structure_fix_mixin import StructureFixMixin
from .validator import validate_mxcell_structure


class XmlAutoFixer(EntityFixMixin, StructureFixMixin):
    """
    Applies independent corrective passes to invalid diagram markup.

    Each pass only runs when its pattern is detected and records one fix
    message when it changed something. Passes never discard cell content.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.fixes: List[str] = []

    def _record(self, message: str):
        self.fixes.append(message)
        if self.verbose:
            print(f"  [Fix] {message}")

    def _passes(self):
        # Entity repairs run before bare-& escaping so &ampquot; and invalid
        # &#...; references are not escaped away first
        return [
            self._fix_cdata_wrapper,
            self._fix_control_characters,
            self._fix_duplicate_attributes,
            self._fix_double_escaped_entities,
            self._fix_character_references,
            self._fix_bare_ampersands,
            self._fix_lt_in_attribute_values,
            self._fix_comment_hyphens,
            self._fix_tag_names,
            self._fix_unclosed_tags,
            self._fix_duplicate_id_nesting,
            self._fix_true_nesting,
            self._fix_duplicate_ids,
            self._fix_empty_ids,
        ]

    def fix(self, xml: str) -> Tuple[str, List[str]]:
        """
        Run every repair pass over xml.

        Returns:
            (fixed_xml, fixes) where fixes lists the corrections applied
        """
        self.fixes = []
        fixed = xml
        for fix_pass in self._passes():
            fixed = fix_pass(fixed)
        return fixed, list(self.fixes)


def auto_fix_xml(xml: str, verbose: bool = False) -> Tuple[str, List[str]]:
    """Attempt to fix common model mistakes in diagram markup."""
    return XmlAutoFixer(verbose=verbose).fix(xml)


def validate_and_fix_xml(xml: str, verbose: bool = False) -> RepairResult:
    """
    Validate markup and attempt a repair if it is invalid.

    The caller gets one of three outcomes:
    - valid as-is: valid=True, fixed=None, fixes=[]
    - valid after fixes: valid=True, fixed=<repaired>, fixes=[...]
    - unrepairable: valid=False, fixed=None, error=<post-fix error>,
      repair_exhausted=True

    Args:
        xml: Markup text
        verbose: Print each applied fix

    Returns:
        RepairResult
    """
    error = validate_mxcell_structure(xml)
    if not error:
        return RepairResult(valid=True)

    if verbose:
        print(f"  [Validate] {error}")
    fixed, fixes = auto_fix_xml(xml, verbose=verbose)

    fixed_error = validate_mxcell_structure(fixed)
    if not fixed_error:
        return RepairResult(valid=True, fixed=fixed, fixes=fixes, original_error=error)

    return RepairResult(valid=False, error=fixed_error, fixes=fixes, original_error=error)
