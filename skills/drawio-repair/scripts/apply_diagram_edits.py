#!/usr/bin/env python3
"""
ABOUTME: Applies search/replace edit operations to a draw.io diagram
ABOUTME: Locates each search with fuzzy matching, then validates and repairs the result
"""

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from drawio_edit.codec import (
    DIAGRAM_ELEMENT_PATTERN,
    extract_mxfile_from_svg,
    read_diagram_page,
    write_diagram_page,
)
from drawio_edit.common import DiagramEditError, EditOperation, format_text_preview
from drawio_edit.merger import wrap_with_mxfile
from drawio_edit.pipeline import edit_diagram


@dataclass
class LoadedDiagram:
    """Editable markup plus what is needed to write it back"""
    xml: str
    container: Optional[str] = None  # Enclosing <mxfile> when one compressed page was extracted
    page_index: int = 0

    def render(self, edited: str) -> str:
        """File content with the edited markup in place of the loaded page."""
        if self.container is None:
            return edited
        return write_diagram_page(self.container, self.page_index, edited)


def load_diagram(path: Path, page: int = 1, verbose: bool = False) -> LoadedDiagram:
    """
    Read a .drawio/.xml/.svg file and return editable markup.

    Uncompressed documents are edited as a whole. For compressed files only
    the selected page (1-based) is decoded; the other pages are carried along
    unchanged and written back by LoadedDiagram.render().
    """
    content = path.read_text(encoding='utf-8')
    if path.suffix.lower() == '.svg':
        content = extract_mxfile_from_svg(content)
    if '<mxGraphModel' in content or '<mxCell' in content:
        return LoadedDiagram(xml=content)

    if page < 1:
        raise DiagramEditError(f"Page numbers start at 1, got {page}")
    xml = read_diagram_page(content, page - 1)
    if verbose:
        pages = len(DIAGRAM_ELEMENT_PATTERN.findall(content))
        print(f"  [Load] {pages} page(s) found, editing page {page}")
    return LoadedDiagram(xml=xml, container=content, page_index=page - 1)


def load_edits(path: Path) -> List[EditOperation]:
    """
    Load edit operations from a JSON list or a JSONL file.

    A JSON object with an "edits" key is accepted as well.
    """
    text = path.read_text(encoding='utf-8').strip()
    if not text:
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = [json.loads(line) for line in text.splitlines() if line.strip()]

    if isinstance(data, dict):
        data = data.get('edits', [data])
    if not isinstance(data, list):
        raise ValueError(f"Edits file must contain a list of operations: {path}")
    return [EditOperation.from_dict(item) for item in data]


def default_output_path(diagram_path: Path) -> Path:
    suffix = '.drawio' if diagram_path.suffix.lower() == '.svg' else diagram_path.suffix
    return diagram_path.with_name(f"{diagram_path.stem}_edited{suffix}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Apply search/replace edits to a draw.io diagram"
    )
    parser.add_argument('diagram_file', help='Diagram file (.drawio, .xml or exported .svg)')
    parser.add_argument('edits_file', help='Edit operations (JSON list or JSONL of {search, replace})')
    parser.add_argument('-o', '--output', help='Output file path')
    parser.add_argument('--page', type=int, default=1,
                        help='Page to edit in a compressed multi-page file (default: 1)')
    parser.add_argument('--strict', action='store_true',
                        help='Fail on ambiguous matches instead of using the first one')
    parser.add_argument('--dry-run', action='store_true',
                        help='Validate only, do not save')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    try:
        diagram_path = Path(args.diagram_file)
        output_path = Path(args.output) if args.output else default_output_path(diagram_path)
        diagram = load_diagram(diagram_path, page=args.page, verbose=args.verbose)
        edits = load_edits(Path(args.edits_file))

        print(f"Source file: {diagram_path}")
        print(f"Output to: {output_path}")
        print(f"Edit operations: {len(edits)}")
        if args.verbose:
            print("-" * 50)

        result = edit_diagram(diagram.xml, edits, strict=True if args.strict else None,
                              verbose=args.verbose)

        if result.fixes:
            print("\nAuto-fixes applied:")
            for fix in result.fixes:
                print(f"  - {fix}")

        print("-" * 50)
        if not result.success:
            print(f"Failed: {result.error_message}")
            return 1

        fuzzy = [m for m in result.matches if m.strategy != 'exact']
        print(f"Completed: {len(result.matches)} edit(s) applied, {len(fuzzy)} via fuzzy matching")
        if args.verbose:
            for idx, (edit, match) in enumerate(zip(edits, result.matches), 1):
                print(f"  #{idx} {match.strategy}: {format_text_preview(edit.search, 50)}")

        if args.dry_run:
            print("Dry run: output not written")
            return 0

        output = diagram.render(result.xml)
        if '<mxfile' not in output:
            output = wrap_with_mxfile(output)
        output_path.write_text(output + '\n', encoding='utf-8')
        print(f"Saved: {output_path}")
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
