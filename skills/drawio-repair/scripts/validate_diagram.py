#!/usr/bin/env python3
"""
ABOUTME: Validates draw.io diagram markup and optionally writes a repaired copy
ABOUTME: Can also merge a regenerated fragment into an existing diagram
"""

import argparse
import sys
from pathlib import Path

from apply_diagram_edits import load_diagram
from drawio_edit.fixer import validate_and_fix_xml
from drawio_edit.fragment import convert_to_legal_xml
from drawio_edit.pipeline import display_diagram


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Validate (and optionally repair) draw.io diagram markup"
    )
    parser.add_argument('input_file', help='Diagram file or model fragment')
    parser.add_argument('--fix', action='store_true',
                        help='Write the repaired markup when fixes were needed')
    parser.add_argument('--fragment', action='store_true',
                        help='Input may be truncated: keep only complete cells')
    parser.add_argument('--merge-into', metavar='CURRENT',
                        help='Merge the input cells into this diagram, replacing its content')
    parser.add_argument('--page', type=int, default=1,
                        help='Page of a compressed multi-page file (default: 1)')
    parser.add_argument('-o', '--output', help='Output file path')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    try:
        input_path = Path(args.input_file)
        source = None
        if args.fragment or args.merge_into:
            markup = input_path.read_text(encoding='utf-8')
        else:
            source = load_diagram(input_path, page=args.page, verbose=args.verbose)
            markup = source.xml

        if args.merge_into:
            current_path = Path(args.merge_into)
            current = load_diagram(current_path, page=args.page, verbose=args.verbose)
            result = display_diagram(current.xml, markup, streaming=args.fragment, verbose=args.verbose)
            _print_fixes(result.fixes)
            print("-" * 50)
            if not result.success:
                print(f"Invalid: {result.error}")
                return 1
            output_path = Path(args.output) if args.output else current_path.with_name(
                f"{current_path.stem}_merged{current_path.suffix}")
            output_path.write_text(current.render(result.xml) + '\n', encoding='utf-8')
            print(f"Merged: {output_path}")
            return 0

        if args.fragment:
            markup = convert_to_legal_xml(markup)

        result = validate_and_fix_xml(markup, verbose=args.verbose)
        _print_fixes(result.fixes)
        print("-" * 50)

        if not result.valid:
            print(f"Invalid: {result.error}")
            if result.original_error and result.original_error != result.error:
                print(f"  Before fixes: {result.original_error}")
            return 1

        if result.fixed is None:
            print("Valid: no fixes needed")
            return 0

        print(f"Valid after {len(result.fixes)} fix(es) (was: {result.original_error})")
        if args.fix:
            output_path = Path(args.output) if args.output else input_path.with_name(
                f"{input_path.stem}_fixed{input_path.suffix}")
            fixed = source.render(result.fixed) if source else result.fixed
            output_path.write_text(fixed + '\n', encoding='utf-8')
            print(f"Saved: {output_path}")
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _print_fixes(fixes):
    if fixes:
        print("Auto-fixes applied:")
        for fix in fixes:
            print(f"  - {fix}")


if __name__ == '__main__':
    sys.exit(main())
