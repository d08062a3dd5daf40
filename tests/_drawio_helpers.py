#!/usr/bin/env python3
"""
ABOUTME: Shared helpers and sample documents for drawio-repair tests.
"""

import sys
from pathlib import Path

from lxml import etree

# Add skills/drawio-repair/scripts directory to path (must be before import)
_scripts_dir = Path(__file__).parent.parent / 'skills' / 'drawio-repair' / 'scripts'
sys.path.insert(0, str(_scripts_dir))


# ============================================================
# Sample Documents
# ============================================================

ROOT_CELLS = '<mxCell id="0"/><mxCell id="1" parent="0"/>'

MINIMAL_ROOT = f'<root>{ROOT_CELLS}</root>'

SHAPE_CELL = (
    '<mxCell id="2" value="Start" style="rounded=1;" vertex="1" parent="1">'
    '<mxGeometry x="40" y="40" width="120" height="60" as="geometry"/>'
    '</mxCell>'
)

EDGE_CELL = (
    '<mxCell id="e1" style="edgeStyle=orthogonalEdgeStyle;" edge="1" parent="1" source="2" target="3">'
    '<mxGeometry relative="1" as="geometry"/>'
    '</mxCell>'
)


def build_model(cells: str = '') -> str:
    """<mxGraphModel> document holding the root cells followed by cells."""
    return f'<mxGraphModel><root>{ROOT_CELLS}{cells}</root></mxGraphModel>'


def build_mxfile(cells: str = '') -> str:
    """Full uncompressed .drawio document."""
    return f'<mxfile><diagram name="Page-1" id="page-1">{build_model(cells)}</diagram></mxfile>'


def cell(cell_id: str, value: str = '', parent: str = '1', extra: str = '') -> str:
    """Self-closing vertex cell."""
    extra = f' {extra}' if extra else ''
    return f'<mxCell id="{cell_id}" value="{value}" vertex="1" parent="{parent}"{extra}/>'


# ============================================================
# Inspection Helpers
# ============================================================

def parse(xml: str):
    return etree.fromstring(xml.encode('utf-8'))


def cell_ids(xml: str):
    """Ids of all mxCell elements in document order."""
    return [c.get('id') for c in parse(xml).iter('mxCell')]


def find_cell(xml: str, cell_id: str):
    for c in parse(xml).iter('mxCell'):
        if c.get('id') == cell_id:
            return c
    return None
