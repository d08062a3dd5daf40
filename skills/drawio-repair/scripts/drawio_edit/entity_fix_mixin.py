"""
This mixin class holds the character-level repair passes of the auto-fixer.
It handles CDATA wrappers, control characters, attributes and entity escaping.
"""

import re

from xml_utils import apply_splices, iter_tags, sanitize_xml_string

from .common import (
    BARE_AMPERSAND_PATTERN,
    CDATA_END_PATTERN,
    CDATA_START_PATTERN,
    CHAR_REF_PATTERN,
    COMMENT_PATTERN,
    DOUBLE_ESCAPED_ENTITIES,
    MALFORMED_QUOTE_PATTERN,
    QUOTED_VALUE_PATTERN,
    STRUCTURAL_ATTRIBUTES,
)

# One attribute occurrence including its leading whitespace and quoted value
ATTR_OCCURRENCE_PATTERN = re.compile(
    r'\s+([a-zA-Z_:][a-zA-Z0-9_:.-]*)\s*=\s*(?:"[^"]*"|\'[^\']*\')'
)


class EntityFixMixin:
    def _fix_cdata_wrapper(self, xml: str) -> str:
        if not CDATA_START_PATTERN.match(xml):
            return xml
        xml = CDATA_START_PATTERN.sub('', xml, count=1)
        xml = CDATA_END_PATTERN.sub('', xml, count=1)
        self._record("Removed CDATA wrapper")
        return xml

    def _fix_control_characters(self, xml: str) -> str:
        cleaned = sanitize_xml_string(xml)
        if cleaned != xml:
            self._record(f"Removed {len(xml) - len(cleaned)} illegal control character(s)")
        return cleaned

    def _fix_duplicate_attributes(self, xml: str) -> str:
        """Keep the first occurrence of each structural attribute in a tag."""
        splices = []
        for tag in iter_tags(xml):
            if tag.kind == 'close':
                continue
            seen = set()

            def drop_repeat(match):
                name = match.group(1)
                if name not in STRUCTURAL_ATTRIBUTES:
                    return match.group(0)
                if name in seen:
                    return ''
                seen.add(name)
                return match.group(0)

            new_text = ATTR_OCCURRENCE_PATTERN.sub(drop_repeat, tag.text)
            if new_text != tag.text:
                splices.append((tag.start, tag.end, new_text))

        if not splices:
            return xml
        self._record("Removed duplicate structural attributes")
        return apply_splices(xml, splices)

    def _fix_double_escaped_entities(self, xml: str) -> str:
        for wrong, right in DOUBLE_ESCAPED_ENTITIES:
            if wrong in xml:
                xml = xml.replace(wrong, right)
                self._record(f"Fixed double-escaped entity {wrong}")

        if MALFORMED_QUOTE_PATTERN.search(xml):
            xml = MALFORMED_QUOTE_PATTERN.sub(r'\1="&quot;\2&quot;"', xml)
            self._record('Fixed malformed attribute quotes (=&quot;...&quot; to ="&quot;...&quot;")')
        return xml

    def _fix_character_references(self, xml: str) -> str:
        """Remove &#...; references whose payload is empty or has the wrong charset."""
        removed = {'hex': 0, 'decimal': 0}

        def drop_invalid(match):
            if not match.group(3):
                # No semicolon: the bare-& pass turns it into literal text
                return match.group(0)
            is_hex = match.group(1) == 'x'
            allowed = r'[0-9a-fA-F]+' if is_hex else r'[0-9]+'
            if re.fullmatch(allowed, match.group(2)):
                return match.group(0)
            removed['hex' if is_hex else 'decimal'] += 1
            return ''

        xml = CHAR_REF_PATTERN.sub(drop_invalid, xml)
        for kind in ('hex', 'decimal'):
            if removed[kind]:
                self._record(f"Removed {removed[kind]} invalid {kind} character reference(s)")
        return xml

    def _fix_bare_ampersands(self, xml: str) -> str:
        if not BARE_AMPERSAND_PATTERN.search(xml):
            return xml
        self._record("Escaped unescaped & characters")
        return BARE_AMPERSAND_PATTERN.sub('&amp;', xml)

    def _fix_lt_in_attribute_values(self, xml: str) -> str:
        def escape_value(match):
            return match.group(1) + match.group(2) + match.group(3).replace('<', '&lt;') + match.group(2)

        splices = []
        for tag in iter_tags(xml):
            if tag.kind == 'close':
                continue
            new_text = QUOTED_VALUE_PATTERN.sub(escape_value, tag.text)
            if new_text != tag.text:
                splices.append((tag.start, tag.end, new_text))

        if not splices:
            return xml
        self._record("Escaped < characters in attribute values")
        return apply_splices(xml, splices)

    def _fix_comment_hyphens(self, xml: str) -> str:
        fixed_count = 0

        def collapse(match):
            nonlocal fixed_count
            body = match.group(1)
            if '--' not in body:
                return match.group(0)
            while '--' in body:
                body = body.replace('--', '-')
            fixed_count += 1
            return f'<!--{body}-->'

        xml = COMMENT_PATTERN.sub(collapse, xml)
        if fixed_count:
            self._record(f"Fixed invalid comment syntax (removed double hyphens) in {fixed_count} comment(s)")
        return xml
