"""
Compact text syntax for selection criteria.

Used by the CLI ``-s`` option so criteria can be typed on a command line
instead of written as YAML.

Examples:
    el:system tag:backend
    el:system !external?:true
    els:system,container OR el:person
    name:"Order Service" NOT tag:legacy
    namespace:acme -maturity:deprecated

Syntax:
    - Terms: key:value, implicitly AND-ed
    - OR (upper case) starts a new alternative
    - Negation: !key:value, -key:value or NOT key:value
    - Quoted values keep spaces: name:"Order Service"
    - Plural keys take comma separated values: tags:backend,frontend
    - Keys ending in '?' take true/false/yes/no/1/0

Text that starts with '{' or '[' is read as YAML/JSON instead.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import CriteriaError

# Keys whose value is a collection
LIST_KEYS = {
    'els', 'ids', 'namespaces', 'techs', 'all-techs', 'tags', 'all-tags',
    'maturities', 'subtypes',
}

KEY_ALIASES = {
    'kind': 'el',
    'kinds': 'els',
    'ns': 'namespace',
}

TRUE_WORDS = {'true', 'yes', '1', 'on'}
FALSE_WORDS = {'false', 'no', '0', 'off'}


@dataclass
class CriteriaToken:
    """A single parsed term."""
    type: str  # 'term' or 'operator'
    value: Any
    key: Optional[str] = None
    negated: bool = False


@dataclass
class ParsedCriteria:
    """Parsed criteria text: tokens and the resulting criteria structure."""
    tokens: List[CriteriaToken] = field(default_factory=list)
    alternatives: List[Dict[str, Any]] = field(default_factory=list)

    def to_criteria(self) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """A single alternative is a conjunction; several form a disjunction."""
        if len(self.alternatives) == 1:
            return self.alternatives[0]
        return list(self.alternatives)


class CriteriaParser:
    """Parser for the compact criteria syntax."""

    def __init__(self):
        self.term_pattern = re.compile(r'([!\-]?)([\w\-]+\??):("[^"]*"|\S+)')

    def parse(self, text: str) -> ParsedCriteria:
        """
        Parse criteria text.

        Returns:
            ParsedCriteria; empty text yields a single empty conjunction

        Raises:
            CriteriaError: On text that is neither terms nor YAML criteria
        """
        parsed = ParsedCriteria()
        if not text or not text.strip():
            parsed.alternatives = [{}]
            return parsed

        text = text.strip()
        pos = 0
        negate_next = False

        while pos < len(text):
            if text[pos].isspace():
                pos += 1
                continue

            if text.startswith('OR', pos) and self._word_ends(text, pos + 2):
                if negate_next:
                    raise CriteriaError("NOT must be followed by a key:value term")
                parsed.tokens.append(CriteriaToken(type='operator', value='OR'))
                pos += 2
                continue

            if text.startswith('AND', pos) and self._word_ends(text, pos + 3):
                parsed.tokens.append(CriteriaToken(type='operator', value='AND'))
                pos += 3
                continue

            if text.startswith('NOT', pos) and self._word_ends(text, pos + 3):
                negate_next = True
                pos += 3
                continue

            match = self.term_pattern.match(text, pos)
            if not match:
                end = pos
                while end < len(text) and not text[end].isspace():
                    end += 1
                raise CriteriaError(f"Expected key:value, got '{text[pos:end]}'")

            prefix, key, raw_value = match.groups()
            key = KEY_ALIASES.get(key.lower(), key.lower())
            parsed.tokens.append(CriteriaToken(
                type='term',
                key=key,
                value=self._convert(key, raw_value),
                negated=negate_next or bool(prefix),
            ))
            negate_next = False
            pos = match.end()

        if negate_next:
            raise CriteriaError("NOT must be followed by a key:value term")

        parsed.alternatives = self._build_alternatives(parsed.tokens)
        return parsed

    @staticmethod
    def _word_ends(text: str, pos: int) -> bool:
        return pos >= len(text) or text[pos].isspace()

    def _convert(self, key: str, raw_value: str) -> Any:
        quoted = raw_value.startswith('"') and raw_value.endswith('"') and len(raw_value) >= 2
        value = raw_value[1:-1] if quoted else raw_value

        if key.endswith('?'):
            lowered = value.lower()
            if lowered in TRUE_WORDS:
                return True
            if lowered in FALSE_WORDS:
                return False
            raise CriteriaError(f"'{key}' expects true or false, got '{value}'")

        if key in LIST_KEYS:
            return [v.strip() for v in value.split(',') if v.strip()]

        return value

    def _build_alternatives(self, tokens: List[CriteriaToken]) -> List[Dict[str, Any]]:
        alternatives: List[Dict[str, Any]] = [{}]
        for token in tokens:
            if token.type == 'operator':
                if token.value == 'OR':
                    if not alternatives[-1]:
                        raise CriteriaError("OR needs a term on both sides")
                    alternatives.append({})
                continue
            key = f"!{token.key}" if token.negated else token.key
            if key in alternatives[-1]:
                raise CriteriaError(f"Key '{key}' given twice in one alternative")
            alternatives[-1][key] = token.value
        if len(alternatives) > 1 and not alternatives[-1]:
            raise CriteriaError("OR needs a term on both sides")
        return alternatives


def parse_criteria(text: str) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
    """Parse criteria text (compact syntax or YAML/JSON) into dict/list form."""
    stripped = (text or '').strip()
    if stripped.startswith(('{', '[')):
        try:
            data = yaml.safe_load(stripped)
        except yaml.YAMLError as e:
            raise CriteriaError(f"Invalid YAML criteria: {e}") from e
        if not isinstance(data, (dict, list)):
            raise CriteriaError("YAML criteria must be a mapping or a list of mappings")
        return data
    return CriteriaParser().parse(stripped).to_criteria()
