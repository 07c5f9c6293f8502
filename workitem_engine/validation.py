"""
Input validation and WIQL query correction.

Structural checks run before any query reaches the backend. The corrector
repairs queries produced by an untrusted generator: the WIQL grammar only
allows exact and UNDER matching on System.IterationPath, and the backend
answers HTTP 400 to a CONTAINS predicate on that field.
"""

import logging
import re
from typing import Optional, List, Any, Tuple

from .constants import Priority
from .models import QueryFixResult, Sprint

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


# System.IterationPath as a field reference, bracketed or bare, optionally
# qualified by a link query's [Source]/[Target] prefix
ITERATION_FIELD = (
    r"(?<![\w.])(?:\[(?:Source|Target)\]\.)?"
    r"(?:\[System\.IterationPath\]|System\.IterationPath\b)"
)

# Any substring operator applied to the iteration path field
ITERATION_SUBSTRING_PATTERN = re.compile(
    ITERATION_FIELD + r"\s*(?:NOT\s+)?CONTAINS\b",
    re.IGNORECASE
)

# Same predicate with its operand, used for rewriting
ITERATION_SUBSTRING_PREDICATE = re.compile(
    r"(?P<field>" + ITERATION_FIELD + r")"
    r"\s*(?P<negated>NOT\s+)?CONTAINS\b(?:\s+WORDS\b)?"
    r"(?:\s*(?P<value>'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|[^\s)]+))?",
    re.IGNORECASE
)

STRING_LITERAL = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")

CURRENT_TIME_FRAME = "current"


class WiqlValidator:
    """Validator for WIQL (Work Item Query Language) queries."""

    MAX_QUERY_LENGTH = 32000  # 32KB limit per Azure DevOps documentation

    @staticmethod
    def validate(query: str) -> str:
        """
        Validate WIQL query syntax and structure.

        Args:
            query: The WIQL query to validate

        Returns:
            The validated query (unchanged)

        Raises:
            ValidationError: If query is invalid
        """
        if not query or not query.strip():
            raise ValidationError("WIQL query cannot be empty")

        if len(query) > WiqlValidator.MAX_QUERY_LENGTH:
            raise ValidationError(
                f"WIQL query exceeds maximum length of {WiqlValidator.MAX_QUERY_LENGTH} characters "
                f"(current length: {len(query)})"
            )

        query_upper = query.upper()

        if 'SELECT' not in query_upper:
            raise ValidationError("WIQL query must contain SELECT clause")

        if 'FROM' not in query_upper:
            raise ValidationError("WIQL query must contain FROM clause")

        valid_targets = ['WORKITEMS', 'WORKITEMLINKS']
        if not any(target in query_upper for target in valid_targets):
            raise ValidationError(
                "WIQL query FROM clause must specify 'WorkItems' or 'WorkItemLinks'"
            )

        if not WiqlValidator._check_balanced_brackets(mask_string_literals(query)):
            raise ValidationError("WIQL query has unbalanced square brackets")

        if has_illegal_iteration_predicate(query):
            raise ValidationError(
                "CONTAINS cannot be used with System.IterationPath. Use UNDER or = instead."
            )

        return query

    @staticmethod
    def _check_balanced_brackets(query: str) -> bool:
        """
        Check if square brackets are balanced in the query.

        String literals should be masked first; brackets inside them are text.

        Args:
            query: The query to check

        Returns:
            True if balanced, False otherwise
        """
        count = 0
        for char in query:
            if char == '[':
                count += 1
            elif char == ']':
                count -= 1
            if count < 0:
                return False
        return count == 0

    @staticmethod
    def sanitize_string_literal(value: Optional[str]) -> Optional[str]:
        """
        Escape a value for use inside a single-quoted WIQL literal.

        Args:
            value: The string value to sanitize

        Returns:
            The sanitized string value
        """
        if value is None:
            return None

        return value.replace("'", "''")


class WiqlCorrector:
    """
    Rewrites substring predicates on System.IterationPath.

    Each occurrence is replaced, in order of preference, by an UNDER match on
    a known sprint path, an UNDER match on the path prefix ending at a
    matching area/team segment, or a permissive non-empty predicate.
    """

    def __init__(self, scope_name: str, sprints: Optional[List[Sprint]] = None):
        """
        Initialize corrector.

        Args:
            scope_name: Project or organization the query runs against
            sprints: Known sprints used to resolve searched terms
        """
        self.scope_name = scope_name
        self.sprints = [s for s in (sprints or []) if s and s.path]

    def fix(self, query: str) -> QueryFixResult:
        """Rewrite every illegal iteration path predicate in the query."""
        if not has_illegal_iteration_predicate(query):
            return QueryFixResult(query=query, was_fixed=False)

        reasons: List[str] = []
        pieces: List[str] = []
        position = 0

        # Matched on the masked text so quoted values never read as predicates
        for match in ITERATION_SUBSTRING_PREDICATE.finditer(mask_string_literals(query)):
            raw_value = None
            if match.group('value') is not None:
                raw_value = query[match.start('value'):match.end('value')]
            replacement, reason = self._rewrite(match, raw_value)
            pieces.append(query[position:match.start()])
            pieces.append(replacement)
            reasons.append(reason)
            position = match.end()
        pieces.append(query[position:])
        fixed = ''.join(pieces)

        fix_reason = "; ".join(reasons)
        logger.warning(
            f"Corrected generated WIQL for scope '{self.scope_name}': {fix_reason}"
        )

        return QueryFixResult(query=fixed, was_fixed=True, fix_reason=fix_reason)

    def _rewrite(self, match: re.Match, raw_value: Optional[str]) -> Tuple[str, str]:
        field = match.group('field')
        negated = bool(match.group('negated'))
        term = self._literal_value(raw_value)
        under = "NOT UNDER" if negated else "UNDER"

        if term:
            sprint = self._match_sprint(term)
            if sprint:
                return (
                    f"{field} {under} '{sanitize_wiql_string(sprint.path)}'",
                    f"replaced CONTAINS '{term}' on System.IterationPath with "
                    f"{under} sprint path '{sprint.path}'"
                )

            parent_path = self._match_segment(term)
            if parent_path:
                return (
                    f"{field} {under} '{sanitize_wiql_string(parent_path)}'",
                    f"replaced CONTAINS '{term}' on System.IterationPath with "
                    f"{under} '{parent_path}'"
                )

        described = f"'{term}'" if term else "predicate"
        return (
            f"{field} <> ''",
            f"replaced CONTAINS {described} on System.IterationPath with a "
            "non-empty check (no matching sprint)"
        )

    @staticmethod
    def _literal_value(raw: Optional[str]) -> Optional[str]:
        """Unquote a WIQL literal; non-literal operands yield None."""
        if not raw or len(raw) < 2:
            return None
        if raw[0] == raw[-1] == "'":
            value = raw[1:-1].replace("''", "'")
        elif raw[0] == raw[-1] == '"':
            value = raw[1:-1].replace('""', '"')
        else:
            return None
        # Generators often double the path separator
        value = value.replace('\\\\', '\\').strip()
        return value or None

    def _match_sprint(self, term: str) -> Optional[Sprint]:
        if not self.sprints:
            return None

        needle = term.lower()

        for sprint in self.sprints:
            if sprint.name and sprint.name.lower() == needle:
                return sprint

        for sprint in self.sprints:
            path = sprint.path.lower()
            if path == needle or path.endswith('\\' + needle):
                return sprint

        candidates = [
            s for s in self.sprints
            if s.name and needle in s.name.lower()
        ]
        if not candidates:
            return None

        for sprint in candidates:
            if (sprint.time_frame or '').lower() == CURRENT_TIME_FRAME:
                return sprint
        return candidates[0]

    def _match_segment(self, term: str) -> Optional[str]:
        if not self.sprints:
            return None

        needle = term.lower()

        # Exact segment names win over partial ones
        for exact in (True, False):
            for sprint in self.sprints:
                segments = sprint.path.split('\\')
                for index, segment in enumerate(segments[:-1]):
                    name = segment.lower()
                    if (name == needle) if exact else (needle in name):
                        return '\\'.join(segments[:index + 1])

        return None


# Convenience functions

def validate_wiql(query: str) -> str:
    """Validate WIQL query."""
    return WiqlValidator.validate(query)


def sanitize_wiql_string(value: Optional[str]) -> Optional[str]:
    """Sanitize a string value for use in WIQL queries."""
    return WiqlValidator.sanitize_string_literal(value)


def mask_string_literals(query: str) -> str:
    """
    Blank out the contents of quoted literals, keeping every offset.

    Keyword and bracket searches run on the masked text so user values such
    as 'array[0' or 'sort by date' are never read as query syntax.
    """
    return STRING_LITERAL.sub(
        lambda m: m.group()[0] + '_' * (len(m.group()) - 2) + m.group()[-1],
        query
    )


def has_illegal_iteration_predicate(query: Optional[str]) -> bool:
    """True if the query applies a substring operator to System.IterationPath."""
    return bool(query) and bool(ITERATION_SUBSTRING_PATTERN.search(mask_string_literals(query)))


def validate_and_fix_wiql_query(
    query: str,
    scope_name: str,
    sprints: Optional[List[Sprint]] = None
) -> QueryFixResult:
    """
    Repair substring predicates on System.IterationPath.

    Args:
        query: Raw WIQL produced by an untrusted generator
        scope_name: Project or organization the query runs against
        sprints: Optional known sprints used to resolve searched terms

    Returns:
        QueryFixResult with the legal query, whether it changed, and why
    """
    return WiqlCorrector(scope_name, sprints).fix(query)


def validate_work_item_id(work_item_id: Any) -> int:
    """
    Validate a work item ID.

    Accepts ints and numeric strings, optionally prefixed with '#'.

    Raises:
        ValidationError: If the ID is not a positive integer
    """
    if isinstance(work_item_id, bool):
        raise ValidationError(f"Invalid work item ID: {work_item_id}. Must be a positive integer.")

    if isinstance(work_item_id, str):
        candidate = work_item_id.strip().lstrip('#')
        if not candidate.isdecimal():
            raise ValidationError(f"Invalid work item ID: '{work_item_id}'. Must be a positive integer.")
        work_item_id = int(candidate)

    if not isinstance(work_item_id, int) or work_item_id <= 0:
        raise ValidationError(f"Invalid work item ID: {work_item_id}. Must be a positive integer.")

    return work_item_id


def normalize_priority(value: Any) -> int:
    """Coerce a backend priority into 1-4, defaulting to medium."""
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return Priority.DEFAULT
    return priority if priority in Priority.ALLOWED else Priority.DEFAULT


def normalize_story_points(value: Any) -> Optional[float]:
    """Coerce a backend story point value into a non-negative float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        points = float(value)
    except (TypeError, ValueError):
        return None
    if points != points or points < 0:  # NaN or negative
        return None
    return points
