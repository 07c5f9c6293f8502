"""
WIQL query builder for chat commands.

Turns a command keyword, an optional parameter and the request's global
filters into a single WIQL query. Scoping to a project is left to the
caller (the query runs under a project team context), so the builder never
constrains System.TeamProject. Unknown commands and missing parameters fall
back to a permissive "not closed" query instead of raising.
"""
import re
from typing import Optional, List, Dict, Any, Union, Tuple

from .constants import (
    FieldNames,
    QUERY_FIELDS,
    QueryLimits,
    WorkItemStates,
    Priority,
    format_wiql_fields
)
from .models import GlobalFilters, ParsedCommand
from .validation import mask_string_literals, sanitize_wiql_string


ID_TOKEN = re.compile(r'#?(\d+)')
QUERY_TAIL = re.compile(r'\bORDER\s+BY\b|\bMODE\s*\(', re.IGNORECASE)
WHERE_CLAUSE = re.compile(r'\bWHERE\b', re.IGNORECASE)

# Commands matched by substring
TEXT_COMMANDS: Dict[str, str] = {
    'created_by': FieldNames.CREATED_BY,
    'assigned_to': FieldNames.ASSIGNED_TO,
    'title': FieldNames.TITLE,
    'description': FieldNames.DESCRIPTION,
}

# Commands matched exactly
EXACT_COMMANDS: Dict[str, str] = {
    'state': FieldNames.STATE,
    'type': FieldNames.WORK_ITEM_TYPE,
}

COMMAND_ALIASES: Dict[str, str] = {
    'creator': 'created_by',
    'author': 'created_by',
    'assignee': 'assigned_to',
    'status': 'state',
    'tags': 'tag',
    'area': 'board',
    'team': 'board',
    'iteration': 'sprint',
    'current_iteration': 'current_sprint',
    'open': 'all',
}

# Commands that only select the scope; the query itself stays permissive
SCOPE_COMMANDS = {'project', 'all'}

# Keywords recognised without a parameter
KNOWN_COMMANDS = (
    set(TEXT_COMMANDS) | set(EXACT_COMMANDS) | SCOPE_COMMANDS
    | {'recent', 'current_sprint', 'search', 'tag', 'priority', 'id', 'board', 'sprint'}
)

# Commands ordered by creation rather than last change
CREATION_ORDERED_COMMANDS = {'created_by', 'type'}

PERMISSIVE_PREDICATE = f"[{FieldNames.STATE}] <> '{WorkItemStates.CLOSED}'"


def _literal(value: str) -> str:
    return f"'{sanitize_wiql_string(value)}'"


def normalize_command(command: Optional[str]) -> str:
    """Lower-case a command keyword and strip its slash prefix."""
    if not command:
        return ''
    name = str(command).strip().lstrip('/').lower().replace('-', '_')
    return COMMAND_ALIASES.get(name, name)


def coerce_filters(filters: Union[GlobalFilters, Dict[str, Any], None]) -> Optional[GlobalFilters]:
    """
    Accept filters as a GlobalFilters or a plain dict.

    Dict keys may be snake_case or the camelCase used by chat clients.
    Unknown keys and malformed values are dropped.
    """
    if filters is None or isinstance(filters, GlobalFilters):
        return filters

    def pick(snake: str, camel: str, default=None):
        if snake in filters:
            return filters[snake]
        return filters.get(camel, default)

    def string_set(value) -> frozenset:
        if not value:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(str(v).strip() for v in value if v and str(v).strip())

    days = pick('ignore_older_than_days', 'ignoreOlderThanDays')
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        days = None

    current_user = pick('current_user', 'currentUser')

    return GlobalFilters(
        ignore_closed=bool(pick('ignore_closed', 'ignoreClosed', False)),
        ignore_states=string_set(pick('ignore_states', 'ignoreStates')),
        only_my_tickets=bool(pick('only_my_tickets', 'onlyMyTickets', False)),
        current_user=str(current_user).strip() if current_user else None,
        ignore_older_than_days=days,
        ignore_created_by=string_set(pick('ignore_created_by', 'ignoreCreatedBy')),
    )


def filter_predicates(filters: Union[GlobalFilters, Dict[str, Any], None]) -> List[str]:
    """
    Translate global filters into WIQL predicates.

    Args:
        filters: Request filters, or None

    Returns:
        Predicates to AND onto a query, in a stable order
    """
    filters = coerce_filters(filters)
    if filters is None:
        return []

    predicates = []

    if filters.ignore_closed:
        predicates.append(PERMISSIVE_PREDICATE)

    for state in sorted(filters.ignore_states):
        predicates.append(f"[{FieldNames.STATE}] <> {_literal(state)}")

    if filters.only_my_tickets and filters.current_user:
        predicates.append(f"[{FieldNames.ASSIGNED_TO}] CONTAINS {_literal(filters.current_user)}")

    days = filters.ignore_older_than_days
    if isinstance(days, int) and not isinstance(days, bool) and days > 0:
        predicates.append(f"[{FieldNames.CHANGED_DATE}] >= @Today - {days}")

    for creator in sorted(filters.ignore_created_by):
        predicates.append(f"[{FieldNames.CREATED_BY}] NOT CONTAINS {_literal(creator)}")

    return predicates


def apply_filters_to_query(
    query: str,
    filters: Union[GlobalFilters, Dict[str, Any], None]
) -> str:
    """
    AND filter predicates onto an existing WIQL query.

    The existing WHERE condition is parenthesised so its OR terms keep their
    meaning; ORDER BY and MODE clauses stay at the end.
    """
    predicates = filter_predicates(filters)
    if not query or not predicates:
        return query

    # Keywords inside quoted values are not clauses
    masked = mask_string_literals(query)

    tail_match = QUERY_TAIL.search(masked)
    if tail_match:
        head, tail = query[:tail_match.start()].rstrip(), ' ' + query[tail_match.start():]
    else:
        head, tail = query.rstrip(), ''

    added = ' AND '.join(predicates)
    where_match = WHERE_CLAUSE.search(masked, 0, len(head))
    if where_match:
        condition = head[where_match.end():].strip()
        prefix = head[:where_match.start()].rstrip()
        if condition:
            head = f"{prefix} WHERE ({condition}) AND {added}"
        else:
            head = f"{prefix} WHERE {added}"
    else:
        head = f"{head} WHERE {added}"

    return head + tail


def parse_command(text: Optional[str]) -> ParsedCommand:
    """
    Split chat input into a command and its parameter.

    A bare number, optionally prefixed with '#', is a direct ID lookup.
    Input without a leading slash is treated as a free-text search.
    """
    if not text or not text.strip():
        return ParsedCommand()

    text = text.strip()

    id_match = ID_TOKEN.fullmatch(text)
    if id_match:
        return ParsedCommand(command='id', param=id_match.group(1), work_item_id=int(id_match.group(1)))

    if not text.startswith('/'):
        return ParsedCommand(command='search', param=text)

    parts = text.split(None, 1)
    param = parts[1].strip() if len(parts) > 1 else None
    return ParsedCommand(command=normalize_command(parts[0]), param=param or None)


def resolve_command(command: Optional[str], param: Optional[str] = None) -> ParsedCommand:
    """
    Resolve tool arguments into a command and its parameter.

    With a separate param the command is a keyword. Without one it may be
    raw chat input ("/state Active", "#42", "login bug"), except that a lone
    known keyword such as "recent" stays a keyword.
    """
    if param is not None or not command:
        return ParsedCommand(command=normalize_command(command), param=param)

    name = normalize_command(command)
    if name in KNOWN_COMMANDS:
        return ParsedCommand(command=name)

    return parse_command(command)


class WiqlQueryBuilder:
    """Builds WIQL queries for chat commands within one project scope"""

    def __init__(self, project: Optional[str] = None):
        """
        Initialize builder

        Args:
            project: Project used to qualify bare sprint and area names
        """
        self.project = project

    def build(
        self,
        command: Optional[str],
        param: Optional[str] = None,
        filters: Union[GlobalFilters, Dict[str, Any], None] = None
    ) -> str:
        """
        Build a WIQL query for a command.

        Args:
            command: Command keyword, with or without leading slash
            param: Free-text parameter for the command
            filters: Global filters to AND onto the query

        Returns:
            WIQL query string
        """
        name = normalize_command(command)
        text = str(param).strip() if param is not None else ''

        condition, order_field = self._condition_for(name, text)

        predicates = [condition or PERMISSIVE_PREDICATE]
        for predicate in filter_predicates(filters):
            if predicate not in predicates:
                predicates.append(predicate)

        return (
            f"SELECT {format_wiql_fields(QUERY_FIELDS)} FROM WorkItems "
            f"WHERE {' AND '.join(predicates)} "
            f"ORDER BY [{order_field}] DESC"
        )

    def build_for_input(
        self,
        command: Optional[str],
        param: Optional[str] = None,
        filters: Union[GlobalFilters, Dict[str, Any], None] = None
    ) -> str:
        """
        Build the query for tool arguments that may hold raw chat input.

        A bare id yields an unfiltered id query, matching a direct lookup.
        """
        parsed = resolve_command(command, param)
        if parsed.work_item_id:
            return self.build('id', str(parsed.work_item_id))
        return self.build(parsed.command, parsed.param, filters)

    def _condition_for(self, name: str, text: str) -> Tuple[Optional[str], str]:
        order_field = (
            FieldNames.CREATED_DATE if name in CREATION_ORDERED_COMMANDS
            else FieldNames.CHANGED_DATE
        )

        if name in SCOPE_COMMANDS:
            return None, order_field

        if name == 'recent':
            days = int(text) if text.isdecimal() and int(text) > 0 else QueryLimits.RECENT_DAYS
            return f"[{FieldNames.CHANGED_DATE}] >= @Today - {days}", order_field

        if name == 'current_sprint':
            return f"[{FieldNames.ITERATION_PATH}] = @CurrentIteration", order_field

        if not text:
            return None, order_field

        if name in TEXT_COMMANDS:
            return f"[{TEXT_COMMANDS[name]}] CONTAINS {_literal(text)}", order_field

        if name in EXACT_COMMANDS:
            return f"[{EXACT_COMMANDS[name]}] = {_literal(text)}", order_field

        if name == 'search':
            return (
                f"([{FieldNames.TITLE}] CONTAINS {_literal(text)} "
                f"OR [{FieldNames.DESCRIPTION}] CONTAINS {_literal(text)})"
            ), order_field

        if name == 'tag':
            return self._tag_condition(text), order_field

        if name == 'priority':
            if text.isdecimal() and int(text) in Priority.ALLOWED:
                return f"[{FieldNames.PRIORITY}] = {int(text)}", order_field
            return None, order_field

        if name == 'id':
            id_match = ID_TOKEN.fullmatch(text)
            if id_match:
                return f"[{FieldNames.ID}] = {int(id_match.group(1))}", order_field
            return None, order_field

        if name == 'board':
            if '\\' in text:
                return f"[{FieldNames.AREA_PATH}] UNDER {_literal(self._qualify(text))}", order_field
            return f"[{FieldNames.AREA_PATH}] CONTAINS {_literal(text)}", order_field

        if name == 'sprint':
            return f"[{FieldNames.ITERATION_PATH}] UNDER {_literal(self._qualify(text))}", order_field

        return None, order_field

    @staticmethod
    def _tag_condition(text: str) -> Optional[str]:
        tags = []
        for tag in text.split(','):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)

        if not tags:
            return None

        clauses = [f"[{FieldNames.TAGS}] CONTAINS {_literal(tag)}" for tag in tags]
        if len(clauses) == 1:
            return clauses[0]
        return f"({' OR '.join(clauses)})"

    def _qualify(self, path: str) -> str:
        """Prefix a bare sprint or area name with the project."""
        path = path.replace('\\\\', '\\').strip('\\')
        if '\\' in path or not self.project:
            return path
        return f"{self.project}\\{path}"


def build_query(
    command: Optional[str],
    param: Optional[str] = None,
    filters: Union[GlobalFilters, Dict[str, Any], None] = None,
    project: Optional[str] = None
) -> str:
    """
    Build a WIQL query for a chat command.

    Args:
        command: Command keyword (e.g. "/assigned_to", "state", "recent")
        param: Optional free-text parameter
        filters: Optional global filters
        project: Project used to qualify sprint and area names

    Returns:
        WIQL query string; never raises for unrecognised input
    """
    return WiqlQueryBuilder(project).build(command, param, filters)
