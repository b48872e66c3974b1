"""
SQL text helpers shared by the statement generator and the strategies.

- `quote_identifier()` - Quote table/column/index names
- `make_placeholders()` - Build a positional placeholder list
- `pre_pad()` - Join a caller-supplied tail clause onto a statement
"""
PLACEHOLDERS = {
    'sqlite': '?',
    }


def quote_identifier(identifier: str, dialect: str = 'sqlite') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table, column or index name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect == 'sqlite':
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')


def make_placeholders(count: int, dialect: str = 'sqlite') -> str:
    """Return `count` comma-separated positional placeholders.
    """
    try:
        marker = PLACEHOLDERS[dialect]
    except KeyError:
        raise ValueError(f'Unknown dialect: {dialect}')
    return ', '.join([marker] * count)


def pre_pad(tail: str | None) -> str:
    """Prefix a non-empty tail clause with a single space.
    """
    tail = (tail or '').strip()
    if tail:
        return ' ' + tail
    return ''
