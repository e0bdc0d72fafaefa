"""Shared hypothesis strategies for Kiln property-based testing.

Provides reusable strategies at three levels:

- **Lexer**: template fragments with valid delimiter patterns
- **Literals**: Python values the code emitter must render faithfully
- **Registry**: names for exact and wildcard vocabulary

Individual test modules compose them into property-specific strategies.
"""

from __future__ import annotations

import string

from hypothesis import strategies as st

# ---------------------------------------------------------------------------
# Lexer strategies
# ---------------------------------------------------------------------------

# Plain text that does NOT contain delimiters (no { or })
plain_text = st.text(
    alphabet=st.characters(
        blacklist_categories=("Cs",),
        blacklist_characters="{}\x00\r",
    ),
    min_size=1,
    max_size=200,
)

_identifier = st.from_regex(r"[a-z_][a-z0-9_]{0,12}", fullmatch=True).filter(
    lambda name: name
    not in {"and", "or", "not", "in", "is", "true", "false", "none", "null", "loop"}
)

# {{ identifier }}
kiln_variable = _identifier.map(lambda name: f"{{{{ {name} }}}}")

# {# text #}
_comment_body = st.from_regex(r"[a-zA-Z0-9_ ]{0,30}", fullmatch=True)
kiln_comment = _comment_body.map(lambda body: f"{{# {body} #}}")

# Plain text interleaved with variables and comments
template_fragment = st.lists(
    st.one_of(plain_text, kiln_variable, kiln_comment),
    min_size=1,
    max_size=5,
).map("".join)

# Arbitrary input that might stress the lexer
arbitrary_template_source = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)),
    min_size=0,
    max_size=300,
)

safe_identifier = _identifier

# ---------------------------------------------------------------------------
# Literal strategies
# ---------------------------------------------------------------------------

# Any float, including nan, inf and -inf
any_float = st.floats(allow_nan=True, allow_infinity=True)

# Strings with control characters, quotes, backslashes and braces
tricky_text = st.text(
    alphabet=st.one_of(
        st.characters(blacklist_categories=("Cs",)),
        st.sampled_from(['"', "\\", "\n", "\r", "\t", "\0", "{", "}", "$", "\x7f"]),
    ),
    max_size=60,
)

_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(),
    st.floats(allow_nan=False),
    tricky_text,
)

# Nested containers of scalars
literal_values = st.recursive(
    _scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.lists(children, max_size=4).map(tuple),
        st.dictionaries(st.one_of(tricky_text, st.integers()), children, max_size=4),
    ),
    max_leaves=12,
)

# ---------------------------------------------------------------------------
# Registry strategies
# ---------------------------------------------------------------------------

vocabulary_name = st.text(alphabet=string.ascii_lowercase + "_", min_size=1, max_size=12)

# Wildcard fragment values (non-empty so full matches are unambiguous)
wildcard_fragment = st.text(alphabet=string.ascii_lowercase, min_size=1, max_size=8)
