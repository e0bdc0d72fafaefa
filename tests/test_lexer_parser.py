"""Tests for tokenizing and parsing templates."""

import pytest

from kiln import ErrorCode, TemplateSyntaxError, Token, TokenStream, TokenType
from kiln.nodes import (
    BinaryOp,
    BlockReference,
    Conditional,
    Const,
    Filter,
    For,
    If,
    Module,
    Name,
    Print,
    Test,
    Text,
    UnaryOp,
)


def token_pairs(env, source):
    return [(token.type, token.value) for token in env.tokenize(source)._tokens]


def parse(env, source, name="partial.html"):
    return env.parse(env.tokenize(source, name))


class TestLexer:
    """Token boundaries and values."""

    def test_text_and_variable(self, env):
        assert token_pairs(env, "Hi {{ name }}!") == [
            (TokenType.TEXT, "Hi "),
            (TokenType.VAR_START, "{{"),
            (TokenType.NAME, "name"),
            (TokenType.VAR_END, "}}"),
            (TokenType.TEXT, "!"),
            (TokenType.EOF, None),
        ]

    def test_block_tokens(self, env):
        types = [t for t, _ in token_pairs(env, "{% if a %}x{% endif %}")]
        assert types == [
            TokenType.BLOCK_START,
            TokenType.NAME,
            TokenType.NAME,
            TokenType.BLOCK_END,
            TokenType.TEXT,
            TokenType.BLOCK_START,
            TokenType.NAME,
            TokenType.BLOCK_END,
            TokenType.EOF,
        ]

    def test_comments_are_dropped(self, env):
        assert token_pairs(env, "a{# note #}b") == [
            (TokenType.TEXT, "a"),
            (TokenType.TEXT, "b"),
            (TokenType.EOF, None),
        ]

    def test_numbers_and_strings(self, env):
        values = [v for _, v in token_pairs(env, "{{ 42 3.5 'it\\'s' \"a\\nb\" }}")][1:-2]
        assert values == [42, 3.5, "it's", "a\nb"]

    def test_word_operators(self, env):
        pairs = token_pairs(env, "{{ a not  in b and index is not none }}")
        operators = [v for t, v in pairs if t is TokenType.OPERATOR]
        names = [v for t, v in pairs if t is TokenType.NAME]
        assert operators == ["not in", "and", "is not"]
        assert names == ["a", "b", "index", "none"]

    def test_longest_operator_first(self, env):
        pairs = token_pairs(env, "{{ 1..3 ** 2 // 1 }}")
        assert [v for t, v in pairs if t is TokenType.OPERATOR] == ["..", "**", "//"]

    def test_no_operator_after_dot(self, env):
        pairs = token_pairs(env, "{{ user.not }}")
        assert (TokenType.NAME, "not") in pairs

    def test_whitespace_trimming(self, env):
        assert token_pairs(env, "a  \n{{- x -}}\n  b") == [
            (TokenType.TEXT, "a"),
            (TokenType.VAR_START, "{{"),
            (TokenType.NAME, "x"),
            (TokenType.VAR_END, "}}"),
            (TokenType.TEXT, "b"),
            (TokenType.EOF, None),
        ]

    def test_comment_trimming(self, env):
        assert token_pairs(env, "a {#- c -#} b")[:2] == [(TokenType.TEXT, "a"), (TokenType.TEXT, "b")]

    def test_raw_block(self, env):
        assert token_pairs(env, "{% raw %}{{ not parsed }}{% endraw %}") == [
            (TokenType.TEXT, "{{ not parsed }}"),
            (TokenType.EOF, None),
        ]

    def test_line_numbers(self, env):
        tokens = env.tokenize("a\nb\n{{ x }}\n{% if y\n %}")._tokens
        assert [t.lineno for t in tokens if t.type is TokenType.NAME] == [3, 4, 4]

    def test_trimmed_text_starts_on_later_line(self, env):
        tokens = env.tokenize("{{ a -}}\n\nb")._tokens
        text = [t for t in tokens if t.type is TokenType.TEXT][0]
        assert (text.value, text.lineno) == ("b", 3)

    def test_crlf_normalized(self, env):
        assert token_pairs(env, "a\r\nb")[0] == (TokenType.TEXT, "a\nb")

    @pytest.mark.parametrize(
        "source, message, lineno, code",
        [
            ("a\n{{ x", "Unclosed variable.", 2, ErrorCode.UNCLOSED_TAG),
            ("{% if x", "Unclosed block.", 1, ErrorCode.UNCLOSED_TAG),
            ("\n\n{# open", "Unclosed comment.", 3, ErrorCode.UNCLOSED_COMMENT),
            ("{{ (a ] }}", "Unclosed '(' (opened on line 1).", 1, ErrorCode.UNEXPECTED_CHARACTER),
            ("{{ a) }}", "Unexpected ')'.", 1, ErrorCode.UNEXPECTED_CHARACTER),
            ("{{ a @ b }}", "Unexpected character '@'.", 1, ErrorCode.UNEXPECTED_CHARACTER),
            ("{% raw %}x", 'Unexpected end of file: unclosed "raw" block.', 1, ErrorCode.UNCLOSED_BLOCK),
        ],
    )
    def test_errors(self, env, source, message, lineno, code):
        with pytest.raises(TemplateSyntaxError) as info:
            env.tokenize(source, "t.html")
        assert info.value.message == message
        assert info.value.lineno == lineno
        assert info.value.code is code
        assert info.value.name == "t.html"


class TestTokenStream:
    """Cursor behaviour."""

    def test_eof_appended_and_sticky(self):
        stream = TokenStream([Token(TokenType.NAME, "a", 1)])
        assert stream.next().value == "a"
        assert stream.is_eof()
        assert stream.next().type is TokenType.EOF
        assert stream.next().type is TokenType.EOF

    def test_look_and_next_if(self):
        stream = TokenStream([Token(TokenType.NAME, "a", 1), Token(TokenType.NAME, "b", 1)])
        assert stream.look().value == "b"
        assert stream.next_if(TokenType.NAME, "x") is None
        assert stream.next_if(TokenType.NAME, ("a", "z")).value == "a"

    def test_expect_message(self):
        stream = TokenStream([Token(TokenType.NAME, "a", 7)], name="t.html")
        with pytest.raises(TemplateSyntaxError) as info:
            stream.expect(TokenType.PUNCTUATION, "=", "Set needs a value")
        assert info.value.message == (
            "Set needs a value. Unexpected name 'a' (expected punctuation '=')."
        )
        assert info.value.lineno == 7


class TestExpressions:
    """Operator precedence and expression forms."""

    def expr(self, env, source):
        module = parse(env, "{% autoescape false %}{{ " + source + " }}{% endautoescape %}")
        (node,) = module.body.nodes
        (print_,) = node.body.nodes
        return print_.expr

    def test_precedence(self, env):
        node = self.expr(env, "1 + 2 * 3")
        assert isinstance(node, BinaryOp) and node.operator == "+"
        assert isinstance(node.right, BinaryOp) and node.right.operator == "*"

    def test_left_associative(self, env):
        node = self.expr(env, "a - b - c")
        assert node.left.operator == "-"
        assert isinstance(node.right, Name)

    def test_power_right_associative(self, env):
        node = self.expr(env, "a ** b ** c")
        assert isinstance(node.left, Name)
        assert node.right.operator == "**"

    def test_unary_not_binds_tighter_than_comparison(self, env):
        node = self.expr(env, "not a == b")
        assert node.operator == "=="
        assert isinstance(node.left, UnaryOp)

    def test_not_applies_to_and(self, env):
        node = self.expr(env, "not a and b")
        assert node.operator == "and"
        assert node.left.operator == "not"

    def test_unary_minus_binds_tight(self, env):
        node = self.expr(env, "-a + b")
        assert node.operator == "+"
        assert isinstance(node.left, UnaryOp)

    def test_conditional(self, env):
        node = self.expr(env, "a ? b : c")
        assert isinstance(node, Conditional)
        node = self.expr(env, "a ? b")
        assert node.if_false == Const(1, None)

    def test_filter_chain(self, env):
        node = self.expr(env, "name|lower|default('x')")
        assert isinstance(node, Filter) and node.name == "default"
        assert node.node.name == "lower"

    def test_default_marks_operand_lenient(self, env):
        node = self.expr(env, "user.name|default('x')")
        assert node.node.ignore_strict
        assert node.node.node.ignore_strict

    def test_is_not_test(self, env):
        node = self.expr(env, "n is not divisibleby(3)")
        assert isinstance(node, Test)
        assert node.negated and node.name == "divisibleby"

    def test_constants(self, env):
        assert self.expr(env, "true") == Const(1, True)
        assert self.expr(env, "NULL") == Const(1, None)


class TestParser:
    """Statements, inheritance rules and error reporting."""

    def test_module_shape(self, env):
        module = parse(env, "a{% block b %}x{% endblock %}")
        assert isinstance(module, Module)
        assert module.block_names == ("b",)
        assert isinstance(module.body.nodes[1], BlockReference)

    def test_if_branches(self, env):
        module = parse(env, "{% if a %}1{% elif b %}2{% else %}3{% endif %}")
        (node,) = module.body.nodes
        assert isinstance(node, If)
        assert len(node.tests) == 2
        assert node.else_ is not None

    def test_for_pairs(self, env):
        module = parse(env, "{% for k, v in m %}{{ k }}{% else %}-{% endfor %}")
        (node,) = module.body.nodes
        assert isinstance(node, For)
        assert node.targets == ("k", "v")

    def test_print_lineno(self, env):
        module = parse(env, "\n\n{{ x }}")
        assert [n.lineno for n in module.body.nodes if isinstance(n, Print)] == [3]

    def test_unknown_filter_suggestion(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            parse(env, "\n{{ name|uper }}")
        assert info.value.message == "Unknown filter 'uper'. Did you mean 'upper'?"
        assert info.value.lineno == 2
        assert info.value.code is ErrorCode.UNKNOWN_FILTER

    def test_unknown_function(self, env):
        with pytest.raises(TemplateSyntaxError, match="Unknown function 'rnage'. Did you mean 'range'"):
            parse(env, "{{ rnage(1, 2) }}")

    def test_unknown_test(self, env):
        with pytest.raises(TemplateSyntaxError, match="Unknown test 'evn'"):
            parse(env, "{{ 1 is evn }}")

    def test_unknown_tag(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            parse(env, "{% fro x in y %}{% endfor %}")
        assert info.value.message == "Unknown 'fro' tag. Did you mean 'for'?"
        assert info.value.code is ErrorCode.UNKNOWN_TAG

    def test_unclosed_block(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            parse(env, "{% if a %}\nx\n")
        assert info.value.message == "Unexpected end of template."
        assert info.value.code is ErrorCode.UNCLOSED_BLOCK

    def test_mismatched_end_tag(self, env):
        with pytest.raises(TemplateSyntaxError, match="Unexpected 'endfor' tag."):
            parse(env, "{% if a %}{% endfor %}")

    def test_endblock_name_mismatch(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            parse(env, "{% block a %}\n{% endblock b %}")
        assert info.value.message == "Expected endblock for block 'a' (but 'b' given)."
        assert info.value.lineno == 2

    def test_duplicate_block(self, env):
        with pytest.raises(TemplateSyntaxError, match="already been defined line 1"):
            parse(env, "{% block a %}{% endblock %}\n{% block a %}{% endblock %}")

    def test_child_content_outside_blocks(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            parse(env, '{% extends "base.html" %}\n\nstray text')
        assert "cannot include content outside blocks" in info.value.message
        assert info.value.lineno == 1

    def test_child_print_outside_blocks(self, env):
        with pytest.raises(TemplateSyntaxError, match="cannot print outside blocks"):
            parse(env, '{% extends "base.html" %}{{ x }}')

    def test_child_whitespace_allowed(self, env):
        module = parse(env, '{% extends "base.html" %}\n  \n{% block title %}T{% endblock %}\n')
        assert module.parent == Const(1, "base.html")
        assert module.body.nodes == ()

    def test_extends_inside_block(self, env):
        with pytest.raises(TemplateSyntaxError, match="Cannot use 'extends' in a block."):
            parse(env, '{% block a %}{% extends "base.html" %}{% endblock %}')

    def test_multiple_extends(self, env):
        with pytest.raises(TemplateSyntaxError, match="Multiple extends tags are forbidden."):
            parse(env, '{% extends "a" %}{% extends "b" %}')

    def test_error_snippet_shows_line(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            parse(env, "ok\n{{ x|nope }}\nok")
        assert ">  2 | {{ x|nope }}" in str(info.value)

    def test_invalid_autoescape_strategy(self, env):
        with pytest.raises(TemplateSyntaxError, match="must be a string or false"):
            parse(env, "{% autoescape 1 %}{% endautoescape %}")

    def test_text_nodes_carry_lines(self, env):
        module = parse(env, "{% autoescape false %}a\n{{ x }}b{% endautoescape %}")
        (node,) = module.body.nodes
        texts = [n for n in node.body.nodes if isinstance(n, Text)]
        assert [(t.data, t.lineno) for t in texts] == [("a\n", 1), ("b", 2)]
