from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from string import ascii_letters, digits, hexdigits
from typing import (
    Any,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
    final,
)
import enum
import json
import logging
import math
import os
import re
import sys
import time


try:
    # VoxelScript canonically uses re2 for the regular expression builtins.
    import re2
except ImportError:
    # Reasonable fallback if re2 is not installed, e.g. if vx.py is used as a
    # standalone module outside of a virtual environment.
    import re as re2  # type: ignore

logger = logging.getLogger("voxelscript")
logger.addHandler(logging.NullHandler())

# Script calls recurse through the evaluator, several frames per call.
if sys.getrecursionlimit() < 5000:
    sys.setrecursionlimit(5000)

SOURCE_EXTENSIONS = (".voxel", ".vxl")


def escape(text: str) -> str:
    MAPPING = {
        "\t": "\\t",
        "\n": "\\n",
        "\r": "\\r",
        '"': '\\"',
        "\\": "\\\\",
    }
    return "".join([MAPPING.get(c, c) for c in text])


def quote(item: Any) -> str:
    text = str(item)
    return f"`{text}`" if "`" not in text else f'"{text}"'


ValueType = TypeVar("ValueType", bound="Value")


class Value(ABC):
    @staticmethod
    @abstractmethod
    def typename() -> str:
        raise NotImplementedError()

    @abstractmethod
    def __str__(self):
        raise NotImplementedError()

    def nested_str(self) -> str:
        """
        Text of the value when displayed as an element of a container.
        """
        return str(self)


@final
@dataclass
class Null(Value):
    @staticmethod
    def typename() -> str:
        return "null"

    def __hash__(self):
        return 0

    def __eq__(self, other):
        return type(self) is type(other)

    def __str__(self):
        return "null"


@final
@dataclass
class Boolean(Value):
    data: bool

    @staticmethod
    def typename() -> str:
        return "boolean"

    def __hash__(self):
        return hash(self.data)

    def __eq__(self, other):
        if type(self) is not type(other):
            return False
        return self.data == other.data

    def __str__(self):
        return "true" if self.data else "false"


@final
@dataclass
class Number(Value):
    data: float

    @staticmethod
    def typename() -> str:
        return "number"

    def __init__(self, data: Union[int, float]):
        # Numbers are always IEEE-754 doubles, even when constructed from a
        # Python int.
        self.data = float(data)

    def __hash__(self):
        return hash(self.data)

    def __eq__(self, other):
        if type(self) is not type(other):
            return False
        return self.data == other.data

    def __int__(self) -> int:
        return int(self.data)

    def __float__(self) -> float:
        return self.data

    def __str__(self):
        if math.isnan(self.data):
            return "NaN"
        if self.data == +math.inf:
            return "Infinity"
        if self.data == -math.inf:
            return "-Infinity"
        if self.data.is_integer() and abs(self.data) < 1e21:
            return str(int(self.data))
        return repr(self.data)


@final
@dataclass
class String(Value):
    data: str

    @staticmethod
    def typename() -> str:
        return "string"

    def __hash__(self):
        return hash(self.data)

    def __eq__(self, other):
        if type(self) is not type(other):
            return False
        return self.data == other.data

    def __str__(self):
        return self.data

    def nested_str(self) -> str:
        return f'"{escape(self.data)}"'


# Arrays and objects are shared by reference and compare by identity.
@final
@dataclass(eq=False)
class Array(Value):
    elements: list[Value]

    @staticmethod
    def typename() -> str:
        return "array"

    def __str__(self):
        return "[" + ", ".join(x.nested_str() for x in self.elements) + "]"


@final
@dataclass(eq=False)
class Object(Value):
    fields: dict[str, Value]

    @staticmethod
    def typename() -> str:
        return "object"

    def __str__(self):
        if len(self.fields) == 0:
            return "{}"
        elements = ", ".join(f"{k}: {v.nested_str()}" for k, v in self.fields.items())
        return "{" + elements + "}"


@final
@dataclass(eq=False)
class Function(Value):
    ast: "AstExpressionFunction"
    env: "Environment"
    this: Optional[Value] = None
    home: Optional["Class"] = None

    @staticmethod
    def typename() -> str:
        return "function"

    def bind(self, this: Value) -> "Function":
        return Function(self.ast, self.env, this, self.home)

    def __str__(self):
        name = self.ast.name if self.ast.name is not None else "anonymous"
        return f"<fn {name}>"


class Builtin(Value):
    """
    Host function callable from scripts.

    Builtin subclasses should add the builtin name as a class property and
    implement `function`, which receives the evaluated script arguments.
    """

    name: str

    @staticmethod
    def typename() -> str:
        return "function"

    def __str__(self):
        return f"<builtin {self.name}>"

    def call(self, arguments: list[Value]) -> Union[Value, "Thrown"]:
        try:
            result = self.function(arguments)
            if isinstance(result, (Value, Thrown)):
                return result
            # A builtin that forgets to return a value implicitly returns null.
            return Null() if result is None else from_python(result)
        except Exception as e:
            message = f"{e}"
            if len(message) == 0:
                message = f"encountered exception {type(e).__name__}"
            return Thrown(None, String(message))

    @staticmethod
    def expect_argument_count(arguments: list[Value], count: int) -> None:
        if len(arguments) != count:
            raise Exception(
                f"invalid argument count (expected {count}, received {len(arguments)})"
            )

    @staticmethod
    def typed_argument(
        arguments: list[Value], index: int, ty: Type[ValueType]
    ) -> ValueType:
        argument = arguments[index]
        if not isinstance(argument, ty):
            raise Exception(
                f"expected {ty.typename()} value for argument {index}, received {typename(argument)}"
            )
        return argument

    @abstractmethod
    def function(self, arguments: list[Value]) -> Union[Value, "Thrown"]:
        raise NotImplementedError()


class PythonBuiltin(Builtin):
    """
    Builtin wrapping a plain Python callable. Arguments are converted with
    `to_python` and the result is converted back with `from_python`.
    """

    def __init__(self, name: str, callback: Callable[..., Any]):
        self.name = name
        self.callback = callback

    def function(self, arguments: list[Value]) -> Union[Value, "Thrown"]:
        result = self.callback(*[to_python(x) for x in arguments])
        return from_python(result)


@final
@dataclass(eq=False)
class Class(Value):
    name: str
    parent: Optional["Class"]
    env: "Environment"
    methods: dict[str, Function]
    static_methods: dict[str, Function]
    getters: dict[str, Function]
    setters: dict[str, Function]
    properties: list[Tuple[str, Optional["AstExpression"]]]
    static_properties: dict[str, Value]

    @staticmethod
    def typename() -> str:
        return "class"

    def lookup(self, table: str, name: str) -> Optional[Function]:
        # Only the exact class and its direct parent are searched.
        found = getattr(self, table).get(name)
        if found is None and self.parent is not None:
            found = getattr(self.parent, table).get(name)
        return found

    def lineage(self) -> list["Class"]:
        """
        This class followed by every ancestor, nearest first.
        """
        lineage: list[Class] = list()
        klass: Optional[Class] = self
        while klass is not None:
            lineage.append(klass)
            klass = klass.parent
        return lineage

    def __str__(self):
        return f"<class {self.name}>"


@final
@dataclass(eq=False)
class Instance(Value):
    klass: Class
    properties: dict[str, Value]

    @staticmethod
    def typename() -> str:
        return "object"

    def __str__(self):
        elements = ", ".join(
            f"{k}: {v.nested_str()}" for k, v in self.properties.items()
        )
        return f"{self.klass.name} {{{elements}}}"


@final
@dataclass(eq=False)
class Pending(Value):
    """
    Stand-in for the eventual result of an async computation. Resolution is
    synchronous and happens at most once.
    """

    thunk: Optional[Callable[[], Union[Value, "Thrown"]]] = None
    outcome: Optional[Union[Value, "Thrown"]] = None

    @staticmethod
    def typename() -> str:
        return "pending"

    @staticmethod
    def settled(outcome: Union[Value, "Thrown"]) -> "Pending":
        return Pending(None, outcome)

    def resolve(self) -> Union[Value, "Thrown"]:
        if self.thunk is not None:
            self.outcome = self.thunk()
            self.thunk = None
        assert self.outcome is not None
        return self.outcome

    def __str__(self):
        return "<pending>"


@dataclass
class SourceLocation:
    filename: Optional[str]
    line: int
    column: Optional[int] = None

    def __str__(self):
        if self.filename is None:
            return f"line {self.line}"
        return f"{self.filename}, line {self.line}"


class VoxelError(Exception):
    """
    Base class of every error surfaced to code embedding the interpreter.
    """

    location: Optional[SourceLocation]

    @property
    def message(self) -> str:
        raise NotImplementedError()

    @property
    def line(self) -> Optional[int]:
        return self.location.line if self.location is not None else None

    def __str__(self):
        if self.location is None:
            return f"{self.message}"
        return f"[{self.location}] {self.message}"


@dataclass(eq=False)
class LexError(VoxelError):
    location: Optional[SourceLocation]
    why: str

    @property
    def message(self) -> str:
        return self.why

    @property
    def column(self) -> Optional[int]:
        return self.location.column if self.location is not None else None


@dataclass(eq=False)
class ParseError(VoxelError):
    location: Optional[SourceLocation]
    why: str
    kind: Optional["TokenKind"] = None

    @property
    def message(self) -> str:
        return self.why


class EvaluationError(VoxelError):
    def __init__(self, location: Optional[SourceLocation], value: Value):
        self.location = location
        self.value = value
        super().__init__(str(self))

    @property
    def message(self) -> str:
        return str(self.value)


class ControlFlowError(EvaluationError):
    """
    A `break` or `continue` escaped every enclosing loop and switch.
    """


class ScriptError(EvaluationError):
    """
    Runtime error or thrown value that was not caught by the program.
    """


class UndefinedVariableError(ScriptError):
    pass


class ConstantAssignmentError(ScriptError):
    pass


class NotCallableError(ScriptError):
    pass


class ScriptTypeError(ScriptError):
    pass


class MatchError(ScriptError):
    pass


class ModuleError(ScriptError):
    pass


@dataclass
class Return:
    value: Value


@dataclass
class Break:
    location: Optional[SourceLocation]


@dataclass
class Continue:
    location: Optional[SourceLocation]


@dataclass
class Thrown:
    location: Optional[SourceLocation]
    value: Value
    kind: Type[EvaluationError]

    def __init__(
        self,
        location: Optional[SourceLocation],
        value: Union[str, Value],
        kind: Type[EvaluationError] = ScriptError,
    ):
        self.location = location
        self.value = String(value) if isinstance(value, str) else value
        self.kind = kind

    @property
    def catchable(self) -> bool:
        return not issubclass(self.kind, ControlFlowError)

    def exception(self) -> EvaluationError:
        return self.kind(self.location, self.value)

    def __str__(self):
        return f"{self.value}"


ControlFlow = Union[Return, Break, Continue, Thrown]


class TokenKind(enum.Enum):
    # Meta
    EOF = "eof"
    NEWLINE = "newline"
    # Identifiers and Literals
    IDENTIFIER = "identifier"
    NUMBER = "number"
    STRING = "string"
    TEMPLATE = "template"
    # Operators
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    REM = "%"
    POW = "**"
    INCREMENT = "++"
    DECREMENT = "--"
    EQ = "=="
    NE = "!="
    LE = "<="
    GE = ">="
    LT = "<"
    GT = ">"
    SHL = "<<"
    SHR = ">>"
    USHR = ">>>"
    BITAND = "&"
    BITOR = "|"
    BITXOR = "^"
    BITNOT = "~"
    NULLISH = "??"
    OPTIONAL = "?."
    QUESTION = "?"
    PIPE = "|>"
    ARROW = "=>"
    RANGE = ".."
    RANGE_INCLUSIVE = "..="
    SPREAD = "..."
    DOT = "."
    ASSIGN = "="
    ADD_ASSIGN = "+="
    SUB_ASSIGN = "-="
    MUL_ASSIGN = "*="
    DIV_ASSIGN = "/="
    REM_ASSIGN = "%="
    POW_ASSIGN = "**="
    BITAND_ASSIGN = "&="
    BITOR_ASSIGN = "|="
    BITXOR_ASSIGN = "^="
    SHL_ASSIGN = "<<="
    SHR_ASSIGN = ">>="
    AND_ASSIGN = "&&="
    OR_ASSIGN = "||="
    NULLISH_ASSIGN = "??="
    # Delimiters
    COMMA = ","
    COLON = ":"
    SEMICOLON = ";"
    LPAREN = "("
    RPAREN = ")"
    LBRACE = "{"
    RBRACE = "}"
    LBRACKET = "["
    RBRACKET = "]"
    # Keywords
    LET = "let"
    CONST = "const"
    FN = "fn"
    IF = "if"
    ELSE = "else"
    LOOP = "loop"
    FOR = "for"
    WHILE = "while"
    DO = "do"
    IN = "in"
    OF = "of"
    FROM = "from"
    TO = "to"
    STEP = "step"
    RETURN = "return"
    PRINT = "print"
    INPUT = "input"
    TRUE = "true"
    FALSE = "false"
    AND = "and"
    OR = "or"
    NOT = "not"
    BREAK = "break"
    CONTINUE = "continue"
    NULL = "null"
    CLASS = "class"
    EXTENDS = "extends"
    NEW = "new"
    THIS = "this"
    SUPER = "super"
    STATIC = "static"
    TRY = "try"
    CATCH = "catch"
    FINALLY = "finally"
    THROW = "throw"
    SWITCH = "switch"
    MATCH = "match"
    CASE = "case"
    DEFAULT = "default"
    ASYNC = "async"
    AWAIT = "await"
    IMPORT = "import"
    EXPORT = "export"
    AS = "as"
    TYPEOF = "typeof"
    INSTANCEOF = "instanceof"
    DELETE = "delete"
    IS = "is"
    WHEN = "when"

    def __str__(self):
        return self.value


_META_KINDS = (
    TokenKind.EOF,
    TokenKind.NEWLINE,
    TokenKind.IDENTIFIER,
    TokenKind.NUMBER,
    TokenKind.STRING,
    TokenKind.TEMPLATE,
)
_KEYWORD_KINDS = [
    kind for kind in TokenKind if kind.value.isalpha() and kind not in _META_KINDS
]


@dataclass
class Token:
    KEYWORDS = {
        **{str(kind): kind for kind in _KEYWORD_KINDS},
        # Alternate spellings.
        "function": TokenKind.FN,
        "self":     TokenKind.THIS,
        "nil":      TokenKind.NULL,
        "none":     TokenKind.NULL,
    }

    kind: TokenKind
    literal: str
    location: Optional[SourceLocation] = None
    # Parsed payload: float for numbers, str for strings, and a list of
    # str/TemplateSegment for templates.
    value: Any = None

    @property
    def line(self) -> Optional[int]:
        return self.location.line if self.location is not None else None

    @property
    def column(self) -> Optional[int]:
        return self.location.column if self.location is not None else None

    def __str__(self):
        if self.kind == TokenKind.EOF:
            return "end-of-file"
        if self.kind == TokenKind.NEWLINE:
            return "newline"
        return f"{self.literal}"

    @staticmethod
    def lookup_identifier(identifier: str) -> TokenKind:
        return Token.KEYWORDS.get(identifier, TokenKind.IDENTIFIER)


@dataclass
class TemplateSegment:
    """
    Source text of a `${...}` template segment, parsed by the parser.
    """

    source: str
    location: Optional[SourceLocation]


class Lexer:
    EOF_LITERAL = ""
    RE_IDENTIFIER = re.compile(r"[a-zA-Z_]\w*", re.ASCII)
    RE_NUMBER_HEX = re.compile(r"0[xX][0-9a-fA-F_]*", re.ASCII)
    RE_NUMBER_BIN = re.compile(r"0[bB][01_]*", re.ASCII)
    RE_NUMBER_OCT = re.compile(r"0[oO][0-7_]*", re.ASCII)
    RE_NUMBER_DEC = re.compile(r"\d[\d_]*(\.\d[\d_]*)?([eE][+-]?\d+)?", re.ASCII)
    ESCAPES = {
        "n": "\n",
        "t": "\t",
        "r": "\r",
        "0": "\0",
        "\\": "\\",
        '"': '"',
        "'": "'",
        "`": "`",
        "$": "$",
    }
    # Longest operators first so that lexing is maximal munch.
    OPERATORS: list[Tuple[str, TokenKind]] = sorted(
        [
            *[
                (kind.value, kind)
                for kind in TokenKind
                if not kind.value[0].isalpha()
            ],
            ("===", TokenKind.EQ),
            ("!==", TokenKind.NE),
            ("&&", TokenKind.AND),
            ("||", TokenKind.OR),
            ("!", TokenKind.NOT),
        ],
        key=lambda operator: -len(operator[0]),
    )

    def __init__(self, source: str, location: Optional[SourceLocation] = None):
        self.source: str = source
        self.filename: Optional[str] = location.filename if location else None
        self.line: int = location.line if location else 1
        self.column: int = (location.column or 1) if location else 1
        self.position: int = 0

    def _location(self) -> SourceLocation:
        return SourceLocation(self.filename, self.line, self.column)

    def _current_character(self) -> str:
        if self.position >= len(self.source):
            return Lexer.EOF_LITERAL
        return self.source[self.position]

    def _peek_character(self, offset: int = 1) -> str:
        if self.position + offset >= len(self.source):
            return Lexer.EOF_LITERAL
        return self.source[self.position + offset]

    def _is_eof(self) -> bool:
        return self.position >= len(self.source)

    def _advance_character(self) -> None:
        if self._is_eof():
            return
        if self.source[self.position] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.position += 1

    def _advance_characters(self, count: int) -> None:
        for _ in range(count):
            self._advance_character()

    def _expect_character(self, character: str) -> None:
        assert len(character) == 1
        current = self._current_character()
        if self._is_eof():
            raise LexError(
                self._location(),
                f"expected {quote(character)}, found end-of-file",
            )
        if current != character:
            raise LexError(
                self._location(),
                f"expected {quote(character)}, found {quote(current)}",
            )
        self._advance_character()

    def _skip_whitespace_and_comments(self) -> None:
        while not self._is_eof():
            if self._current_character() in " \t\r\f\v":
                self._advance_character()
            elif self.source.startswith("//", self.position) or (
                self._current_character() == "#"
            ):
                # The newline itself is left in place to produce a token.
                while not self._is_eof() and self._current_character() != "\n":
                    self._advance_character()
            elif self.source.startswith("/*", self.position):
                location = self._location()
                end = self.source.find("*/", self.position + 2)
                if end == -1:
                    raise LexError(location, "unterminated block comment")
                self._advance_characters(end + 2 - self.position)
            else:
                return

    def _lex_keyword_or_identifier(self, location: SourceLocation) -> Token:
        match = Lexer.RE_IDENTIFIER.match(self.source, self.position)
        assert match is not None  # guaranteed by caller
        text = match[0]
        self._advance_characters(len(text))
        return Token(Token.lookup_identifier(text), text, location)

    def _lex_number(self, location: SourceLocation) -> Token:
        for regexp, base in (
            (Lexer.RE_NUMBER_HEX, 16),
            (Lexer.RE_NUMBER_BIN, 2),
            (Lexer.RE_NUMBER_OCT, 8),
        ):
            match = regexp.match(self.source, self.position)
            if match is None:
                continue
            text = match[0]
            digits_only = text[2:].replace("_", "")
            if len(digits_only) == 0:
                raise LexError(location, f"invalid number literal {quote(text)}")
            self._advance_characters(len(text))
            return Token(TokenKind.NUMBER, text, location, float(int(digits_only, base)))
        match = Lexer.RE_NUMBER_DEC.match(self.source, self.position)
        assert match is not None  # guaranteed by caller
        text = match[0]
        self._advance_characters(len(text))
        return Token(TokenKind.NUMBER, text, location, float(text.replace("_", "")))

    def _lex_hex_escape(self, count: int, location: SourceLocation) -> str:
        sequence = self.source[self.position : self.position + count]
        if len(sequence) != count or any(c not in hexdigits for c in sequence):
            raise LexError(
                location,
                f"expected hexadecimal escape sequence, found {quote(sequence)}",
            )
        self._advance_characters(count)
        return chr(int(sequence, 16))

    def _lex_escape(self) -> str:
        location = self._location()
        self._expect_character("\\")
        if self._is_eof():
            raise LexError(location, "expected escape sequence, found end-of-file")
        character = self._current_character()
        self._advance_character()
        if character in Lexer.ESCAPES:
            return Lexer.ESCAPES[character]
        if character == "x":
            return self._lex_hex_escape(2, location)
        if character == "u":
            return self._lex_hex_escape(4, location)
        # Unknown escapes produce the escaped character itself.
        return character

    def _lex_string(self, location: SourceLocation) -> Token:
        start = self.position
        terminator = self._current_character()
        self._advance_character()
        characters: list[str] = list()
        while True:
            if self._is_eof():
                raise LexError(location, "unterminated string literal")
            character = self._current_character()
            if character == terminator:
                self._advance_character()
                break
            if character == "\\":
                characters.append(self._lex_escape())
                continue
            characters.append(character)
            self._advance_character()
        literal = self.source[start : self.position]
        return Token(TokenKind.STRING, literal, location, "".join(characters))

    def _lex_template_segment(self, location: SourceLocation) -> str:
        # Balanced-brace scan for the end of a `${...}` segment. Quoted text
        # inside the segment is skipped so that braces within strings do not
        # count towards the nesting depth.
        start = self.position
        depth = 1
        while True:
            if self._is_eof():
                raise LexError(location, "unterminated template expression")
            character = self._current_character()
            if character in "\"'`":
                self._advance_character()
                while not self._is_eof() and self._current_character() != character:
                    if self._current_character() == "\\":
                        self._advance_character()
                    self._advance_character()
                self._advance_character()
                continue
            if character == "{":
                depth += 1
            if character == "}":
                depth -= 1
                if depth == 0:
                    source = self.source[start : self.position]
                    self._advance_character()
                    return source
            self._advance_character()

    def _lex_template(self, location: SourceLocation) -> Token:
        start = self.position
        self._expect_character("`")
        template: list[Union[str, TemplateSegment]] = list()
        text: list[str] = list()
        while True:
            if self._is_eof():
                raise LexError(location, "unterminated template literal")
            character = self._current_character()
            if character == "`":
                self._advance_character()
                break
            if character == "\\":
                text.append(self._lex_escape())
                continue
            if character == "$" and self._peek_character() == "{":
                if len(text) != 0:
                    template.append("".join(text))
                    text = list()
                self._advance_characters(2)
                segment_location = self._location()
                source = self._lex_template_segment(location)
                template.append(TemplateSegment(source, segment_location))
                continue
            text.append(character)
            self._advance_character()
        if len(text) != 0:
            template.append("".join(text))
        literal = self.source[start : self.position]
        return Token(TokenKind.TEMPLATE, literal, location, template)

    def next_token(self) -> Token:
        self._skip_whitespace_and_comments()
        location = self._location()

        if self._is_eof():
            return Token(TokenKind.EOF, Lexer.EOF_LITERAL, location)

        character = self._current_character()
        if character == "\n":
            self._advance_character()
            return Token(TokenKind.NEWLINE, "\n", location)

        # Literals, Identifiers, and Keywords
        if character in "\"'":
            return self._lex_string(location)
        if character == "`":
            return self._lex_template(location)
        if character in ascii_letters or character == "_":
            return self._lex_keyword_or_identifier(location)
        if character in digits:
            return self._lex_number(location)

        # Operators and Delimiters
        for literal, kind in Lexer.OPERATORS:
            if not self.source.startswith(literal, self.position):
                continue
            if kind == TokenKind.OPTIONAL and self._peek_character(2) in digits:
                continue  # Ternary followed by a number, e.g. `x ?.5 : 1`.
            self._advance_characters(len(literal))
            return Token(kind, literal, location)

        raise LexError(location, f"unexpected character {quote(character)}")


def tokenize(source: str, filename: Optional[str] = None) -> list[Token]:
    """
    Convert source text into tokens, ending with an EOF token.
    Raises LexError on the first malformed token.
    """
    return _tokenize(Lexer(source, SourceLocation(filename, 1, 1)))


def _tokenize(lexer: Lexer) -> list[Token]:
    tokens: list[Token] = list()
    while True:
        token = lexer.next_token()
        tokens.append(token)
        if token.kind == TokenKind.EOF:
            return tokens


THIS = "this"
SUPER = "super"


class Environment:
    def __init__(
        self, outer: Optional["Environment"] = None, module: Optional["Module"] = None
    ):
        self.outer: Optional["Environment"] = outer
        self.store: dict[str, Value] = dict()
        self.constants: set[str] = set()
        if module is None and outer is not None:
            module = outer.module
        self.module: Optional["Module"] = module

    def let(self, name: str, value: Value, constant: bool = False) -> None:
        self.store[name] = value
        if constant:
            self.constants.add(name)
        else:
            self.constants.discard(name)

    def get(self, name: str) -> Optional[Value]:
        value = self.store.get(name, None)
        if value is None and self.outer is not None:
            return self.outer.get(name)
        return value

    def lookup(self, name: str) -> Optional["Environment"]:
        """
        Innermost environment of the chain that binds `name`.
        """
        if name in self.store:
            return self
        if self.outer is not None:
            return self.outer.lookup(name)
        return None

    def assign(
        self, location: Optional[SourceLocation], name: str, value: Value
    ) -> Optional[Thrown]:
        env = self.lookup(name)
        if env is None:
            return Thrown(
                location,
                f"identifier {quote(name)} is not defined",
                UndefinedVariableError,
            )
        if name in env.constants:
            return Thrown(
                location,
                f"attempted to reassign constant {quote(name)}",
                ConstantAssignmentError,
            )
        env.store[name] = value
        return None


@dataclass(eq=False)
class Module:
    interpreter: "Interpreter"
    path: Optional[str]
    directory: str
    exports: dict[str, Value] = field(default_factory=dict)


def typename(value: Value) -> str:
    if isinstance(value, Instance):
        return value.klass.name
    return value.typename()


def truthy(value: Value) -> bool:
    if isinstance(value, Null):
        return False
    if isinstance(value, Boolean):
        return value.data
    if isinstance(value, Number):
        return value.data != 0 and not math.isnan(value.data)
    if isinstance(value, String):
        return len(value.data) != 0
    return True


def to_python(value: Value) -> Any:
    """
    Convert a script value into the equivalent plain Python object. Values
    with no Python equivalent (functions, classes, instances) are returned
    unchanged.
    """
    if isinstance(value, Null):
        return None
    if isinstance(value, Boolean):
        return value.data
    if isinstance(value, Number):
        if value.data.is_integer():
            return int(value.data)
        return value.data
    if isinstance(value, String):
        return value.data
    if isinstance(value, Array):
        return [to_python(x) for x in value.elements]
    if isinstance(value, Object):
        return {k: to_python(v) for k, v in value.fields.items()}
    return value


def from_python(data: Any) -> Value:
    if isinstance(data, Value):
        return data
    if data is None:
        return Null()
    if isinstance(data, bool):
        return Boolean(data)
    if isinstance(data, (int, float)):
        return Number(data)
    if isinstance(data, str):
        return String(data)
    if isinstance(data, (list, tuple)):
        return Array([from_python(x) for x in data])
    if isinstance(data, dict):
        return Object({str(k): from_python(v) for k, v in data.items()})
    raise TypeError(f"cannot convert host value of type {type(data).__name__}")


def to_int32(number: float) -> int:
    if math.isnan(number) or math.isinf(number):
        return 0
    n = int(number) & 0xFFFFFFFF
    return n - 0x100000000 if n >= 0x80000000 else n


def to_uint32(number: float) -> int:
    return to_int32(number) & 0xFFFFFFFF


def divide(lhs: float, rhs: float) -> float:
    if rhs == 0:
        if lhs == 0 or math.isnan(lhs):
            return math.nan
        return math.copysign(math.inf, lhs) * math.copysign(1, rhs)
    return lhs / rhs


def remainder(lhs: float, rhs: float) -> float:
    try:
        return math.fmod(lhs, rhs)
    except ValueError:
        return math.nan


def power(lhs: float, rhs: float) -> float:
    try:
        return math.pow(lhs, rhs)
    except OverflowError:
        odd = rhs.is_integer() and int(rhs) % 2 == 1
        return -math.inf if lhs < 0 and odd else math.inf
    except ValueError:
        return math.inf if lhs == 0 else math.nan


ARITHMETIC: dict[TokenKind, Callable[[float, float], float]] = {
    TokenKind.SUB: lambda a, b: a - b,
    TokenKind.MUL: lambda a, b: a * b,
    TokenKind.DIV: divide,
    TokenKind.REM: remainder,
    TokenKind.POW: power,
    TokenKind.BITAND: lambda a, b: to_int32(a) & to_int32(b),
    TokenKind.BITOR: lambda a, b: to_int32(a) | to_int32(b),
    TokenKind.BITXOR: lambda a, b: to_int32(a) ^ to_int32(b),
    TokenKind.SHL: lambda a, b: to_int32(to_int32(a) << (to_uint32(b) & 31)),
    TokenKind.SHR: lambda a, b: to_int32(a) >> (to_uint32(b) & 31),
    TokenKind.USHR: lambda a, b: to_uint32(a) >> (to_uint32(b) & 31),
}

COMPARISONS: dict[TokenKind, Callable[[Any, Any], bool]] = {
    TokenKind.LT: lambda a, b: a < b,
    TokenKind.GT: lambda a, b: a > b,
    TokenKind.LE: lambda a, b: a <= b,
    TokenKind.GE: lambda a, b: a >= b,
}

# Compound assignment operator to the binary operator it applies.
COMPOUND_ASSIGNMENTS: dict[TokenKind, TokenKind] = {
    TokenKind.ADD_ASSIGN: TokenKind.ADD,
    TokenKind.SUB_ASSIGN: TokenKind.SUB,
    TokenKind.MUL_ASSIGN: TokenKind.MUL,
    TokenKind.DIV_ASSIGN: TokenKind.DIV,
    TokenKind.REM_ASSIGN: TokenKind.REM,
    TokenKind.POW_ASSIGN: TokenKind.POW,
    TokenKind.BITAND_ASSIGN: TokenKind.BITAND,
    TokenKind.BITOR_ASSIGN: TokenKind.BITOR,
    TokenKind.BITXOR_ASSIGN: TokenKind.BITXOR,
    TokenKind.SHL_ASSIGN: TokenKind.SHL,
    TokenKind.SHR_ASSIGN: TokenKind.SHR,
}

ASSIGNMENTS = {
    TokenKind.ASSIGN,
    TokenKind.AND_ASSIGN,
    TokenKind.OR_ASSIGN,
    TokenKind.NULLISH_ASSIGN,
    *COMPOUND_ASSIGNMENTS.keys(),
}


def binary_operation(
    location: Optional[SourceLocation], kind: TokenKind, lhs: Value, rhs: Value
) -> Union[Value, Thrown]:
    if kind == TokenKind.EQ:
        return Boolean(lhs == rhs)
    if kind == TokenKind.NE:
        return Boolean(lhs != rhs)
    if kind == TokenKind.ADD:
        if isinstance(lhs, String) or isinstance(rhs, String):
            return String(str(lhs) + str(rhs))
        if isinstance(lhs, Number) and isinstance(rhs, Number):
            return Number(lhs.data + rhs.data)
    elif kind in COMPARISONS:
        if (isinstance(lhs, Number) and isinstance(rhs, Number)) or (
            isinstance(lhs, String) and isinstance(rhs, String)
        ):
            return Boolean(COMPARISONS[kind](lhs.data, rhs.data))
    elif kind in ARITHMETIC:
        if isinstance(lhs, Number) and isinstance(rhs, Number):
            return Number(ARITHMETIC[kind](lhs.data, rhs.data))
    return Thrown(
        location,
        f"attempted {kind} operation with types {quote(typename(lhs))} and {quote(typename(rhs))}",
        ScriptTypeError,
    )


def get_property(
    location: Optional[SourceLocation], store: Value, name: str
) -> Union[Value, Thrown]:
    if isinstance(store, Instance):
        if name in store.properties:
            return store.properties[name]
        getter = store.klass.lookup("getters", name)
        if getter is not None:
            return call(location, getter, [], store)
        method = store.klass.lookup("methods", name)
        if method is not None:
            return method.bind(store)
        return Null()
    if isinstance(store, Object):
        return store.fields.get(name, Null())
    if isinstance(store, Class):
        method = store.lookup("static_methods", name)
        if method is not None:
            return method.bind(store)
        for klass in store.lineage()[:2]:
            if name in klass.static_properties:
                return klass.static_properties[name]
        if name == "name":
            return String(store.name)
        return Null()
    if isinstance(store, (Array, String)):
        if name == "length":
            data = store.elements if isinstance(store, Array) else store.data
            return Number(len(data))
        return Null()
    if isinstance(store, Null):
        return Thrown(
            location,
            f"attempted to access property {quote(name)} of null",
            ScriptTypeError,
        )
    return Thrown(
        location,
        f"attempted to access property {quote(name)} of type {quote(typename(store))}",
        ScriptTypeError,
    )


def set_property(
    location: Optional[SourceLocation], store: Value, name: str, value: Value
) -> Optional[Thrown]:
    if isinstance(store, Instance):
        setter = store.klass.lookup("setters", name)
        if setter is not None:
            result = call(location, setter, [value], store)
            return result if isinstance(result, Thrown) else None
        store.properties[name] = value
        return None
    if isinstance(store, Object):
        store.fields[name] = value
        return None
    if isinstance(store, Class):
        store.static_properties[name] = value
        return None
    return Thrown(
        location,
        f"attempted to assign property {quote(name)} of type {quote(typename(store))}",
        ScriptTypeError,
    )


def property_key(field: Value) -> Optional[str]:
    if isinstance(field, String):
        return field.data
    if isinstance(field, Number):
        return str(field)
    return None


def get_index(
    location: Optional[SourceLocation], store: Value, field: Value
) -> Union[Value, Thrown]:
    if isinstance(store, (Array, String)) and isinstance(field, Number):
        data = store.elements if isinstance(store, Array) else store.data
        if not field.data.is_integer() or not 0 <= field.data < len(data):
            return Null()
        element = data[int(field.data)]
        return element if isinstance(element, Value) else String(element)
    key = property_key(field)
    if isinstance(store, (Object, Instance, Class)) and key is not None:
        return get_property(location, store, key)
    return Thrown(
        location,
        f"attempted access into type {quote(typename(store))} with type {quote(typename(field))}",
        ScriptTypeError,
    )


def set_index(
    location: Optional[SourceLocation], store: Value, field: Value, value: Value
) -> Optional[Thrown]:
    if isinstance(store, Array) and isinstance(field, Number):
        if not field.data.is_integer() or field.data < 0:
            return Thrown(
                location,
                f"invalid array access with index {field}",
                ScriptTypeError,
            )
        index = int(field.data)
        while len(store.elements) <= index:
            store.elements.append(Null())
        store.elements[index] = value
        return None
    key = property_key(field)
    if isinstance(store, (Object, Instance, Class)) and key is not None:
        return set_property(location, store, key, value)
    return Thrown(
        location,
        f"attempted access into type {quote(typename(store))} with type {quote(typename(field))}",
        ScriptTypeError,
    )


def is_instance_of(value: Value, klass: Class) -> bool:
    return isinstance(value, Instance) and any(
        ancestor is klass for ancestor in value.klass.lineage()
    )


def iterate(
    location: Optional[SourceLocation], iterable: Value, keys: bool
) -> Union[list[Value], Thrown]:
    """
    Values visited by `for x in X` (keys=True) or `for x of X` (keys=False).
    Arrays yield their elements and strings their characters. Only `in`
    accepts objects and instances, yielding their keys.
    """
    if isinstance(iterable, Array):
        return list(iterable.elements)
    if isinstance(iterable, String):
        return [String(c) for c in iterable.data]
    if keys and isinstance(iterable, Object):
        return [String(k) for k in iterable.fields.keys()]
    if keys and isinstance(iterable, Instance):
        return [String(k) for k in iterable.properties.keys()]
    return Thrown(
        location,
        f"attempted iteration over type {quote(typename(iterable))}",
        ScriptTypeError,
    )


class AstNode(ABC):
    location: Optional[SourceLocation]


class AstExpression(AstNode):
    location: Optional[SourceLocation]

    @abstractmethod
    def eval(self, env: Environment) -> Union[Value, Thrown]:
        raise NotImplementedError()


class AstStatement(AstNode):
    location: Optional[SourceLocation]

    @abstractmethod
    def eval(self, env: Environment) -> Optional[ControlFlow]:
        raise NotImplementedError()


class AstValueStatement(AstStatement):
    """
    Statement that produces a value: the value of an expression statement,
    or the value bound by a declaration or assignment.
    """

    location: Optional[SourceLocation]

    @abstractmethod
    def evaluate(self, env: Environment) -> Union[Value, Thrown]:
        raise NotImplementedError()

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        result = self.evaluate(env)
        if isinstance(result, Thrown):
            return result
        return None


def evaluate_statements(
    statements: list[AstStatement], env: Environment
) -> Tuple[Optional[Value], Optional[ControlFlow]]:
    """
    Run statements in order, stopping at the first abrupt completion. Also
    produces the value of the last value statement that was run.
    """
    value: Optional[Value] = None
    for statement in statements:
        if isinstance(statement, AstValueStatement):
            result = statement.evaluate(env)
            if isinstance(result, Thrown):
                return (value, result)
            value = result
            continue
        signal = statement.eval(env)
        if signal is not None:
            return (value, signal)
    return (value, None)


@final
@dataclass
class AstProgram(AstNode):
    location: Optional[SourceLocation]
    statements: list[AstStatement]

    def eval(self, env: Environment) -> Optional[Union[Value, Thrown]]:
        (value, signal) = evaluate_statements(self.statements, env)
        if isinstance(signal, Return):
            return signal.value
        if isinstance(signal, Break):
            return Thrown(
                signal.location,
                "attempted to break outside of a loop",
                ControlFlowError,
            )
        if isinstance(signal, Continue):
            return Thrown(
                signal.location,
                "attempted to continue outside of a loop",
                ControlFlowError,
            )
        if isinstance(signal, Thrown):
            return signal
        return value


@final
@dataclass
class AstExpressionIdentifier(AstExpression):
    location: Optional[SourceLocation]
    name: str

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        value: Optional[Value] = env.get(self.name)
        if value is None:
            return Thrown(
                self.location,
                f"identifier {quote(self.name)} is not defined",
                UndefinedVariableError,
            )
        return value


@final
@dataclass
class AstExpressionLiteral(AstExpression):
    """
    Null, boolean, number, or string literal.
    """

    location: Optional[SourceLocation]
    value: Value

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        return self.value


@final
@dataclass
class AstExpressionTemplate(AstExpression):
    location: Optional[SourceLocation]
    template: list[Union[str, AstExpression]]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        result = ""
        for element in self.template:
            if isinstance(element, str):
                result += element
                continue
            value = element.eval(env)
            if isinstance(value, Thrown):
                return value
            result += str(value)
        return String(result)


@final
@dataclass
class AstExpressionSpread(AstExpression):
    location: Optional[SourceLocation]
    expression: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        return self.expression.eval(env)

    def spread(self, env: Environment) -> Union[list[Value], Thrown]:
        value = self.eval(env)
        if isinstance(value, Thrown):
            return value
        if isinstance(value, Array):
            return list(value.elements)
        if isinstance(value, String):
            return [String(c) for c in value.data]
        return Thrown(
            self.location,
            f"attempted to spread type {quote(typename(value))}",
            ScriptTypeError,
        )


def evaluate_arguments(
    arguments: list[AstExpression], env: Environment
) -> Union[list[Value], Thrown]:
    values: list[Value] = list()
    for argument in arguments:
        if isinstance(argument, AstExpressionSpread):
            spread = argument.spread(env)
            if isinstance(spread, Thrown):
                return spread
            values.extend(spread)
            continue
        value = argument.eval(env)
        if isinstance(value, Thrown):
            return value
        values.append(value)
    return values


@final
@dataclass
class AstExpressionArray(AstExpression):
    location: Optional[SourceLocation]
    elements: list[AstExpression]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        elements = evaluate_arguments(self.elements, env)
        if isinstance(elements, Thrown):
            return elements
        return Array(elements)


@final
@dataclass
class AstObjectEntry:
    # A missing key marks a spread entry.
    key: Optional[AstExpression]
    value: AstExpression


@final
@dataclass
class AstExpressionObject(AstExpression):
    location: Optional[SourceLocation]
    entries: list[AstObjectEntry]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        fields: dict[str, Value] = dict()
        for entry in self.entries:
            if entry.key is None:
                spread = entry.value.eval(env)
                if isinstance(spread, Thrown):
                    return spread
                if isinstance(spread, Object):
                    fields.update(spread.fields)
                elif isinstance(spread, Instance):
                    fields.update(spread.properties)
                elif not isinstance(spread, Null):
                    return Thrown(
                        self.location,
                        f"attempted to spread type {quote(typename(spread))} into an object",
                        ScriptTypeError,
                    )
                continue
            key = entry.key.eval(env)
            if isinstance(key, Thrown):
                return key
            name = property_key(key)
            if name is None:
                return Thrown(
                    self.location,
                    f"invalid object key of type {quote(typename(key))}",
                    ScriptTypeError,
                )
            value = entry.value.eval(env)
            if isinstance(value, Thrown):
                return value
            fields[name] = value
        return Object(fields)


@final
@dataclass
class AstParameter(AstNode):
    location: Optional[SourceLocation]
    name: str
    default: Optional[AstExpression] = None
    rest: bool = False


@final
@dataclass
class AstExpressionFunction(AstExpression):
    location: Optional[SourceLocation]
    name: Optional[str]
    parameters: list[AstParameter]
    body: "AstBlock"
    is_async: bool = False
    is_arrow: bool = False

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        return Function(self, env)


@final
@dataclass
class AstExpressionThis(AstExpression):
    location: Optional[SourceLocation]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        value = env.get(THIS)
        return value if value is not None else Null()


@final
@dataclass
class AstExpressionSuper(AstExpression):
    location: Optional[SourceLocation]

    def context(self, env: Environment) -> Union[Tuple[Class, Value], Thrown]:
        """
        Parent class of the enclosing method's class and the current `this`.
        """
        home = env.get(SUPER)
        if not isinstance(home, Class) or home.parent is None:
            return Thrown(
                self.location,
                "attempted to use super outside of a subclass method",
                ScriptTypeError,
            )
        this = env.get(THIS)
        return (home.parent, this if this is not None else Null())

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        context = self.context(env)
        if isinstance(context, Thrown):
            return context
        return context[0]


@final
@dataclass
class AstExpressionUnary(AstExpression):
    location: Optional[SourceLocation]
    operator: TokenKind
    expression: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        value = self.expression.eval(env)
        if isinstance(value, Thrown):
            return value
        if self.operator == TokenKind.NOT:
            return Boolean(not truthy(value))
        if isinstance(value, Number):
            if self.operator == TokenKind.SUB:
                return Number(-value.data)
            if self.operator == TokenKind.ADD:
                return Number(+value.data)
            if self.operator == TokenKind.BITNOT:
                return Number(~to_int32(value.data))
        return Thrown(
            self.location,
            f"attempted unary {self.operator} operation with type {quote(typename(value))}",
            ScriptTypeError,
        )


@final
@dataclass
class AstExpressionTypeof(AstExpression):
    location: Optional[SourceLocation]
    expression: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        if isinstance(self.expression, AstExpressionIdentifier):
            if env.get(self.expression.name) is None:
                return String("undefined")
        value = self.expression.eval(env)
        if isinstance(value, Thrown):
            return value
        return String(value.typename())


@final
@dataclass
class AstExpressionDelete(AstExpression):
    location: Optional[SourceLocation]
    target: Union["AstExpressionMember", "AstExpressionIndex"]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        store = self.target.store.eval(env)
        if isinstance(store, Thrown):
            return store
        if isinstance(self.target, AstExpressionMember):
            key: Optional[str] = self.target.name
        else:
            field = self.target.field.eval(env)
            if isinstance(field, Thrown):
                return field
            key = property_key(field)
        if isinstance(store, Object) and key is not None:
            return Boolean(store.fields.pop(key, None) is not None)
        if isinstance(store, Instance) and key is not None:
            return Boolean(store.properties.pop(key, None) is not None)
        return Thrown(
            self.location,
            f"attempted delete on type {quote(typename(store))}",
            ScriptTypeError,
        )


@final
@dataclass
class AstExpressionAwait(AstExpression):
    location: Optional[SourceLocation]
    expression: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        value = self.expression.eval(env)
        if isinstance(value, Pending):
            return value.resolve()
        return value


@dataclass
class Place:
    """
    Assignable location produced by an identifier, member, or index
    expression. Subexpressions of the target are evaluated exactly once.
    """

    location: Optional[SourceLocation]
    env: Environment
    name: Optional[str] = None
    store: Optional[Value] = None
    field: Optional[Value] = None

    def get(self) -> Union[Value, Thrown]:
        if self.store is None:
            assert self.name is not None
            return AstExpressionIdentifier(self.location, self.name).eval(self.env)
        if self.name is not None:
            return get_property(self.location, self.store, self.name)
        assert self.field is not None
        return get_index(self.location, self.store, self.field)

    def set(self, value: Value) -> Optional[Thrown]:
        if self.store is None:
            assert self.name is not None
            return self.env.assign(self.location, self.name, value)
        if self.name is not None:
            return set_property(self.location, self.store, self.name, value)
        assert self.field is not None
        return set_index(self.location, self.store, self.field, value)


def evaluate_place(target: AstExpression, env: Environment) -> Union[Place, Thrown]:
    if isinstance(target, AstExpressionIdentifier):
        return Place(target.location, env, name=target.name)
    if isinstance(target, AstExpressionMember):
        store = target.store.eval(env)
        if isinstance(store, Thrown):
            return store
        return Place(target.location, env, name=target.name, store=store)
    if isinstance(target, AstExpressionIndex):
        store = target.store.eval(env)
        if isinstance(store, Thrown):
            return store
        field = target.field.eval(env)
        if isinstance(field, Thrown):
            return field
        return Place(target.location, env, store=store, field=field)
    return Thrown(target.location, "attempted assignment to non-lvalue")


def is_place(expression: AstExpression) -> bool:
    return isinstance(
        expression, (AstExpressionIdentifier, AstExpressionMember, AstExpressionIndex)
    )


@final
@dataclass
class AstExpressionUpdate(AstExpression):
    """
    Prefix or postfix increment and decrement.
    """

    location: Optional[SourceLocation]
    operator: TokenKind
    target: AstExpression
    prefix: bool

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        place = evaluate_place(self.target, env)
        if isinstance(place, Thrown):
            return place
        old = place.get()
        if isinstance(old, Thrown):
            return old
        if not isinstance(old, Number):
            return Thrown(
                self.location,
                f"attempted {self.operator} operation with type {quote(typename(old))}",
                ScriptTypeError,
            )
        delta = 1 if self.operator == TokenKind.INCREMENT else -1
        new = Number(old.data + delta)
        error = place.set(new)
        if error is not None:
            return error
        return new if self.prefix else old


@final
@dataclass
class AstExpressionBinary(AstExpression):
    """
    Arithmetic, bitwise, equality, or comparison operation.
    """

    location: Optional[SourceLocation]
    operator: TokenKind
    lhs: AstExpression
    rhs: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Thrown):
            return lhs
        rhs = self.rhs.eval(env)
        if isinstance(rhs, Thrown):
            return rhs
        return binary_operation(self.location, self.operator, lhs, rhs)


@final
@dataclass
class AstExpressionAnd(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    rhs: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Thrown) or not truthy(lhs):
            return lhs
        return self.rhs.eval(env)


@final
@dataclass
class AstExpressionOr(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    rhs: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Thrown) or truthy(lhs):
            return lhs
        return self.rhs.eval(env)


@final
@dataclass
class AstExpressionNullish(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    rhs: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Null):
            return self.rhs.eval(env)
        return lhs


@final
@dataclass
class AstExpressionTernary(AstExpression):
    location: Optional[SourceLocation]
    condition: AstExpression
    consequent: AstExpression
    alternate: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        condition = self.condition.eval(env)
        if isinstance(condition, Thrown):
            return condition
        if truthy(condition):
            return self.consequent.eval(env)
        return self.alternate.eval(env)


@final
@dataclass
class AstExpressionPipe(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    rhs: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Thrown):
            return lhs
        rhs = self.rhs.eval(env)
        if isinstance(rhs, Thrown):
            return rhs
        return call(self.location, rhs, [lhs])


@final
@dataclass
class AstExpressionRange(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    rhs: AstExpression
    inclusive: bool

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Thrown):
            return lhs
        rhs = self.rhs.eval(env)
        if isinstance(rhs, Thrown):
            return rhs
        if not (isinstance(lhs, Number) and isinstance(rhs, Number)):
            return Thrown(
                self.location,
                f"attempted range with types {quote(typename(lhs))} and {quote(typename(rhs))}",
                ScriptTypeError,
            )
        if not (math.isfinite(lhs.data) and math.isfinite(rhs.data)):
            return Thrown(self.location, "attempted range with non-finite bound")
        # Ranges count down when the start is above the end.
        step = 1 if lhs.data <= rhs.data else -1
        elements: list[Value] = list()
        current = lhs.data
        while (current < rhs.data) if step > 0 else (current > rhs.data):
            elements.append(Number(current))
            current += step
        if self.inclusive and current == rhs.data:
            elements.append(Number(current))
        return Array(elements)


@final
@dataclass
class AstExpressionInstanceof(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    rhs: AstExpression

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        lhs = self.lhs.eval(env)
        if isinstance(lhs, Thrown):
            return lhs
        rhs = self.rhs.eval(env)
        if isinstance(rhs, Thrown):
            return rhs
        if not isinstance(rhs, Class):
            return Thrown(
                self.location,
                f"attempted instanceof with non-class type {quote(typename(rhs))}",
                ScriptTypeError,
            )
        return Boolean(is_instance_of(lhs, rhs))


@final
@dataclass
class AstExpressionMember(AstExpression):
    location: Optional[SourceLocation]
    store: AstExpression
    name: str
    optional: bool = False

    def access(self, store: Value, env: Environment) -> Union[Value, Thrown]:
        return get_property(self.location, store, self.name)

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        if isinstance(self.store, AstExpressionSuper):
            context = self.store.context(env)
            if isinstance(context, Thrown):
                return context
            (parent, this) = context
            method = parent.lookup("methods", self.name)
            if method is None:
                return Thrown(
                    self.location,
                    f"parent class {quote(parent.name)} has no method {quote(self.name)}",
                    ScriptTypeError,
                )
            return method.bind(this)
        store = self.store.eval(env)
        if isinstance(store, Thrown):
            return store
        if self.optional and isinstance(store, Null):
            return store
        return self.access(store, env)


@final
@dataclass
class AstExpressionIndex(AstExpression):
    location: Optional[SourceLocation]
    store: AstExpression
    field: AstExpression
    optional: bool = False

    def access(self, store: Value, env: Environment) -> Union[Value, Thrown]:
        field = self.field.eval(env)
        if isinstance(field, Thrown):
            return field
        return get_index(self.location, store, field)

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        store = self.store.eval(env)
        if isinstance(store, Thrown):
            return store
        if self.optional and isinstance(store, Null):
            return store
        return self.access(store, env)


@final
@dataclass
class AstExpressionCall(AstExpression):
    location: Optional[SourceLocation]
    function: AstExpression
    arguments: list[AstExpression]
    optional: bool = False

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        if isinstance(self.function, AstExpressionSuper):
            return self.eval_super_constructor(env)

        this: Optional[Value] = None
        function: Union[Value, Thrown]
        if isinstance(
            self.function, (AstExpressionMember, AstExpressionIndex)
        ) and not isinstance(self.function.store, AstExpressionSuper):
            # Method call syntax binds the receiver as `this`.
            store = self.function.store.eval(env)
            if isinstance(store, Thrown):
                return store
            if self.function.optional and isinstance(store, Null):
                return store
            function = self.function.access(store, env)
            this = store
        else:
            function = self.function.eval(env)
        if isinstance(function, Thrown):
            return function
        if self.optional and isinstance(function, Null):
            return function

        arguments = evaluate_arguments(self.arguments, env)
        if isinstance(arguments, Thrown):
            return arguments
        return call(self.location, function, arguments, this)

    def eval_super_constructor(self, env: Environment) -> Union[Value, Thrown]:
        assert isinstance(self.function, AstExpressionSuper)
        context = self.function.context(env)
        if isinstance(context, Thrown):
            return context
        (parent, this) = context
        arguments = evaluate_arguments(self.arguments, env)
        if isinstance(arguments, Thrown):
            return arguments
        constructor = parent.lookup("methods", "constructor")
        if constructor is None:
            return Null()
        result = call(self.location, constructor, arguments, this)
        if isinstance(result, Thrown):
            return result
        return Null()


def instantiate(
    location: Optional[SourceLocation], klass: Value, arguments: list[Value]
) -> Union[Value, Thrown]:
    if not isinstance(klass, Class):
        return Thrown(
            location,
            f"attempted to instantiate non-class type {quote(typename(klass))}",
            NotCallableError,
        )
    instance = Instance(klass, dict())
    # Default properties are seeded root-most ancestor first so that child
    # defaults override parent defaults.
    for ancestor in reversed(klass.lineage()):
        for name, expression in ancestor.properties:
            if expression is None:
                instance.properties[name] = Null()
                continue
            env = Environment(ancestor.env)
            env.let(THIS, instance)
            value = expression.eval(env)
            if isinstance(value, Thrown):
                return value
            instance.properties[name] = value
    constructor = klass.lookup("methods", "constructor")
    if constructor is not None:
        result = call(location, constructor, arguments, instance)
        if isinstance(result, Thrown):
            return result
    return instance


@final
@dataclass
class AstExpressionNew(AstExpression):
    location: Optional[SourceLocation]
    klass: AstExpression
    arguments: list[AstExpression]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        klass = self.klass.eval(env)
        if isinstance(klass, Thrown):
            return klass
        arguments = evaluate_arguments(self.arguments, env)
        if isinstance(arguments, Thrown):
            return arguments
        return instantiate(self.location, klass, arguments)


@final
@dataclass
class AstExpressionInput(AstExpression):
    location: Optional[SourceLocation]
    prompt: Optional[AstExpression]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        if self.prompt is not None:
            prompt = self.prompt.eval(env)
            if isinstance(prompt, Thrown):
                return prompt
            sys.stdout.write(str(prompt))
            sys.stdout.flush()
        line = sys.stdin.readline()
        if len(line) == 0:
            return Null()
        return String(line.rstrip("\r\n"))


class AstPattern(AstNode):
    location: Optional[SourceLocation]

    @abstractmethod
    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        """
        Test the value against the pattern, binding captured names into env.
        """
        raise NotImplementedError()


@final
@dataclass
class AstPatternWildcard(AstPattern):
    location: Optional[SourceLocation]

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        return True


@final
@dataclass
class AstPatternBinding(AstPattern):
    location: Optional[SourceLocation]
    name: str

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        env.let(self.name, value)
        return True


@final
@dataclass
class AstPatternLiteral(AstPattern):
    location: Optional[SourceLocation]
    value: Value

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        return self.value == value


@final
@dataclass
class AstPatternRange(AstPattern):
    location: Optional[SourceLocation]
    lower: Value
    upper: Value
    inclusive: bool

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        if type(value) is not type(self.lower) or not isinstance(
            value, (Number, String)
        ):
            return False
        assert isinstance(self.lower, (Number, String))
        assert isinstance(self.upper, (Number, String))
        if self.inclusive:
            return self.lower.data <= value.data <= self.upper.data  # type: ignore
        return self.lower.data <= value.data < self.upper.data  # type: ignore


@final
@dataclass
class AstPatternType(AstPattern):
    """
    `is Type` check, optionally binding the value as `name is Type`. A type
    naming a class in scope checks class membership, otherwise the name is
    compared with the typeof name of the value.
    """

    location: Optional[SourceLocation]
    name: Optional[str]
    type: str

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        klass = env.get(self.type)
        if isinstance(klass, Class):
            matched = is_instance_of(value, klass)
        else:
            matched = value.typename() == self.type
        if matched and self.name is not None:
            env.let(self.name, value)
        return matched


@final
@dataclass
class AstPatternArray(AstPattern):
    location: Optional[SourceLocation]
    elements: list[AstPattern]
    rest: Optional[str]

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        if not isinstance(value, Array):
            return False
        count = len(self.elements)
        if len(value.elements) < count:
            return False
        if self.rest is None and len(value.elements) != count:
            return False
        for pattern, element in zip(self.elements, value.elements):
            matched = pattern.match(element, env)
            if matched is not True:
                return matched
        if self.rest is not None:
            env.let(self.rest, Array(value.elements[count:]))
        return True


@final
@dataclass
class AstPatternObject(AstPattern):
    location: Optional[SourceLocation]
    fields: list[Tuple[str, AstPattern]]
    rest: Optional[str]

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        if isinstance(value, Object):
            data = value.fields
        elif isinstance(value, Instance):
            data = value.properties
        else:
            return False
        for key, pattern in self.fields:
            if key not in data:
                return False
            matched = pattern.match(data[key], env)
            if matched is not True:
                return matched
        if self.rest is not None:
            named = {key for key, _ in self.fields}
            env.let(
                self.rest, Object({k: v for k, v in data.items() if k not in named})
            )
        return True


@final
@dataclass
class AstPatternOr(AstPattern):
    location: Optional[SourceLocation]
    alternatives: list[AstPattern]

    def match(self, value: Value, env: Environment) -> Union[bool, Thrown]:
        for alternative in self.alternatives:
            matched = alternative.match(value, env)
            if matched is not False:
                return matched
        return False


@final
@dataclass
class AstMatchArm(AstNode):
    location: Optional[SourceLocation]
    pattern: AstPattern
    guard: Optional[AstExpression]
    body: Union[AstExpression, "AstBlock"]

    def evaluate(self, env: Environment) -> Union[Value, Thrown]:
        if isinstance(self.body, AstExpression):
            return self.body.eval(env)
        # A block arm produces its last expression value, or the value of
        # an explicit `return`.
        (value, signal) = evaluate_statements(self.body.statements, Environment(env))
        if isinstance(signal, Return):
            return signal.value
        if isinstance(signal, (Break, Continue)):
            return Thrown(
                signal.location,
                "attempted to break or continue out of a match arm",
                ControlFlowError,
            )
        if isinstance(signal, Thrown):
            return signal
        return value if value is not None else Null()


@final
@dataclass
class AstExpressionMatch(AstExpression):
    location: Optional[SourceLocation]
    subject: AstExpression
    arms: list[AstMatchArm]

    def eval(self, env: Environment) -> Union[Value, Thrown]:
        subject = self.subject.eval(env)
        if isinstance(subject, Thrown):
            return subject
        for arm in self.arms:
            arm_env = Environment(env)
            matched = arm.pattern.match(subject, arm_env)
            if isinstance(matched, Thrown):
                return matched
            if not matched:
                continue
            if arm.guard is not None:
                guard = arm.guard.eval(arm_env)
                if isinstance(guard, Thrown):
                    return guard
                if not truthy(guard):
                    continue
            return arm.evaluate(arm_env)
        return Thrown(
            self.location,
            f"no match arm matched value {subject.nested_str()}",
            MatchError,
        )


@final
@dataclass
class AstBlock(AstNode):
    location: Optional[SourceLocation]
    statements: list[AstStatement]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        env = Environment(env)  # Blocks execute with a new lexical scope.
        for statement in self.statements:
            result = statement.eval(env)
            if result is not None:
                return result
        return None


@final
@dataclass
class AstStatementBlock(AstStatement):
    location: Optional[SourceLocation]
    block: AstBlock

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        return self.block.eval(env)


@final
@dataclass
class AstStatementLet(AstValueStatement):
    location: Optional[SourceLocation]
    name: str
    expression: Optional[AstExpression]
    constant: bool = False

    def evaluate(self, env: Environment) -> Union[Value, Thrown]:
        value: Union[Value, Thrown] = Null()
        if self.expression is not None:
            value = self.expression.eval(env)
            if isinstance(value, Thrown):
                return value
        thrown = declare(self.location, env, self.name, value, self.constant)
        if thrown is not None:
            return thrown
        return value


def declare(
    location: Optional[SourceLocation],
    env: Environment,
    name: str,
    value: Value,
    constant: bool,
) -> Optional[Thrown]:
    if name in env.constants:
        return Thrown(
            location,
            f"attempted to redeclare constant {quote(name)}",
            ConstantAssignmentError,
        )
    env.let(name, value, constant)
    return None


class AstDestructure(AstNode):
    location: Optional[SourceLocation]

    @abstractmethod
    def bind(self, env: Environment, value: Value, constant: bool) -> Optional[Thrown]:
        raise NotImplementedError()

    @abstractmethod
    def names(self) -> list[str]:
        raise NotImplementedError()


@final
@dataclass
class AstDestructureTarget(AstNode):
    location: Optional[SourceLocation]
    target: Union[str, AstDestructure]
    default: Optional[AstExpression] = None

    def bind(self, env: Environment, value: Value, constant: bool) -> Optional[Thrown]:
        if isinstance(value, Null) and self.default is not None:
            default = self.default.eval(env)
            if isinstance(default, Thrown):
                return default
            value = default
        if isinstance(self.target, str):
            return declare(self.location, env, self.target, value, constant)
        return self.target.bind(env, value, constant)

    def names(self) -> list[str]:
        if isinstance(self.target, str):
            return [self.target]
        return self.target.names()


@final
@dataclass
class AstDestructureArray(AstDestructure):
    location: Optional[SourceLocation]
    # Holes are represented by None.
    elements: list[Optional[AstDestructureTarget]]
    rest: Optional[str]

    def bind(self, env: Environment, value: Value, constant: bool) -> Optional[Thrown]:
        if isinstance(value, Array):
            elements = value.elements
        elif isinstance(value, String):
            elements = [String(c) for c in value.data]
        else:
            return Thrown(
                self.location,
                f"attempted array destructuring of type {quote(typename(value))}",
                ScriptTypeError,
            )
        for index, target in enumerate(self.elements):
            if target is None:
                continue
            element = elements[index] if index < len(elements) else Null()
            error = target.bind(env, element, constant)
            if error is not None:
                return error
        if self.rest is not None:
            rest = Array(list(elements[len(self.elements) :]))
            return declare(self.location, env, self.rest, rest, constant)
        return None

    def names(self) -> list[str]:
        names = [n for t in self.elements if t is not None for n in t.names()]
        return names + ([self.rest] if self.rest is not None else [])


@final
@dataclass
class AstDestructureObject(AstDestructure):
    location: Optional[SourceLocation]
    properties: list[Tuple[str, AstDestructureTarget]]
    rest: Optional[str]

    def bind(self, env: Environment, value: Value, constant: bool) -> Optional[Thrown]:
        if isinstance(value, (Object, Instance)):
            data = value.fields if isinstance(value, Object) else value.properties
        else:
            return Thrown(
                self.location,
                f"attempted object destructuring of type {quote(typename(value))}",
                ScriptTypeError,
            )
        for key, target in self.properties:
            error = target.bind(env, data.get(key, Null()), constant)
            if error is not None:
                return error
        if self.rest is not None:
            named = {key for key, _ in self.properties}
            rest = Object({k: v for k, v in data.items() if k not in named})
            return declare(self.location, env, self.rest, rest, constant)
        return None

    def names(self) -> list[str]:
        names = [n for _, t in self.properties for n in t.names()]
        return names + ([self.rest] if self.rest is not None else [])


@final
@dataclass
class AstStatementDestructure(AstValueStatement):
    location: Optional[SourceLocation]
    pattern: AstDestructure
    expression: AstExpression
    constant: bool = False

    def evaluate(self, env: Environment) -> Union[Value, Thrown]:
        value = self.expression.eval(env)
        if isinstance(value, Thrown):
            return value
        thrown = self.pattern.bind(env, value, self.constant)
        if thrown is not None:
            return thrown
        return value


@final
@dataclass
class AstStatementFunction(AstStatement):
    location: Optional[SourceLocation]
    function: AstExpressionFunction

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        assert self.function.name is not None
        return declare(
            self.location, env, self.function.name, Function(self.function, env), False
        )


@final
@dataclass
class AstClassMember(AstNode):
    location: Optional[SourceLocation]
    name: str
    # One of "method", "getter", "setter", or "property".
    kind: str
    is_static: bool
    function: Optional[AstExpressionFunction] = None
    value: Optional[AstExpression] = None


@final
@dataclass
class AstStatementClass(AstStatement):
    location: Optional[SourceLocation]
    name: str
    parent: Optional[AstExpression]
    members: list[AstClassMember]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        parent: Optional[Class] = None
        if self.parent is not None:
            evaluated = self.parent.eval(env)
            if isinstance(evaluated, Thrown):
                return evaluated
            if not isinstance(evaluated, Class):
                return Thrown(
                    self.location,
                    f"class {quote(self.name)} cannot extend type {quote(typename(evaluated))}",
                    ScriptTypeError,
                )
            parent = evaluated

        klass = Class(self.name, parent, env, {}, {}, {}, {}, [], {})
        error = declare(self.location, env, self.name, klass, False)
        if error is not None:
            return error

        for member in self.members:
            if member.function is not None:
                function = Function(member.function, env, None, klass)
                if member.kind == "getter":
                    klass.getters[member.name] = function
                elif member.kind == "setter":
                    klass.setters[member.name] = function
                elif member.is_static:
                    klass.static_methods[member.name] = function
                else:
                    klass.methods[member.name] = function
            elif member.is_static:
                value: Union[Value, Thrown] = Null()
                if member.value is not None:
                    static_env = Environment(env)
                    static_env.let(THIS, klass)
                    value = member.value.eval(static_env)
                    if isinstance(value, Thrown):
                        return value
                klass.static_properties[member.name] = value
            else:
                klass.properties.append((member.name, member.value))
        return None


@final
@dataclass
class AstStatementAssignment(AstValueStatement):
    location: Optional[SourceLocation]
    operator: TokenKind
    target: AstExpression
    expression: AstExpression

    def evaluate(self, env: Environment) -> Union[Value, Thrown]:
        place = evaluate_place(self.target, env)
        if isinstance(place, Thrown):
            return place

        value: Union[Value, Thrown]
        if self.operator == TokenKind.ASSIGN:
            value = self.expression.eval(env)
        else:
            current = place.get()
            if isinstance(current, Thrown):
                return current
            # Logical assignments only evaluate the right hand side when needed.
            if self.operator == TokenKind.AND_ASSIGN and not truthy(current):
                return current
            if self.operator == TokenKind.OR_ASSIGN and truthy(current):
                return current
            if self.operator == TokenKind.NULLISH_ASSIGN and not isinstance(
                current, Null
            ):
                return current
            value = self.expression.eval(env)
            if self.operator in COMPOUND_ASSIGNMENTS and not isinstance(value, Thrown):
                value = binary_operation(
                    self.location, COMPOUND_ASSIGNMENTS[self.operator], current, value
                )
        if isinstance(value, Thrown):
            return value
        thrown = place.set(value)
        if thrown is not None:
            return thrown
        return value


@final
@dataclass
class AstStatementExpression(AstValueStatement):
    location: Optional[SourceLocation]
    expression: AstExpression

    def evaluate(self, env: Environment) -> Union[Value, Thrown]:
        return self.expression.eval(env)


@final
@dataclass
class AstConditional(AstNode):
    location: Optional[SourceLocation]
    condition: AstExpression
    body: AstBlock

    def exec(self, env: Environment) -> Tuple[Optional[ControlFlow], bool]:
        result = self.condition.eval(env)
        if isinstance(result, Thrown):
            return (result, False)
        if truthy(result):
            return (self.body.eval(env), True)
        return (None, False)


@final
@dataclass
class AstStatementIf(AstStatement):
    location: Optional[SourceLocation]
    conditionals: list[AstConditional]
    else_block: Optional[AstBlock]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        for conditional in self.conditionals:
            (result, executed) = conditional.exec(env)
            if result is not None or executed:
                return result
        if self.else_block is not None:
            return self.else_block.eval(env)
        return None


@final
@dataclass
class AstSwitchCase(AstNode):
    location: Optional[SourceLocation]
    # None for the default case.
    test: Optional[AstExpression]
    statements: list[AstStatement]


@final
@dataclass
class AstStatementSwitch(AstStatement):
    location: Optional[SourceLocation]
    discriminant: AstExpression
    cases: list[AstSwitchCase]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        discriminant = self.discriminant.eval(env)
        if isinstance(discriminant, Thrown):
            return discriminant
        env = Environment(env)
        start: Optional[int] = None
        for index, case in enumerate(self.cases):
            if case.test is None:
                continue
            test = case.test.eval(env)
            if isinstance(test, Thrown):
                return test
            if test == discriminant:
                start = index
                break
        if start is None:
            defaults = [i for i, c in enumerate(self.cases) if c.test is None]
            if len(defaults) == 0:
                return None
            start = defaults[0]
        # Execution falls through subsequent cases until a break.
        for case in self.cases[start:]:
            for statement in case.statements:
                result = statement.eval(env)
                if isinstance(result, Break):
                    return None
                if result is not None:
                    return result
        return None


@final
@dataclass
class AstStatementLoopRange(AstStatement):
    """
    `loop i from start to end step n`, with an exclusive end.
    """

    location: Optional[SourceLocation]
    name: str
    start: AstExpression
    end: AstExpression
    step: Optional[AstExpression]
    block: AstBlock

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        bounds: list[float] = list()
        for expression in (self.start, self.end, self.step):
            if expression is None:
                bounds.append(1.0)
                continue
            value = expression.eval(env)
            if isinstance(value, Thrown):
                return value
            if not isinstance(value, Number):
                return Thrown(
                    self.location,
                    f"loop bound with non-number type {quote(typename(value))}",
                    ScriptTypeError,
                )
            bounds.append(value.data)
        (current, end, step) = bounds
        if step == 0 or math.isnan(step):
            return Thrown(self.location, "loop step must be non-zero", ScriptTypeError)

        while current < end if step > 0 else current > end:
            loop_env = Environment(env)
            loop_env.let(self.name, Number(current))
            result = self.block.eval(loop_env)
            if isinstance(result, Break):
                break
            if result is not None and not isinstance(result, Continue):
                return result
            current += step
        return None


@final
@dataclass
class AstStatementForIn(AstStatement):
    """
    `for x in X` (keys=True) and `for x of X` (keys=False).
    """

    location: Optional[SourceLocation]
    name: str
    iterable: AstExpression
    block: AstBlock
    keys: bool = True

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        iterable = self.iterable.eval(env)
        if isinstance(iterable, Thrown):
            return iterable
        values = iterate(self.location, iterable, self.keys)
        if isinstance(values, Thrown):
            return values
        for value in values:
            loop_env = Environment(env)
            loop_env.let(self.name, value)
            result = self.block.eval(loop_env)
            if isinstance(result, Break):
                break
            if result is not None and not isinstance(result, Continue):
                return result
        return None


@final
@dataclass
class AstStatementWhile(AstStatement):
    location: Optional[SourceLocation]
    # None for an unconditional `loop { ... }`.
    expression: Optional[AstExpression]
    block: AstBlock

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        while True:
            if self.expression is not None:
                expression = self.expression.eval(env)
                if isinstance(expression, Thrown):
                    return expression
                if not truthy(expression):
                    break
            result = self.block.eval(Environment(env))
            if isinstance(result, Break):
                break
            if result is not None and not isinstance(result, Continue):
                return result
        return None


@final
@dataclass
class AstStatementDoWhile(AstStatement):
    location: Optional[SourceLocation]
    block: AstBlock
    expression: AstExpression

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        while True:
            result = self.block.eval(Environment(env))
            if isinstance(result, Break):
                break
            if result is not None and not isinstance(result, Continue):
                return result
            expression = self.expression.eval(env)
            if isinstance(expression, Thrown):
                return expression
            if not truthy(expression):
                break
        return None


@final
@dataclass
class AstStatementBreak(AstStatement):
    location: Optional[SourceLocation]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        return Break(self.location)


@final
@dataclass
class AstStatementContinue(AstStatement):
    location: Optional[SourceLocation]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        return Continue(self.location)


@final
@dataclass
class AstStatementTry(AstStatement):
    location: Optional[SourceLocation]
    try_block: AstBlock
    catch_name: Optional[str]
    catch_block: Optional[AstBlock]
    finally_block: Optional[AstBlock]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        result = self.try_block.eval(env)
        if (
            isinstance(result, Thrown)
            and result.catchable
            and self.catch_block is not None
        ):
            catch_env = Environment(env)
            if self.catch_name is not None:
                catch_env.let(self.catch_name, result.value)
            result = self.catch_block.eval(catch_env)
        if self.finally_block is not None:
            # An abrupt completion of the finally block replaces the pending
            # completion of the try or catch block.
            finalized = self.finally_block.eval(env)
            if finalized is not None:
                return finalized
        return result


@final
@dataclass
class AstStatementThrow(AstStatement):
    location: Optional[SourceLocation]
    expression: AstExpression

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        result = self.expression.eval(env)
        if isinstance(result, Thrown):
            return result
        return Thrown(self.location, result)


@final
@dataclass
class AstStatementReturn(AstStatement):
    location: Optional[SourceLocation]
    expression: Optional[AstExpression]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        if self.expression is None:
            return Return(Null())
        result = self.expression.eval(env)
        if isinstance(result, Thrown):
            return result
        return Return(result)


@final
@dataclass
class AstStatementPrint(AstStatement):
    location: Optional[SourceLocation]
    expression: AstExpression

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        result = self.expression.eval(env)
        if isinstance(result, Thrown):
            return result
        print(result, flush=True)
        return None


@final
@dataclass
class AstStatementImport(AstStatement):
    location: Optional[SourceLocation]
    path: str
    default: Optional[str]
    # (exported name, local name) pairs.
    names: list[Tuple[str, str]]
    namespace: Optional[str]

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        assert env.module is not None
        module = env.module.interpreter.load_module(
            self.location, self.path, env.module.directory
        )
        if isinstance(module, Thrown):
            return module
        bindings: list[Tuple[str, str]] = list(self.names)
        if self.default is not None:
            bindings.insert(0, ("default", self.default))
        for exported, local in bindings:
            if exported not in module.exports:
                return Thrown(
                    self.location,
                    f"module {quote(self.path)} has no export {quote(exported)}",
                    ModuleError,
                )
            error = declare(self.location, env, local, module.exports[exported], True)
            if error is not None:
                return error
        if self.namespace is not None:
            namespace = Object(dict(module.exports))
            return declare(self.location, env, self.namespace, namespace, True)
        return None


def declared_names(statement: AstStatement) -> list[str]:
    if isinstance(statement, AstStatementLet):
        return [statement.name]
    if isinstance(statement, AstStatementDestructure):
        return statement.pattern.names()
    if isinstance(statement, AstStatementFunction):
        assert statement.function.name is not None
        return [statement.function.name]
    if isinstance(statement, AstStatementClass):
        return [statement.name]
    return []


@final
@dataclass
class AstStatementExport(AstStatement):
    location: Optional[SourceLocation]
    declaration: Optional[AstStatement]
    # (local name, exported name) pairs.
    names: list[Tuple[str, str]]
    default: Optional[AstExpression] = None

    def eval(self, env: Environment) -> Optional[ControlFlow]:
        assert env.module is not None
        exports = env.module.exports
        names = list(self.names)
        if self.declaration is not None:
            result = self.declaration.eval(env)
            if result is not None:
                return result
            names += [(name, name) for name in declared_names(self.declaration)]
        for local, exported in names:
            value = env.get(local)
            if value is None:
                return Thrown(
                    self.location,
                    f"identifier {quote(local)} is not defined",
                    UndefinedVariableError,
                )
            exports[exported] = value
        if self.default is not None:
            value = self.default.eval(env)
            if isinstance(value, Thrown):
                return value
            exports["default"] = value
        return None


def bind_parameters(
    location: Optional[SourceLocation],
    env: Environment,
    parameters: list[AstParameter],
    arguments: list[Value],
) -> Optional[Thrown]:
    for index, parameter in enumerate(parameters):
        if parameter.rest:
            env.let(parameter.name, Array(list(arguments[index:])))
            break
        if index < len(arguments):
            env.let(parameter.name, arguments[index])
        elif parameter.default is not None:
            # Defaults see the parameters bound before them.
            default = parameter.default.eval(env)
            if isinstance(default, Thrown):
                return default
            env.let(parameter.name, default)
        else:
            env.let(parameter.name, Null())
    return None


def invoke(
    location: Optional[SourceLocation],
    function: Function,
    arguments: list[Value],
    this: Optional[Value],
) -> Union[Value, Thrown]:
    env = Environment(function.env)
    # Arrow functions see the `this` of their defining scope.
    if not function.ast.is_arrow:
        receiver = function.this if function.this is not None else this
        env.let(THIS, receiver if receiver is not None else Null())
        if function.home is not None:
            env.let(SUPER, function.home)
    error = bind_parameters(location, env, function.ast.parameters, arguments)
    if error is not None:
        return error
    result = function.ast.body.eval(env)
    if isinstance(result, Return):
        return result.value
    if isinstance(result, Break):
        return Thrown(
            result.location, "attempted to break outside of a loop", ControlFlowError
        )
    if isinstance(result, Continue):
        return Thrown(
            result.location, "attempted to continue outside of a loop", ControlFlowError
        )
    if isinstance(result, Thrown):
        return result
    return Null()


def call(
    location: Optional[SourceLocation],
    function: Value,
    arguments: list[Value],
    this: Optional[Value] = None,
) -> Union[Value, Thrown]:
    if isinstance(function, Builtin):
        produced = function.call(arguments)
        if isinstance(produced, Thrown) and produced.location is None:
            produced.location = location
        if isinstance(produced, Pending):
            return produced.resolve()
        return produced
    if isinstance(function, Class):
        return Thrown(
            location,
            f"class {quote(function.name)} must be instantiated with `new`",
            NotCallableError,
        )
    if not isinstance(function, Function):
        return Thrown(
            location,
            f"attempted to call non-callable type {quote(typename(function))}",
            NotCallableError,
        )
    try:
        outcome = invoke(location, function, arguments, this)
    except RecursionError:
        outcome = Thrown(location, "maximum call depth exceeded")
    if function.ast.is_async:
        # Async bodies run eagerly; the outcome is delivered through await.
        return Pending.settled(outcome)
    return outcome


class Precedence(enum.IntEnum):
    # fmt: off
    LOWEST   = enum.auto()
    TERNARY  = enum.auto()  # a ? b : c
    NULLISH  = enum.auto()  # ??
    PIPE     = enum.auto()  # |>
    OR       = enum.auto()  # or ||
    AND      = enum.auto()  # and &&
    BITOR    = enum.auto()  # |
    BITXOR   = enum.auto()  # ^
    BITAND   = enum.auto()  # &
    EQUALITY = enum.auto()  # == !=
    COMPARE  = enum.auto()  # < > <= >= instanceof
    SHIFT    = enum.auto()  # << >> >>>
    RANGE    = enum.auto()  # .. ..=
    ADD_SUB  = enum.auto()  # + -
    MUL_DIV  = enum.auto()  # * / %
    POW      = enum.auto()  # **
    PREFIX   = enum.auto()  # -x !x typeof x ++x
    POSTFIX  = enum.auto()  # x++ x--
    CALL     = enum.auto()  # f(x) a.b a[b] a?.b
    # fmt: on


class Parser:
    ParseNud = Callable[["Parser"], AstExpression]
    ParseLed = Callable[["Parser", AstExpression], AstExpression]

    PRECEDENCES: dict[TokenKind, Precedence] = {
        # fmt: off
        TokenKind.QUESTION:        Precedence.TERNARY,
        TokenKind.NULLISH:         Precedence.NULLISH,
        TokenKind.PIPE:            Precedence.PIPE,
        TokenKind.OR:              Precedence.OR,
        TokenKind.AND:             Precedence.AND,
        TokenKind.BITOR:           Precedence.BITOR,
        TokenKind.BITXOR:          Precedence.BITXOR,
        TokenKind.BITAND:          Precedence.BITAND,
        TokenKind.EQ:              Precedence.EQUALITY,
        TokenKind.NE:              Precedence.EQUALITY,
        TokenKind.LT:              Precedence.COMPARE,
        TokenKind.GT:              Precedence.COMPARE,
        TokenKind.LE:              Precedence.COMPARE,
        TokenKind.GE:              Precedence.COMPARE,
        TokenKind.INSTANCEOF:      Precedence.COMPARE,
        TokenKind.SHL:             Precedence.SHIFT,
        TokenKind.SHR:             Precedence.SHIFT,
        TokenKind.USHR:            Precedence.SHIFT,
        TokenKind.RANGE:           Precedence.RANGE,
        TokenKind.RANGE_INCLUSIVE: Precedence.RANGE,
        TokenKind.ADD:             Precedence.ADD_SUB,
        TokenKind.SUB:             Precedence.ADD_SUB,
        TokenKind.MUL:             Precedence.MUL_DIV,
        TokenKind.DIV:             Precedence.MUL_DIV,
        TokenKind.REM:             Precedence.MUL_DIV,
        TokenKind.POW:             Precedence.POW,
        TokenKind.INCREMENT:       Precedence.POSTFIX,
        TokenKind.DECREMENT:       Precedence.POSTFIX,
        TokenKind.LPAREN:          Precedence.CALL,
        TokenKind.LBRACKET:        Precedence.CALL,
        TokenKind.DOT:             Precedence.CALL,
        TokenKind.OPTIONAL:        Precedence.CALL,
        # fmt: on
    }

    POSTFIX_UPDATES = {TokenKind.INCREMENT, TokenKind.DECREMENT}

    # Tokens after `return` that mean the return statement has no value.
    RETURN_TERMINATORS = {
        TokenKind.RBRACE,
        TokenKind.SEMICOLON,
        TokenKind.EOF,
        TokenKind.LET,
        TokenKind.CONST,
        TokenKind.FN,
        TokenKind.IF,
        TokenKind.LOOP,
        TokenKind.FOR,
        TokenKind.WHILE,
        TokenKind.DO,
        TokenKind.RETURN,
        TokenKind.CLASS,
        TokenKind.BREAK,
        TokenKind.CONTINUE,
        TokenKind.PRINT,
        TokenKind.TRY,
        TokenKind.THROW,
        TokenKind.SWITCH,
        TokenKind.CASE,
        TokenKind.DEFAULT,
        TokenKind.IMPORT,
        TokenKind.EXPORT,
    }

    BINARY_OPERATORS = {
        TokenKind.BITOR,
        TokenKind.BITXOR,
        TokenKind.BITAND,
        TokenKind.EQ,
        TokenKind.NE,
        TokenKind.LT,
        TokenKind.GT,
        TokenKind.LE,
        TokenKind.GE,
        TokenKind.SHL,
        TokenKind.SHR,
        TokenKind.USHR,
        TokenKind.ADD,
        TokenKind.SUB,
        TokenKind.MUL,
        TokenKind.DIV,
        TokenKind.REM,
    }

    # Tokens that may appear directly inside the parentheses of an arrow
    # function parameter list, outside of default value expressions.
    ARROW_PARAMETER_TOKENS = {
        TokenKind.IDENTIFIER,
        TokenKind.COMMA,
        TokenKind.SPREAD,
        TokenKind.ASSIGN,
    }

    def __init__(self, tokens: list[Token]):
        self.tokens: list[Token] = [x for x in tokens if x.kind != TokenKind.NEWLINE]
        if len(self.tokens) == 0 or self.tokens[-1].kind != TokenKind.EOF:
            location = self.tokens[-1].location if len(self.tokens) else None
            self.tokens.append(Token(TokenKind.EOF, Lexer.EOF_LITERAL, location))
        self.position: int = 0
        # Bare `x => ...` and `(x) => ...` are not arrow functions while
        # parsing a match arm guard, where `=>` introduces the arm body.
        self.arrows_allowed: bool = True

        self.parse_nud_functions: dict[TokenKind, Parser.ParseNud] = dict()
        self.parse_led_functions: dict[TokenKind, Parser.ParseLed] = dict()

        self._register_nud(TokenKind.IDENTIFIER, Parser.parse_expression_identifier)
        self._register_nud(TokenKind.TEMPLATE, Parser.parse_expression_template)
        self._register_nud(TokenKind.NULL, Parser.parse_expression_null)
        self._register_nud(TokenKind.TRUE, Parser.parse_expression_boolean)
        self._register_nud(TokenKind.FALSE, Parser.parse_expression_boolean)
        self._register_nud(TokenKind.NUMBER, Parser.parse_expression_number)
        self._register_nud(TokenKind.STRING, Parser.parse_expression_string)
        self._register_nud(TokenKind.LBRACKET, Parser.parse_expression_array)
        self._register_nud(TokenKind.LBRACE, Parser.parse_expression_object)
        self._register_nud(TokenKind.FN, Parser.parse_expression_function)
        self._register_nud(TokenKind.ASYNC, Parser.parse_expression_async)
        self._register_nud(TokenKind.THIS, Parser.parse_expression_this)
        self._register_nud(TokenKind.SUPER, Parser.parse_expression_super)
        self._register_nud(TokenKind.NEW, Parser.parse_expression_new)
        self._register_nud(TokenKind.INPUT, Parser.parse_expression_input)
        self._register_nud(TokenKind.MATCH, Parser.parse_expression_match)
        self._register_nud(TokenKind.LPAREN, Parser.parse_expression_grouped)
        self._register_nud(TokenKind.ADD, Parser.parse_expression_unary)
        self._register_nud(TokenKind.SUB, Parser.parse_expression_unary)
        self._register_nud(TokenKind.NOT, Parser.parse_expression_unary)
        self._register_nud(TokenKind.BITNOT, Parser.parse_expression_unary)
        self._register_nud(TokenKind.TYPEOF, Parser.parse_expression_typeof)
        self._register_nud(TokenKind.DELETE, Parser.parse_expression_delete)
        self._register_nud(TokenKind.AWAIT, Parser.parse_expression_await)
        self._register_nud(TokenKind.INCREMENT, Parser.parse_expression_prefix_update)
        self._register_nud(TokenKind.DECREMENT, Parser.parse_expression_prefix_update)

        for kind in Parser.BINARY_OPERATORS:
            self._register_led(kind, Parser.parse_expression_binary)
        self._register_led(TokenKind.POW, Parser.parse_expression_pow)
        self._register_led(TokenKind.AND, Parser.parse_expression_and)
        self._register_led(TokenKind.OR, Parser.parse_expression_or)
        self._register_led(TokenKind.NULLISH, Parser.parse_expression_nullish)
        self._register_led(TokenKind.QUESTION, Parser.parse_expression_ternary)
        self._register_led(TokenKind.PIPE, Parser.parse_expression_pipe)
        self._register_led(TokenKind.RANGE, Parser.parse_expression_range)
        self._register_led(TokenKind.RANGE_INCLUSIVE, Parser.parse_expression_range)
        self._register_led(TokenKind.INSTANCEOF, Parser.parse_expression_instanceof)
        self._register_led(TokenKind.INCREMENT, Parser.parse_expression_postfix_update)
        self._register_led(TokenKind.DECREMENT, Parser.parse_expression_postfix_update)
        self._register_led(TokenKind.LPAREN, Parser.parse_expression_call)
        self._register_led(TokenKind.LBRACKET, Parser.parse_expression_index)
        self._register_led(TokenKind.DOT, Parser.parse_expression_member)
        self._register_led(TokenKind.OPTIONAL, Parser.parse_expression_optional)

    def _register_nud(self, kind: TokenKind, parse: "Parser.ParseNud") -> None:
        self.parse_nud_functions[kind] = parse

    def _register_led(self, kind: TokenKind, parse: "Parser.ParseLed") -> None:
        self.parse_led_functions[kind] = parse

    @property
    def current_token(self) -> Token:
        return self.tokens[min(self.position, len(self.tokens) - 1)]

    def _peek_token(self, offset: int = 1) -> Token:
        return self.tokens[min(self.position + offset, len(self.tokens) - 1)]

    def _advance_token(self) -> Token:
        current_token = self.current_token
        if self.position < len(self.tokens) - 1:
            self.position += 1
        return current_token

    def _check_current(self, kind: TokenKind) -> bool:
        return self.current_token.kind == kind

    def _check_peek(self, kind: TokenKind, offset: int = 1) -> bool:
        return self._peek_token(offset).kind == kind

    def _consume(self, kind: TokenKind) -> bool:
        """
        Advance past the current token if it has the provided kind.
        """
        if self._check_current(kind):
            self._advance_token()
            return True
        return False

    def _error(self, why: str) -> ParseError:
        return ParseError(self.current_token.location, why, self.current_token.kind)

    def _expect_current(self, kind: TokenKind) -> Token:
        current = self.current_token
        if current.kind != kind:
            raise self._error(f"expected {quote(kind)}, found {quote(current)}")
        self._advance_token()
        return current

    def _expect_name(self) -> Token:
        """
        Identifier, or a keyword used as a property or member name.
        """
        current = self.current_token
        if current.kind != TokenKind.IDENTIFIER and current.kind not in _KEYWORD_KINDS:
            raise self._error(f"expected name, found {quote(current)}")
        self._advance_token()
        return current

    def _skip_semicolons(self) -> None:
        while self._consume(TokenKind.SEMICOLON):
            pass

    def parse_program(self) -> AstProgram:
        location = self.current_token.location
        statements: list[AstStatement] = list()
        self._skip_semicolons()
        while not self._check_current(TokenKind.EOF):
            statements.append(self.parse_statement())
            self._skip_semicolons()
        return AstProgram(location, statements)

    def parse_identifier(self) -> str:
        return self._expect_current(TokenKind.IDENTIFIER).literal

    def parse_expression(
        self, precedence: Precedence = Precedence.LOWEST
    ) -> AstExpression:
        def get_precedence(kind: TokenKind) -> Precedence:
            return Parser.PRECEDENCES.get(kind, Precedence.LOWEST)

        parse_nud = self.parse_nud_functions.get(self.current_token.kind)
        if parse_nud is None:
            raise self._error(f"expected expression, found {quote(self.current_token)}")
        expression = parse_nud(self)
        while precedence < get_precedence(self.current_token.kind):
            if self.current_token.kind in Parser.POSTFIX_UPDATES and not is_place(
                expression
            ):
                # `i++ ++j` is two statements.
                break
            parse_led = self.parse_led_functions.get(self.current_token.kind, None)
            if parse_led is None:
                return expression
            expression = parse_led(self, expression)
        return expression

    def _parse_delimited(
        self, close: TokenKind, parse_element: Callable[[], Any]
    ) -> list[Any]:
        # Comma separated elements up to and including the closing token, with
        # an optional trailing comma.
        arrows_allowed = self.arrows_allowed
        self.arrows_allowed = True
        elements: list[Any] = list()
        while not self._check_current(close):
            elements.append(parse_element())
            if not self._consume(TokenKind.COMMA):
                break
        self._expect_current(close)
        self.arrows_allowed = arrows_allowed
        return elements

    def parse_expression_identifier(self) -> AstExpression:
        if self.arrows_allowed and self._check_peek(TokenKind.ARROW):
            return self.parse_expression_arrow()
        token = self._expect_current(TokenKind.IDENTIFIER)
        return AstExpressionIdentifier(token.location, token.literal)

    def parse_expression_template(self) -> AstExpressionTemplate:
        token = self._expect_current(TokenKind.TEMPLATE)
        template: list[Union[str, AstExpression]] = list()
        for element in token.value:
            if isinstance(element, str):
                template.append(element)
                continue
            try:
                tokens = _tokenize(Lexer(element.source, element.location))
            except LexError as e:
                raise ParseError(e.location, e.why, TokenKind.TEMPLATE) from e
            parser = Parser(tokens)
            template.append(parser.parse_expression())
            parser._expect_current(TokenKind.EOF)
        return AstExpressionTemplate(token.location, template)

    def parse_expression_null(self) -> AstExpressionLiteral:
        location = self._expect_current(TokenKind.NULL).location
        return AstExpressionLiteral(location, Null())

    def parse_expression_boolean(self) -> AstExpressionLiteral:
        if self._check_current(TokenKind.TRUE):
            location = self._expect_current(TokenKind.TRUE).location
            return AstExpressionLiteral(location, Boolean(True))
        if self._check_current(TokenKind.FALSE):
            location = self._expect_current(TokenKind.FALSE).location
            return AstExpressionLiteral(location, Boolean(False))
        raise self._error(f"expected boolean, found {quote(self.current_token)}")

    def parse_expression_number(self) -> AstExpressionLiteral:
        token = self._expect_current(TokenKind.NUMBER)
        return AstExpressionLiteral(token.location, Number(token.value))

    def parse_expression_string(self) -> AstExpressionLiteral:
        token = self._expect_current(TokenKind.STRING)
        return AstExpressionLiteral(token.location, String(token.value))

    def parse_expression_element(self) -> AstExpression:
        # Array element or call argument, possibly spread.
        if self._check_current(TokenKind.SPREAD):
            location = self._advance_token().location
            return AstExpressionSpread(location, self.parse_expression())
        return self.parse_expression()

    def parse_expression_array(self) -> AstExpressionArray:
        location = self._expect_current(TokenKind.LBRACKET).location
        arrows_allowed = self.arrows_allowed
        self.arrows_allowed = True
        elements: list[AstExpression] = list()
        while not self._check_current(TokenKind.RBRACKET):
            if self._check_current(TokenKind.COMMA):
                # Holes are null elements, e.g. `[1, , 3]`.
                hole = self._advance_token().location
                elements.append(AstExpressionLiteral(hole, Null()))
                continue
            elements.append(self.parse_expression_element())
            if not self._consume(TokenKind.COMMA):
                break
        self._expect_current(TokenKind.RBRACKET)
        self.arrows_allowed = arrows_allowed
        return AstExpressionArray(location, elements)

    def parse_object_entry(self) -> AstObjectEntry:
        location = self.current_token.location
        if self._consume(TokenKind.SPREAD):
            return AstObjectEntry(None, self.parse_expression())
        key: AstExpression
        if self._consume(TokenKind.LBRACKET):
            key = self.parse_expression()
            self._expect_current(TokenKind.RBRACKET)
            self._expect_current(TokenKind.COLON)
            return AstObjectEntry(key, self.parse_expression())
        if self._check_current(TokenKind.STRING) or self._check_current(
            TokenKind.NUMBER
        ):
            token = self._advance_token()
            text = token.value
            if token.kind == TokenKind.NUMBER:
                text = str(Number(token.value))
            key = AstExpressionLiteral(location, String(text))
            self._expect_current(TokenKind.COLON)
            return AstObjectEntry(key, self.parse_expression())
        name = self._expect_name()
        key = AstExpressionLiteral(location, String(name.literal))
        if self._consume(TokenKind.COLON):
            return AstObjectEntry(key, self.parse_expression())
        if self._check_current(TokenKind.LPAREN):
            # Method shorthand, e.g. `{area() { return 1 }}`.
            parameters = self.parse_parameters()
            body = self.parse_block()
            return AstObjectEntry(
                key, AstExpressionFunction(location, name.literal, parameters, body)
            )
        if name.kind != TokenKind.IDENTIFIER:
            raise ParseError(
                name.location, f"expected `:` after key {quote(name)}", name.kind
            )
        return AstObjectEntry(key, AstExpressionIdentifier(location, name.literal))

    def parse_expression_object(self) -> AstExpressionObject:
        location = self._expect_current(TokenKind.LBRACE).location
        entries = self._parse_delimited(TokenKind.RBRACE, self.parse_object_entry)
        return AstExpressionObject(location, entries)

    def parse_parameter(self) -> AstParameter:
        location = self.current_token.location
        if self._consume(TokenKind.SPREAD):
            return AstParameter(location, self.parse_identifier(), rest=True)
        name = self.parse_identifier()
        default: Optional[AstExpression] = None
        if self._consume(TokenKind.ASSIGN):
            default = self.parse_expression()
        return AstParameter(location, name, default)

    def parse_parameters(self) -> list[AstParameter]:
        location = self._expect_current(TokenKind.LPAREN).location
        parameters = self._parse_delimited(TokenKind.RPAREN, self.parse_parameter)
        names: set[str] = set()
        for index, parameter in enumerate(parameters):
            if parameter.name in names:
                raise ParseError(
                    parameter.location,
                    f"duplicate parameter {quote(parameter.name)}",
                    TokenKind.IDENTIFIER,
                )
            names.add(parameter.name)
            if parameter.rest and index != len(parameters) - 1:
                raise ParseError(
                    parameter.location,
                    f"rest parameter {quote(parameter.name)} must be the final parameter",
                    TokenKind.SPREAD,
                )
        return parameters

    def parse_expression_function(self, is_async: bool = False) -> AstExpressionFunction:
        location = self._expect_current(TokenKind.FN).location
        name: Optional[str] = None
        if self._check_current(TokenKind.IDENTIFIER):
            name = self.parse_identifier()
        parameters = self.parse_parameters()
        body = self.parse_block()
        return AstExpressionFunction(location, name, parameters, body, is_async)

    def _is_arrow_ahead(self) -> bool:
        # Read-only scan from the current `(` to its matching `)`. Only the
        # token positions are inspected and the cursor is never moved.
        assert self._check_current(TokenKind.LPAREN)
        depth = 0
        in_default = False
        index = self.position
        while index < len(self.tokens):
            kind = self.tokens[index].kind
            if kind == TokenKind.EOF:
                return False
            if kind in (TokenKind.LPAREN, TokenKind.LBRACKET, TokenKind.LBRACE):
                depth += 1
            elif kind in (TokenKind.RPAREN, TokenKind.RBRACKET, TokenKind.RBRACE):
                depth -= 1
                if depth == 0:
                    following = self.tokens[min(index + 1, len(self.tokens) - 1)]
                    return following.kind == TokenKind.ARROW
            elif depth == 1:
                if kind == TokenKind.ASSIGN:
                    in_default = True
                elif kind == TokenKind.COMMA:
                    in_default = False
                elif not in_default and kind not in Parser.ARROW_PARAMETER_TOKENS:
                    return False
            index += 1
        return False

    def parse_arrow_body(self) -> AstBlock:
        if self._check_current(TokenKind.LBRACE):
            return self.parse_block()
        location = self.current_token.location
        statement = self.parse_statement_expression_or_assignment()
        if isinstance(statement, AstStatementExpression):
            return AstBlock(
                location, [AstStatementReturn(location, statement.expression)]
            )
        return AstBlock(location, [statement])

    def parse_expression_arrow(self, is_async: bool = False) -> AstExpressionFunction:
        location = self.current_token.location
        if self._check_current(TokenKind.IDENTIFIER):
            parameters = [AstParameter(location, self.parse_identifier())]
        else:
            parameters = self.parse_parameters()
        self._expect_current(TokenKind.ARROW)
        body = self.parse_arrow_body()
        return AstExpressionFunction(location, None, parameters, body, is_async, True)

    def parse_expression_async(self) -> AstExpressionFunction:
        self._expect_current(TokenKind.ASYNC)
        if self._check_current(TokenKind.FN):
            return self.parse_expression_function(is_async=True)
        if self._check_current(TokenKind.IDENTIFIER) and self._check_peek(
            TokenKind.ARROW
        ):
            return self.parse_expression_arrow(is_async=True)
        if self._check_current(TokenKind.LPAREN) and self._is_arrow_ahead():
            return self.parse_expression_arrow(is_async=True)
        raise self._error(
            f"expected function after `async`, found {quote(self.current_token)}"
        )

    def parse_expression_this(self) -> AstExpressionThis:
        location = self._expect_current(TokenKind.THIS).location
        return AstExpressionThis(location)

    def parse_expression_super(self) -> AstExpressionSuper:
        location = self._expect_current(TokenKind.SUPER).location
        return AstExpressionSuper(location)

    def parse_expression_new(self) -> AstExpressionNew:
        location = self._expect_current(TokenKind.NEW).location
        # The class expression is a name with optional member accesses. The
        # argument list belongs to `new`, not to a call of the class.
        klass: AstExpression
        if self._check_current(TokenKind.LPAREN):
            klass = self.parse_expression_grouped()
        else:
            token = self._expect_current(TokenKind.IDENTIFIER)
            klass = AstExpressionIdentifier(token.location, token.literal)
        while self._check_current(TokenKind.DOT):
            klass = self.parse_expression_member(klass)
        arguments: list[AstExpression] = list()
        if self._check_current(TokenKind.LPAREN):
            self._advance_token()
            arguments = self._parse_delimited(
                TokenKind.RPAREN, self.parse_expression_element
            )
        return AstExpressionNew(location, klass, arguments)

    def parse_expression_input(self) -> AstExpressionInput:
        location = self._expect_current(TokenKind.INPUT).location
        self._expect_current(TokenKind.LPAREN)
        prompt: Optional[AstExpression] = None
        if not self._check_current(TokenKind.RPAREN):
            prompt = self.parse_expression()
        self._expect_current(TokenKind.RPAREN)
        return AstExpressionInput(location, prompt)

    def parse_expression_grouped(self) -> AstExpression:
        if self.arrows_allowed and self._is_arrow_ahead():
            return self.parse_expression_arrow()
        self._expect_current(TokenKind.LPAREN)
        arrows_allowed = self.arrows_allowed
        self.arrows_allowed = True
        expression = self.parse_expression()
        self.arrows_allowed = arrows_allowed
        self._expect_current(TokenKind.RPAREN)
        return expression

    def parse_expression_unary(self) -> AstExpressionUnary:
        token = self._advance_token()
        expression = self.parse_expression(Precedence.PREFIX)
        return AstExpressionUnary(token.location, token.kind, expression)

    def parse_expression_typeof(self) -> AstExpressionTypeof:
        location = self._expect_current(TokenKind.TYPEOF).location
        return AstExpressionTypeof(location, self.parse_expression(Precedence.PREFIX))

    def parse_expression_delete(self) -> AstExpressionDelete:
        location = self._expect_current(TokenKind.DELETE).location
        target = self.parse_expression(Precedence.PREFIX)
        if not isinstance(target, (AstExpressionMember, AstExpressionIndex)):
            raise ParseError(
                location, "delete target must be a property access", TokenKind.DELETE
            )
        return AstExpressionDelete(location, target)

    def parse_expression_await(self) -> AstExpressionAwait:
        location = self._expect_current(TokenKind.AWAIT).location
        return AstExpressionAwait(location, self.parse_expression(Precedence.PREFIX))

    def parse_expression_prefix_update(self) -> AstExpressionUpdate:
        token = self._advance_token()
        target = self.parse_expression(Precedence.PREFIX)
        if not is_place(target):
            raise ParseError(
                token.location, f"invalid target for prefix {token.kind}", token.kind
            )
        return AstExpressionUpdate(token.location, token.kind, target, True)

    def parse_expression_postfix_update(
        self, lhs: AstExpression
    ) -> AstExpressionUpdate:
        token = self._advance_token()
        return AstExpressionUpdate(token.location, token.kind, lhs, False)

    def parse_expression_binary(self, lhs: AstExpression) -> AstExpressionBinary:
        token = self._advance_token()
        rhs = self.parse_expression(Parser.PRECEDENCES[token.kind])
        return AstExpressionBinary(token.location, token.kind, lhs, rhs)

    def parse_expression_pow(self, lhs: AstExpression) -> AstExpressionBinary:
        token = self._expect_current(TokenKind.POW)
        # Right associative: 2 ** 3 ** 2 is 2 ** (3 ** 2).
        rhs = self.parse_expression(Precedence.MUL_DIV)
        return AstExpressionBinary(token.location, token.kind, lhs, rhs)

    def parse_expression_and(self, lhs: AstExpression) -> AstExpressionAnd:
        location = self._expect_current(TokenKind.AND).location
        return AstExpressionAnd(location, lhs, self.parse_expression(Precedence.AND))

    def parse_expression_or(self, lhs: AstExpression) -> AstExpressionOr:
        location = self._expect_current(TokenKind.OR).location
        return AstExpressionOr(location, lhs, self.parse_expression(Precedence.OR))

    def parse_expression_nullish(self, lhs: AstExpression) -> AstExpressionNullish:
        location = self._expect_current(TokenKind.NULLISH).location
        rhs = self.parse_expression(Precedence.NULLISH)
        return AstExpressionNullish(location, lhs, rhs)

    def parse_expression_ternary(self, lhs: AstExpression) -> AstExpressionTernary:
        location = self._expect_current(TokenKind.QUESTION).location
        consequent = self.parse_expression()
        self._expect_current(TokenKind.COLON)
        alternate = self.parse_expression()
        return AstExpressionTernary(location, lhs, consequent, alternate)

    def parse_expression_pipe(self, lhs: AstExpression) -> AstExpressionPipe:
        location = self._expect_current(TokenKind.PIPE).location
        return AstExpressionPipe(location, lhs, self.parse_expression(Precedence.PIPE))

    def parse_expression_range(self, lhs: AstExpression) -> AstExpressionRange:
        token = self._advance_token()
        rhs = self.parse_expression(Precedence.RANGE)
        inclusive = token.kind == TokenKind.RANGE_INCLUSIVE
        return AstExpressionRange(token.location, lhs, rhs, inclusive)

    def parse_expression_instanceof(
        self, lhs: AstExpression
    ) -> AstExpressionInstanceof:
        location = self._expect_current(TokenKind.INSTANCEOF).location
        rhs = self.parse_expression(Precedence.COMPARE)
        return AstExpressionInstanceof(location, lhs, rhs)

    def parse_expression_call(
        self, lhs: AstExpression, optional: bool = False
    ) -> AstExpressionCall:
        location = self._expect_current(TokenKind.LPAREN).location
        arguments = self._parse_delimited(
            TokenKind.RPAREN, self.parse_expression_element
        )
        return AstExpressionCall(location, lhs, arguments, optional)

    def parse_expression_index(
        self, lhs: AstExpression, optional: bool = False
    ) -> AstExpressionIndex:
        location = self._expect_current(TokenKind.LBRACKET).location
        arrows_allowed = self.arrows_allowed
        self.arrows_allowed = True
        field = self.parse_expression()
        self.arrows_allowed = arrows_allowed
        self._expect_current(TokenKind.RBRACKET)
        return AstExpressionIndex(location, lhs, field, optional)

    def parse_expression_member(self, lhs: AstExpression) -> AstExpressionMember:
        location = self._expect_current(TokenKind.DOT).location
        name = self._expect_name().literal
        return AstExpressionMember(location, lhs, name)

    def parse_expression_optional(self, lhs: AstExpression) -> AstExpression:
        location = self._expect_current(TokenKind.OPTIONAL).location
        if self._check_current(TokenKind.LPAREN):
            return self.parse_expression_call(lhs, optional=True)
        if self._check_current(TokenKind.LBRACKET):
            return self.parse_expression_index(lhs, optional=True)
        name = self._expect_name().literal
        return AstExpressionMember(location, lhs, name, optional=True)

    def parse_expression_match(self) -> AstExpressionMatch:
        location = self._expect_current(TokenKind.MATCH).location
        subject = self.parse_expression()
        self._expect_current(TokenKind.LBRACE)
        arms: list[AstMatchArm] = list()
        while not self._check_current(TokenKind.RBRACE):
            arms.append(self.parse_match_arm())
            self._consume(TokenKind.COMMA)
        self._expect_current(TokenKind.RBRACE)
        return AstExpressionMatch(location, subject, arms)

    def parse_match_arm(self) -> AstMatchArm:
        location = self.current_token.location
        pattern = self.parse_pattern()
        guard: Optional[AstExpression] = None
        if self._consume(TokenKind.IF) or self._consume(TokenKind.WHEN):
            arrows_allowed = self.arrows_allowed
            self.arrows_allowed = False
            guard = self.parse_expression()
            self.arrows_allowed = arrows_allowed
        self._expect_current(TokenKind.ARROW)
        body: Union[AstExpression, AstBlock]
        if self._check_current(TokenKind.LBRACE):
            body = self.parse_block()
        else:
            body = self.parse_expression()
        return AstMatchArm(location, pattern, guard, body)

    def parse_pattern(self) -> AstPattern:
        location = self.current_token.location
        alternatives = [self.parse_pattern_primary()]
        while self._consume(TokenKind.BITOR):
            alternatives.append(self.parse_pattern_primary())
        if len(alternatives) == 1:
            return alternatives[0]
        return AstPatternOr(location, alternatives)

    def parse_pattern_type_name(self) -> str:
        return self._expect_name().literal

    def parse_pattern_literal(self) -> Value:
        if self._consume(TokenKind.SUB):
            return Number(-self._expect_current(TokenKind.NUMBER).value)
        token = self._advance_token()
        if token.kind == TokenKind.NUMBER:
            return Number(token.value)
        if token.kind == TokenKind.STRING:
            return String(token.value)
        if token.kind == TokenKind.TRUE:
            return Boolean(True)
        if token.kind == TokenKind.FALSE:
            return Boolean(False)
        if token.kind == TokenKind.NULL:
            return Null()
        raise ParseError(
            token.location, f"expected pattern, found {quote(token)}", token.kind
        )

    def parse_pattern_primary(self) -> AstPattern:
        location = self.current_token.location
        if self._check_current(TokenKind.IDENTIFIER):
            name = self.parse_identifier()
            if name == "_":
                return AstPatternWildcard(location)
            if self._consume(TokenKind.IS):
                return AstPatternType(location, name, self.parse_pattern_type_name())
            return AstPatternBinding(location, name)
        if self._consume(TokenKind.IS):
            return AstPatternType(location, None, self.parse_pattern_type_name())
        if self._check_current(TokenKind.LBRACKET):
            return self.parse_pattern_array()
        if self._check_current(TokenKind.LBRACE):
            return self.parse_pattern_object()
        value = self.parse_pattern_literal()
        if self._check_current(TokenKind.RANGE) or self._check_current(
            TokenKind.RANGE_INCLUSIVE
        ):
            inclusive = self._advance_token().kind == TokenKind.RANGE_INCLUSIVE
            upper = self.parse_pattern_literal()
            return AstPatternRange(location, value, upper, inclusive)
        return AstPatternLiteral(location, value)

    def parse_pattern_rest(self) -> str:
        # `...name` binds the remainder, a bare `...` discards it.
        self._expect_current(TokenKind.SPREAD)
        if self._check_current(TokenKind.IDENTIFIER):
            return self.parse_identifier()
        return "_"

    def parse_pattern_array(self) -> AstPatternArray:
        location = self._expect_current(TokenKind.LBRACKET).location
        elements: list[AstPattern] = list()
        rest: Optional[str] = None
        while not self._check_current(TokenKind.RBRACKET):
            if self._check_current(TokenKind.SPREAD):
                rest = self.parse_pattern_rest()
                self._consume(TokenKind.COMMA)
                break
            elements.append(self.parse_pattern())
            if not self._consume(TokenKind.COMMA):
                break
        self._expect_current(TokenKind.RBRACKET)
        return AstPatternArray(location, elements, rest)

    def parse_pattern_object(self) -> AstPatternObject:
        location = self._expect_current(TokenKind.LBRACE).location
        fields: list[Tuple[str, AstPattern]] = list()
        rest: Optional[str] = None
        while not self._check_current(TokenKind.RBRACE):
            if self._check_current(TokenKind.SPREAD):
                rest = self.parse_pattern_rest()
                self._consume(TokenKind.COMMA)
                break
            key_location = self.current_token.location
            if self._check_current(TokenKind.STRING):
                key = self._advance_token().value
            else:
                key = self._expect_name().literal
            if self._consume(TokenKind.COLON):
                fields.append((key, self.parse_pattern()))
            else:
                fields.append((key, AstPatternBinding(key_location, key)))
            if not self._consume(TokenKind.COMMA):
                break
        self._expect_current(TokenKind.RBRACE)
        return AstPatternObject(location, fields, rest)

    def parse_block(self) -> AstBlock:
        location = self._expect_current(TokenKind.LBRACE).location
        statements: list[AstStatement] = list()
        self._skip_semicolons()
        while not self._check_current(TokenKind.RBRACE):
            if self._check_current(TokenKind.EOF):
                raise self._error("expected `}`, found end-of-file")
            statements.append(self.parse_statement())
            self._skip_semicolons()
        self._expect_current(TokenKind.RBRACE)
        return AstBlock(location, statements)

    def parse_statement(self) -> AstStatement:
        kind = self.current_token.kind
        if kind == TokenKind.LET or kind == TokenKind.CONST:
            return self.parse_statement_let()
        if kind == TokenKind.FN and self._check_peek(TokenKind.IDENTIFIER):
            return self.parse_statement_function()
        if (
            kind == TokenKind.ASYNC
            and self._check_peek(TokenKind.FN)
            and self._check_peek(TokenKind.IDENTIFIER, 2)
        ):
            return self.parse_statement_function()
        if kind == TokenKind.CLASS:
            return self.parse_statement_class()
        if kind == TokenKind.IMPORT:
            return self.parse_statement_import()
        if kind == TokenKind.EXPORT:
            return self.parse_statement_export()
        if kind == TokenKind.IF:
            return self.parse_statement_if()
        if kind == TokenKind.SWITCH:
            return self.parse_statement_switch()
        if kind == TokenKind.LOOP or kind == TokenKind.FOR:
            return self.parse_statement_loop()
        if kind == TokenKind.WHILE:
            return self.parse_statement_while()
        if kind == TokenKind.DO:
            return self.parse_statement_do_while()
        if kind == TokenKind.TRY:
            return self.parse_statement_try()
        if kind == TokenKind.THROW:
            return self.parse_statement_throw()
        if kind == TokenKind.RETURN:
            return self.parse_statement_return()
        if kind == TokenKind.BREAK:
            location = self._advance_token().location
            return AstStatementBreak(location)
        if kind == TokenKind.CONTINUE:
            location = self._advance_token().location
            return AstStatementContinue(location)
        if kind == TokenKind.PRINT:
            location = self._advance_token().location
            return AstStatementPrint(location, self.parse_expression())
        if kind == TokenKind.LBRACE:
            block = self.parse_block()
            return AstStatementBlock(block.location, block)
        return self.parse_statement_expression_or_assignment()

    def parse_destructure_target(self) -> AstDestructureTarget:
        location = self.current_token.location
        target: Union[str, AstDestructure]
        if self._check_current(TokenKind.LBRACKET):
            target = self.parse_destructure_array()
        elif self._check_current(TokenKind.LBRACE):
            target = self.parse_destructure_object()
        else:
            target = self.parse_identifier()
        default: Optional[AstExpression] = None
        if self._consume(TokenKind.ASSIGN):
            default = self.parse_expression()
        return AstDestructureTarget(location, target, default)

    def parse_destructure_array(self) -> AstDestructureArray:
        location = self._expect_current(TokenKind.LBRACKET).location
        elements: list[Optional[AstDestructureTarget]] = list()
        rest: Optional[str] = None
        while not self._check_current(TokenKind.RBRACKET):
            if self._consume(TokenKind.COMMA):
                elements.append(None)
                continue
            if self._consume(TokenKind.SPREAD):
                rest = self.parse_identifier()
                self._consume(TokenKind.COMMA)
                break
            elements.append(self.parse_destructure_target())
            if not self._consume(TokenKind.COMMA):
                break
        self._expect_current(TokenKind.RBRACKET)
        return AstDestructureArray(location, elements, rest)

    def parse_destructure_object(self) -> AstDestructureObject:
        location = self._expect_current(TokenKind.LBRACE).location
        properties: list[Tuple[str, AstDestructureTarget]] = list()
        rest: Optional[str] = None
        while not self._check_current(TokenKind.RBRACE):
            if self._consume(TokenKind.SPREAD):
                rest = self.parse_identifier()
                self._consume(TokenKind.COMMA)
                break
            key_location = self.current_token.location
            key = self.parse_identifier()
            if self._consume(TokenKind.COLON):
                target = self.parse_destructure_target()
            else:
                default: Optional[AstExpression] = None
                if self._consume(TokenKind.ASSIGN):
                    default = self.parse_expression()
                target = AstDestructureTarget(key_location, key, default)
            properties.append((key, target))
            if not self._consume(TokenKind.COMMA):
                break
        self._expect_current(TokenKind.RBRACE)
        return AstDestructureObject(location, properties, rest)

    def parse_statement_let(self) -> AstStatement:
        token = self._advance_token()
        location = token.location
        constant = token.kind == TokenKind.CONST
        if self._check_current(TokenKind.LBRACKET) or self._check_current(
            TokenKind.LBRACE
        ):
            pattern: AstDestructure
            if self._check_current(TokenKind.LBRACKET):
                pattern = self.parse_destructure_array()
            else:
                pattern = self.parse_destructure_object()
            self._expect_current(TokenKind.ASSIGN)
            expression = self.parse_expression()
            return AstStatementDestructure(location, pattern, expression, constant)
        name = self.parse_identifier()
        if constant or self._check_current(TokenKind.ASSIGN):
            self._expect_current(TokenKind.ASSIGN)
            expression = self.parse_expression()
            if isinstance(expression, AstExpressionFunction) and expression.name is None:
                expression.name = name
            return AstStatementLet(location, name, expression, constant)
        return AstStatementLet(location, name, None, constant)

    def parse_statement_function(self) -> AstStatementFunction:
        location = self.current_token.location
        is_async = self._consume(TokenKind.ASYNC)
        function = self.parse_expression_function(is_async)
        return AstStatementFunction(location, function)

    def parse_class_member(self) -> AstClassMember:
        location = self.current_token.location
        is_static = self._consume(TokenKind.STATIC)
        kind = "method"
        is_async = self._consume(TokenKind.ASYNC)
        self._consume(TokenKind.FN)
        if (
            not is_async
            and self._check_current(TokenKind.IDENTIFIER)
            and self.current_token.literal in ("get", "set")
            and not self._check_peek(TokenKind.LPAREN)
            and not self._check_peek(TokenKind.ASSIGN)
        ):
            kind = "getter" if self._advance_token().literal == "get" else "setter"
        name = self._expect_name().literal
        if self._check_current(TokenKind.LPAREN):
            parameters = self.parse_parameters()
            body = self.parse_block()
            function = AstExpressionFunction(location, name, parameters, body, is_async)
            return AstClassMember(location, name, kind, is_static, function)
        if kind != "method" or is_async:
            raise self._error(f"expected `(`, found {quote(self.current_token)}")
        value: Optional[AstExpression] = None
        if self._consume(TokenKind.ASSIGN):
            value = self.parse_expression()
        return AstClassMember(location, name, "property", is_static, value=value)

    def parse_statement_class(self) -> AstStatementClass:
        location = self._expect_current(TokenKind.CLASS).location
        name = self.parse_identifier()
        parent: Optional[AstExpression] = None
        if self._consume(TokenKind.EXTENDS):
            parent = self.parse_expression()
        self._expect_current(TokenKind.LBRACE)
        members: list[AstClassMember] = list()
        self._skip_semicolons()
        while not self._check_current(TokenKind.RBRACE):
            if self._check_current(TokenKind.EOF):
                raise self._error("expected `}`, found end-of-file")
            members.append(self.parse_class_member())
            self._skip_semicolons()
            self._consume(TokenKind.COMMA)
        self._expect_current(TokenKind.RBRACE)
        return AstStatementClass(location, name, parent, members)

    def parse_module_path(self) -> str:
        return self._expect_current(TokenKind.STRING).value

    def parse_import_specifier(self) -> Tuple[str, str]:
        exported = self._expect_name().literal
        local = exported
        if self._consume(TokenKind.AS):
            local = self.parse_identifier()
        return (exported, local)

    def parse_statement_import(self) -> AstStatementImport:
        location = self._expect_current(TokenKind.IMPORT).location
        if self._check_current(TokenKind.STRING):
            return AstStatementImport(location, self.parse_module_path(), None, [], None)
        default: Optional[str] = None
        names: list[Tuple[str, str]] = list()
        namespace: Optional[str] = None
        if self._check_current(TokenKind.IDENTIFIER):
            default = self.parse_identifier()
            self._consume(TokenKind.COMMA)
        if self._consume(TokenKind.MUL):
            self._expect_current(TokenKind.AS)
            namespace = self.parse_identifier()
        elif self._consume(TokenKind.LBRACE):
            names = self._parse_delimited(TokenKind.RBRACE, self.parse_import_specifier)
        elif default is None:
            raise self._error(
                f"expected import specifier, found {quote(self.current_token)}"
            )
        self._expect_current(TokenKind.FROM)
        path = self.parse_module_path()
        return AstStatementImport(location, path, default, names, namespace)

    def parse_export_specifier(self) -> Tuple[str, str]:
        local = self.parse_identifier()
        exported = local
        if self._consume(TokenKind.AS):
            exported = self._expect_name().literal
        return (local, exported)

    def parse_statement_export(self) -> AstStatementExport:
        location = self._expect_current(TokenKind.EXPORT).location
        if self._consume(TokenKind.DEFAULT):
            return AstStatementExport(location, None, [], self.parse_expression())
        if self._consume(TokenKind.LBRACE):
            names = self._parse_delimited(TokenKind.RBRACE, self.parse_export_specifier)
            return AstStatementExport(location, None, names)
        declaration = self.parse_statement()
        if not isinstance(
            declaration,
            (
                AstStatementLet,
                AstStatementDestructure,
                AstStatementFunction,
                AstStatementClass,
            ),
        ):
            raise ParseError(
                location, "expected declaration after `export`", TokenKind.EXPORT
            )
        return AstStatementExport(location, declaration, [])

    def parse_statement_if(self) -> AstStatementIf:
        location = self.current_token.location

        def parse_conditional() -> AstConditional:
            location = self._advance_token().location
            condition = self.parse_expression()
            body = self.parse_block()
            return AstConditional(location, condition, body)

        conditionals: list[AstConditional] = [parse_conditional()]
        else_block: Optional[AstBlock] = None
        while self._consume(TokenKind.ELSE):
            if self._check_current(TokenKind.IF):
                conditionals.append(parse_conditional())
                continue
            else_block = self.parse_block()
            break
        return AstStatementIf(location, conditionals, else_block)

    def parse_statement_switch(self) -> AstStatementSwitch:
        location = self._expect_current(TokenKind.SWITCH).location
        discriminant = self.parse_expression()
        self._expect_current(TokenKind.LBRACE)
        cases: list[AstSwitchCase] = list()
        while not self._check_current(TokenKind.RBRACE):
            case_location = self.current_token.location
            test: Optional[AstExpression] = None
            if self._consume(TokenKind.CASE):
                test = self.parse_expression()
            else:
                self._expect_current(TokenKind.DEFAULT)
            self._expect_current(TokenKind.COLON)
            statements: list[AstStatement] = list()
            self._skip_semicolons()
            while not (
                self._check_current(TokenKind.CASE)
                or self._check_current(TokenKind.DEFAULT)
                or self._check_current(TokenKind.RBRACE)
                or self._check_current(TokenKind.EOF)
            ):
                statements.append(self.parse_statement())
                self._skip_semicolons()
            cases.append(AstSwitchCase(case_location, test, statements))
        self._expect_current(TokenKind.RBRACE)
        return AstStatementSwitch(location, discriminant, cases)

    def parse_statement_loop(self) -> AstStatement:
        # loop { ... }
        # loop i from a to b [step s] { ... }
        # loop x in X { ... }        for x of X { ... }
        # with an optional parenthesized header and `let`/`const` binding.
        token = self._advance_token()
        location = token.location
        if token.kind == TokenKind.LOOP and self._check_current(TokenKind.LBRACE):
            return AstStatementWhile(location, None, self.parse_block())
        parenthesized = self._consume(TokenKind.LPAREN)
        if not self._consume(TokenKind.LET):
            self._consume(TokenKind.CONST)
        name = self.parse_identifier()
        if self._check_current(TokenKind.IN) or self._check_current(TokenKind.OF):
            keys = self._advance_token().kind == TokenKind.IN
            iterable = self.parse_expression()
            if parenthesized:
                self._expect_current(TokenKind.RPAREN)
            return AstStatementForIn(location, name, iterable, self.parse_block(), keys)
        if self._consume(TokenKind.FROM):
            start = self.parse_expression()
            self._expect_current(TokenKind.TO)
            end = self.parse_expression()
            step: Optional[AstExpression] = None
            if self._consume(TokenKind.STEP):
                step = self.parse_expression()
            if parenthesized:
                self._expect_current(TokenKind.RPAREN)
            return AstStatementLoopRange(
                location, name, start, end, step, self.parse_block()
            )
        raise self._error(
            f"expected `in`, `of`, or `from`, found {quote(self.current_token)}"
        )

    def parse_statement_while(self) -> AstStatementWhile:
        location = self._expect_current(TokenKind.WHILE).location
        expression = self.parse_expression()
        return AstStatementWhile(location, expression, self.parse_block())

    def parse_statement_do_while(self) -> AstStatementDoWhile:
        location = self._expect_current(TokenKind.DO).location
        block = self.parse_block()
        self._expect_current(TokenKind.WHILE)
        return AstStatementDoWhile(location, block, self.parse_expression())

    def parse_statement_try(self) -> AstStatementTry:
        location = self._expect_current(TokenKind.TRY).location
        try_block = self.parse_block()
        catch_name: Optional[str] = None
        catch_block: Optional[AstBlock] = None
        finally_block: Optional[AstBlock] = None
        if self._consume(TokenKind.CATCH):
            if self._consume(TokenKind.LPAREN):
                catch_name = self.parse_identifier()
                self._expect_current(TokenKind.RPAREN)
            elif self._check_current(TokenKind.IDENTIFIER):
                catch_name = self.parse_identifier()
            catch_block = self.parse_block()
        if self._consume(TokenKind.FINALLY):
            finally_block = self.parse_block()
        if catch_block is None and finally_block is None:
            raise self._error(
                f"expected `catch` or `finally`, found {quote(self.current_token)}"
            )
        return AstStatementTry(
            location, try_block, catch_name, catch_block, finally_block
        )

    def parse_statement_throw(self) -> AstStatementThrow:
        location = self._expect_current(TokenKind.THROW).location
        return AstStatementThrow(location, self.parse_expression())

    def parse_statement_return(self) -> AstStatementReturn:
        location = self._expect_current(TokenKind.RETURN).location
        if self.current_token.kind in Parser.RETURN_TERMINATORS:
            return AstStatementReturn(location, None)
        return AstStatementReturn(location, self.parse_expression())

    def parse_statement_expression_or_assignment(self) -> AstStatement:
        location = self.current_token.location
        expression = self.parse_expression()
        if self.current_token.kind in ASSIGNMENTS:
            operator = self._advance_token().kind
            if not is_place(expression):
                raise ParseError(
                    location, "invalid assignment target", operator
                )
            rhs = self.parse_expression()
            if (
                isinstance(expression, AstExpressionIdentifier)
                and isinstance(rhs, AstExpressionFunction)
                and rhs.name is None
            ):
                rhs.name = expression.name
            return AstStatementAssignment(location, operator, expression, rhs)
        return AstStatementExpression(location, expression)


def parse(tokens: list[Token]) -> AstProgram:
    """
    Build the program AST from tokens produced by `tokenize`.
    Raises ParseError on the first syntax error.
    """
    return Parser(tokens).parse_program()


def parse_source(source: str, filename: Optional[str] = None) -> AstProgram:
    return parse(tokenize(source, filename))


def builtin(nameof: str, args: Optional[list] = None):
    """
    Generate a Builtin subclass from a plain function. When `args` is a list
    of Value types the arguments are count and type checked before being
    passed positionally, otherwise the function receives the raw argument
    list.
    """

    def decorator(func: Callable) -> Type[Builtin]:
        class GeneratedBuiltin(Builtin):
            name = nameof

            def function(self, arguments: list[Value]) -> Union[Value, Thrown]:
                if args is None:
                    return func(arguments)

                Builtin.expect_argument_count(arguments, len(args))
                processed_args = []
                for i, arg_type in enumerate(args):
                    try:
                        processed_args.append(
                            Builtin.typed_argument(arguments, i, arg_type)
                        )
                    except Exception as e:
                        return Thrown(None, str(e))
                return func(*processed_args)

        GeneratedBuiltin.__name__ = f"Builtin_{func.__name__}"
        return GeneratedBuiltin

    return decorator


@builtin("len", [Value])
def builtin_len(value: Value) -> Union[Value, Thrown]:
    if isinstance(value, Array):
        return Number(len(value.elements))
    if isinstance(value, String):
        return Number(len(value.data))
    if isinstance(value, Object):
        return Number(len(value.fields))
    return Thrown(None, f"expected array, string, or object, received {typename(value)}")


@builtin("str", [Value])
def builtin_str(value: Value) -> Union[Value, Thrown]:
    return String(str(value))


@builtin("num", [Value])
def builtin_num(value: Value) -> Union[Value, Thrown]:
    if isinstance(value, Number):
        return value
    if isinstance(value, Boolean):
        return Number(1 if value.data else 0)
    if isinstance(value, String):
        try:
            return Number(float(value.data.strip()))
        except ValueError:
            return Number(math.nan)
    return Thrown(None, f"cannot convert value of type {typename(value)} to number")


@builtin("int", [Value])
def builtin_int(value: Value) -> Union[Value, Thrown]:
    number = builtin_num().function([value])
    if not isinstance(number, Number) or not math.isfinite(number.data):
        return number
    return Number(math.trunc(number.data))


@builtin("type", [Value])
def builtin_type(value: Value) -> Union[Value, Thrown]:
    return String(typename(value))


@builtin("keys", [Value])
def builtin_keys(value: Value) -> Union[Value, Thrown]:
    if isinstance(value, Object):
        return Array([String(k) for k in value.fields.keys()])
    if isinstance(value, Instance):
        return Array([String(k) for k in value.properties.keys()])
    return Thrown(None, f"expected object, received {typename(value)}")


@builtin("values", [Value])
def builtin_values(value: Value) -> Union[Value, Thrown]:
    if isinstance(value, Object):
        return Array(list(value.fields.values()))
    if isinstance(value, Instance):
        return Array(list(value.properties.values()))
    return Thrown(None, f"expected object, received {typename(value)}")


@builtin("push")
def builtin_push(arguments: list[Value]) -> Union[Value, Thrown]:
    if len(arguments) == 0:
        return Thrown(None, "expected array argument")
    array = Builtin.typed_argument(arguments, 0, Array)
    array.elements.extend(arguments[1:])
    return Number(len(array.elements))


@builtin("pop", [Array])
def builtin_pop(array: Array) -> Union[Value, Thrown]:
    if len(array.elements) == 0:
        return Null()
    return array.elements.pop()


@builtin("range")
def builtin_range(arguments: list[Value]) -> Union[Value, Thrown]:
    if not 1 <= len(arguments) <= 3:
        return Thrown(
            None,
            f"invalid argument count (expected 1 to 3, received {len(arguments)})",
        )
    bounds = [Builtin.typed_argument(arguments, i, Number).data for i in range(len(arguments))]
    if len(bounds) == 1:
        bounds.insert(0, 0.0)
    (start, stop, step) = (bounds + [1.0])[:3]
    if step == 0:
        return Thrown(None, "range step must be non-zero")
    elements: list[Value] = list()
    current = start
    while current < stop if step > 0 else current > stop:
        elements.append(Number(current))
        current += step
    return Array(elements)


@builtin("abs", [Number])
def builtin_abs(number: Number) -> Union[Value, Thrown]:
    return Number(abs(number.data))


@builtin("floor", [Number])
def builtin_floor(number: Number) -> Union[Value, Thrown]:
    if not math.isfinite(number.data):
        return number
    return Number(math.floor(number.data))


@builtin("ceil", [Number])
def builtin_ceil(number: Number) -> Union[Value, Thrown]:
    if not math.isfinite(number.data):
        return number
    return Number(math.ceil(number.data))


@builtin("round", [Number])
def builtin_round(number: Number) -> Union[Value, Thrown]:
    if not math.isfinite(number.data):
        return number
    # Halves round towards positive infinity.
    return Number(math.floor(number.data + 0.5))


@builtin("sqrt", [Number])
def builtin_sqrt(number: Number) -> Union[Value, Thrown]:
    if number.data < 0:
        return Number(math.nan)
    return Number(math.sqrt(number.data))


def numeric_arguments(nameof: str, arguments: list[Value]) -> list[float]:
    # Either numbers or a single array of numbers.
    if len(arguments) == 1 and isinstance(arguments[0], Array):
        arguments = arguments[0].elements
    if len(arguments) == 0:
        raise Exception(f"{nameof} of an empty sequence")
    return [Builtin.typed_argument(arguments, i, Number).data for i in range(len(arguments))]


@builtin("min")
def builtin_min(arguments: list[Value]) -> Union[Value, Thrown]:
    return Number(min(numeric_arguments("min", arguments)))


@builtin("max")
def builtin_max(arguments: list[Value]) -> Union[Value, Thrown]:
    return Number(max(numeric_arguments("max", arguments)))


@builtin("join")
def builtin_join(arguments: list[Value]) -> Union[Value, Thrown]:
    if len(arguments) not in (1, 2):
        return Thrown(
            None,
            f"invalid argument count (expected 1 or 2, received {len(arguments)})",
        )
    array = Builtin.typed_argument(arguments, 0, Array)
    separator = ","
    if len(arguments) == 2:
        separator = Builtin.typed_argument(arguments, 1, String).data
    return String(separator.join(str(x) for x in array.elements))


@builtin("split", [String, String])
def builtin_split(text: String, separator: String) -> Union[Value, Thrown]:
    if len(separator.data) == 0:
        return Array([String(c) for c in text.data])
    return Array([String(x) for x in text.data.split(separator.data)])


@builtin("upper", [String])
def builtin_upper(text: String) -> Union[Value, Thrown]:
    return String(text.data.upper())


@builtin("lower", [String])
def builtin_lower(text: String) -> Union[Value, Thrown]:
    return String(text.data.lower())


@builtin("contains", [Value, Value])
def builtin_contains(container: Value, item: Value) -> Union[Value, Thrown]:
    if isinstance(container, Array):
        return Boolean(any(x == item for x in container.elements))
    if isinstance(container, String) and isinstance(item, String):
        return Boolean(item.data in container.data)
    if isinstance(container, Object) and isinstance(item, String):
        return Boolean(item.data in container.fields)
    return Thrown(
        None,
        f"attempted contains on type {typename(container)} with type {typename(item)}",
    )


@builtin("test", [String, String])
def builtin_test(text: String, pattern: String) -> Union[Value, Thrown]:
    return Boolean(re2.compile(pattern.data).search(text.data) is not None)


@builtin("findall", [String, String])
def builtin_findall(text: String, pattern: String) -> Union[Value, Thrown]:
    matches = re2.compile(pattern.data).finditer(text.data)
    return Array([String(match.group(0)) for match in matches])


@builtin("replace", [String, String, String])
def builtin_replace(
    text: String, pattern: String, replacement: String
) -> Union[Value, Thrown]:
    return String(re2.compile(pattern.data).sub(replacement.data, text.data))


@builtin("json", [Value])
def builtin_json(value: Value) -> Union[Value, Thrown]:
    return String(json.dumps(to_python(value), ensure_ascii=False))


@builtin("parse", [String])
def builtin_parse(text: String) -> Union[Value, Thrown]:
    return from_python(json.loads(text.data))


@builtin("resolve", [Value])
def builtin_resolve(value: Value) -> Union[Value, Thrown]:
    return Pending.settled(value)


@builtin("sleep", [Number])
def builtin_sleep(milliseconds: Number) -> Union[Value, Thrown]:
    def thunk() -> Value:
        time.sleep(max(milliseconds.data, 0) / 1000)
        return Null()

    return Pending(thunk)


BUILTINS: dict[str, Type[Builtin]] = {
    generated.name: generated
    for generated in (
        builtin_len,
        builtin_str,
        builtin_num,
        builtin_int,
        builtin_type,
        builtin_keys,
        builtin_values,
        builtin_push,
        builtin_pop,
        builtin_range,
        builtin_abs,
        builtin_floor,
        builtin_ceil,
        builtin_round,
        builtin_sqrt,
        builtin_min,
        builtin_max,
        builtin_join,
        builtin_split,
        builtin_upper,
        builtin_lower,
        builtin_contains,
        builtin_test,
        builtin_findall,
        builtin_replace,
        builtin_json,
        builtin_parse,
        builtin_resolve,
        builtin_sleep,
    )
}


class Interpreter:
    """
    Evaluates programs against a persistent global environment. The global
    environment is a child of the builtin environment, so programs may shadow
    builtins without replacing them.
    """

    def __init__(
        self,
        builtins: Optional[Mapping[str, Any]] = None,
        search_path: Optional[Iterable[Union[str, Path]]] = None,
    ):
        self.builtins = Environment()
        for name, entry in (BUILTINS if builtins is None else builtins).items():
            self.register(name, entry)
        if search_path is None:
            environ = os.environ.get("VOXEL_SEARCH_PATH", "")
            search_path = [x for x in environ.split(os.pathsep) if len(x) != 0]
        self.search_path: list[str] = [str(x) for x in search_path]
        self.modules: dict[str, Module] = dict()
        self.module = Module(self, None, os.getcwd())
        self.globals = Environment(self.builtins, self.module)

    def register(self, name: str, entry: Any) -> None:
        """
        Add a host entry to the builtin environment. Builtin subclasses are
        instantiated, Values are bound as-is, and other callables are wrapped
        with PythonBuiltin.
        """
        if isinstance(entry, type) and issubclass(entry, Builtin):
            entry = entry()
        if not isinstance(entry, Value):
            if not callable(entry):
                raise TypeError(f"builtin {quote(name)} is not callable")
            entry = PythonBuiltin(name, entry)
        if name in self.builtins.store:
            logger.debug("Overwriting builtin %s", name)
        self.builtins.let(name, entry, constant=True)

    def run(self, program: AstProgram) -> Optional[Value]:
        """
        Evaluate the program, returning the value of the last value statement
        that was run: an expression, a declaration or an assignment. Uncaught script errors are raised as
        ScriptError and escaped break or continue as ControlFlowError.
        """
        result = program.eval(self.globals)
        if isinstance(result, Thrown):
            raise result.exception()
        return result

    def eval(self, source: str, filename: Optional[str] = None) -> Optional[Value]:
        return self.run(parse_source(source, filename))

    def eval_file(self, path: Union[str, Path]) -> Optional[Value]:
        path = Path(path).resolve()
        source = path.read_text(encoding="utf-8")
        self.module.path = str(path)
        self.module.directory = str(path.parent)
        self.modules[str(path)] = self.module
        return self.eval(source, str(path))

    def resolve_module(self, path: str, directory: str) -> Optional[Path]:
        # Relative to the importing module first, then the search path. The
        # exact path is tried before appending each source extension, and a
        # directory resolves to its `lib` module.
        for base in [directory, *self.search_path]:
            target = Path(base) / path
            candidates = [target]
            candidates += [target.with_name(target.name + x) for x in SOURCE_EXTENSIONS]
            candidates += [target / f"lib{x}" for x in SOURCE_EXTENSIONS]
            for candidate in candidates:
                if candidate.is_file():
                    return candidate.resolve()
        return None

    def load_module(
        self, location: Optional[SourceLocation], path: str, directory: str
    ) -> Union[Module, Thrown]:
        resolved = self.resolve_module(path, directory)
        if resolved is None:
            return Thrown(location, f"module {quote(path)} not found", ModuleError)
        key = str(resolved)
        if key in self.modules:
            logger.debug("Using cached module %s", key)
            return self.modules[key]

        logger.debug("Loading module %s from %s", path, key)
        try:
            program = parse_source(resolved.read_text(encoding="utf-8"), key)
        except (OSError, LexError, ParseError) as e:
            return Thrown(
                location, f"failed to load module {quote(path)}: {e}", ModuleError
            )
        module = Module(self, key, str(resolved.parent))
        # Cached before evaluation so that circular imports observe the
        # partially initialized exports instead of recursing.
        self.modules[key] = module
        result = program.eval(Environment(self.builtins, module))
        if isinstance(result, Thrown):
            del self.modules[key]
            return result
        return module
