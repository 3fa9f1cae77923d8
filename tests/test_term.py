import io

import pytest

from budva.term import Terminal


class _Boom(Exception):
    pass


class _FailingReader:
    def readline(self):
        raise _Boom("boom")


def _terminal(text=""):
    out = io.StringIO()
    return Terminal(io.StringIO(text), out, 0), out


@pytest.mark.parametrize(
    "text, expected",
    [
        ("hello\n", "hello"),
        ("  padded value  \n", "padded value"),
        ("\tvalue\r\n", "value"),
        ("\n", ""),
        ("first\nsecond\n", "first"),
    ],
)
def test_read_line(text, expected):
    term, _ = _terminal(text)
    assert term.read_line() == expected


def test_read_line_empty_input_raises_eof():
    term, _ = _terminal("")
    with pytest.raises(EOFError):
        term.read_line()


def test_read_line_reader_error_is_propagated():
    term = Terminal(_FailingReader(), io.StringIO(), 0)
    with pytest.raises(_Boom):
        term.read_line()


def test_read_line_sequential_calls():
    term, _ = _terminal("alpha\nbeta\ngamma\n")
    assert [term.read_line() for _ in range(3)] == ["alpha", "beta", "gamma"]
    with pytest.raises(EOFError):
        term.read_line()


@pytest.mark.parametrize(
    "args, expected",
    [
        (("hello",), "hello\n"),
        (("foo", "bar", 42), "foo bar 42\n"),
        ((), "\n"),
    ],
)
def test_println(args, expected):
    term, out = _terminal()
    term.println(*args)
    assert out.getvalue() == expected


@pytest.mark.parametrize(
    "fmt, args, expected",
    [
        ("hello", (), "hello"),
        ("%s=%d\n", ("answer", 42), "answer=42\n"),
        ("100%%", (), "100%"),
    ],
)
def test_printf(fmt, args, expected):
    term, out = _terminal()
    term.printf(fmt, *args)
    assert out.getvalue() == expected


def test_read_password_invalid_fd():
    term = Terminal(io.StringIO(""), io.StringIO(), -1)
    with pytest.raises(OSError):
        term.read_password()