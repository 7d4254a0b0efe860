from __future__ import annotations

from newt_re.nscript.printer import Printer


def test_line_breaks_are_deferred_until_next_token() -> None:
    p = Printer()
    p.write("a")
    p.new_line(";")
    p.begin()
    p.write("b")
    assert p.getvalue() == "a;\nb"


def test_divider_can_be_retracted() -> None:
    p = Printer()
    for item in ("x", "y"):
        p.begin()
        p.write(item)
        p.divider(", ")
    p.clear_divider()
    p.write(")")
    assert p.getvalue() == "x, y)"


def test_indentation_applies_to_following_lines() -> None:
    p = Printer(indent_text="\t")
    p.write("begin")
    p.new_line(delta=+1)
    p.begin()
    p.write("x")
    p.new_line(";")
    p.begin(-1)
    p.write("end")
    p.new_line()
    assert p.getvalue() == "begin\n\tx;\nend\n"


def test_indent_never_goes_negative() -> None:
    p = Printer()
    p.end(-3)
    p.write("x")
    assert p.level == 0
    assert p.getvalue() == "x"


def test_trailing_whitespace_is_stripped() -> None:
    p = Printer()
    p.indent(2)
    p.write("a")
    p.new_line()
    p.begin()
    p.new_line()
    p.begin()
    p.write("b")
    assert p.getvalue() == "    a\n\n    b"
