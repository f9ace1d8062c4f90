from calc_pad.statement import StatementKind, parse_statement


def test_empty_lines():
    assert parse_statement("").kind == StatementKind.EMPTY
    assert parse_statement("   \t").kind == StatementKind.EMPTY


def test_bare_expression():
    statement = parse_statement("  2 + 2 ")
    assert statement.kind == StatementKind.EXPR
    assert statement.expr_source == "2 + 2"
    assert statement.name is None


def test_assignment():
    statement = parse_statement("rent_2024 = $1,200 ")
    assert statement.kind == StatementKind.ASSIGN
    assert statement.name == "rent_2024"
    assert statement.expr_source == "$1,200"


def test_assignment_errors():
    assert parse_statement("1a = 2").error == "Invalid assignment target"
    assert parse_statement("a b = 2").error == "Invalid assignment target"
    assert parse_statement(" = 2").error == "Invalid assignment target"
    assert parse_statement("x =  ").error == "Missing assignment expression"
    assert parse_statement("x = 1 = 2").error == "Unexpected trailing = in assignment"
    assert parse_statement("total = 5").error == "Cannot assign to reserved name: total"
    assert parse_statement("x = 1 = 2").kind == StatementKind.ERROR
