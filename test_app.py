import pytest

from calc_pad import app as app_module
from calc_pad.document import evaluate_document


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(app_module, "DATABASE", str(tmp_path / "documents.db"))
    app_module.EDITOR_STATES.clear()
    app_module.init_db()
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as client:
        yield client


def create(client, content):
    response = client.post("/documents", json={"content": content})
    assert response.status_code == 201
    return response.get_json()["document_id"]


# --- Titles ---


def test_document_titles():
    assert app_module.derive_document_title("# Groceries\nmilk = $3") == "Groceries"
    assert app_module.derive_document_title("rent = $1,200") == "rent = $1,200"
    assert app_module.derive_document_title("") == "Untitled"
    assert app_module.derive_document_title("#   \n2") == "Untitled"

    title = app_module.derive_document_title("a very long first line that keeps going")
    assert len(title) == 28
    assert title.endswith("…")


# --- Stateless Endpoints ---


def test_evaluate_endpoint(client):
    response = client.post("/evaluate", json={"text": "a = $10\na * 3\n"})
    assert response.status_code == 200
    data = response.get_json()
    assert [line["value"] for line in data["lines"]] == ["$10", "$30", ""]
    assert data["lines"][0]["name"] == "a"
    assert data["total"] == "$40"


def test_evaluate_reports_errors(client):
    data = client.post("/evaluate", json={"text": "1 / 0"}).get_json()
    assert data["lines"][0]["error"] == "Division by zero"
    assert data["total"] == "0"


def test_evaluate_requires_text(client):
    assert client.post("/evaluate", json={}).status_code == 400
    assert client.post("/evaluate", json={"text": 5}).status_code == 400
    assert client.post("/evaluate", data="not json").status_code == 400
    assert client.post("/evaluate", json=["2 + 2"]).status_code == 400
    assert client.post("/highlight", json=["2 + 2"]).status_code == 400


def test_highlight_endpoint(client):
    data = client.post("/highlight", json={"text": "2 m # note"}).get_json()
    assert data["lines"] == [
        [
            {"type": "number", "text": "2"},
            {"type": "whitespace", "text": " "},
            {"type": "unit", "text": "m"},
            {"type": "whitespace", "text": " "},
            {"type": "comment", "text": "# note"},
        ]
    ]


# --- Documents ---


def test_document_lifecycle(client):
    document_id = create(client, "# Budget\nrent = $1,200")

    data = client.get(f"/documents/{document_id}").get_json()
    assert data["title"] == "Budget"
    assert data["content"] == "# Budget\nrent = $1,200"

    response = client.put(f"/documents/{document_id}", json={"content": "# Trip\n5 mi to km"})
    assert response.status_code == 200
    assert response.get_json()["title"] == "Trip"

    data = client.post(f"/documents/{document_id}/evaluate").get_json()
    assert data["lines"][1]["value"].endswith(" km")

    listed = client.get("/documents").get_json()["documents"]
    assert [document["document_id"] for document in listed] == [document_id]

    assert client.delete(f"/documents/{document_id}").status_code == 204
    assert client.get(f"/documents/{document_id}").status_code == 404
    assert client.delete(f"/documents/{document_id}").status_code == 404


def test_missing_documents(client):
    assert client.get("/documents/nope").status_code == 404
    assert client.put("/documents/nope", json={"content": "1"}).status_code == 404
    assert client.post("/documents/nope/evaluate").status_code == 404
    assert client.post("/documents/nope/sync", json={"content": "1"}).status_code == 404


def test_create_rejects_non_string_content(client):
    assert client.post("/documents", json={"content": 3}).status_code == 400
    assert client.post("/documents", json=["1"]).status_code == 400


def test_sync_masks_the_active_line(client):
    document_id = create(client, "")
    url = f"/documents/{document_id}/sync"

    client.post(url, json={"content": "x = 5\nx * 2", "active_line": 0})
    data = client.post(url, json={"content": "x = 5 +\nx * 2", "active_line": 0}).get_json()
    first, second = data["lines"]
    assert first["has_error"] and not first["show_error"]
    assert first["display_value"] == "5"
    assert second["display_value"] == "10"

    assert client.get(f"/documents/{document_id}").get_json()["content"] == "x = 5 +\nx * 2"


def test_sync_validates_caret_fields(client):
    document_id = create(client, "")
    url = f"/documents/{document_id}/sync"
    assert client.post(url, json={"content": "1", "active_line": "0"}).status_code == 400
    assert client.post(url, json={"content": "1", "has_focus": "yes"}).status_code == 400
    assert client.post(url, json={"active_line": 0}).status_code == 400
    assert client.post(url, json=[0]).status_code == 400


# --- CLI ---


def test_format_result_lines_keeps_comments():
    text = "a = 2 # base\nlonger_name = a * 3\n# note\n1 +"
    rows = app_module.format_result_lines(text, evaluate_document(text))
    width = len("longer_name = a * 3")
    assert rows == [
        f"{'a = 2 # base'.ljust(width)}  = 2",
        "longer_name = a * 3  = 6",
        "# note",
        f"{'1 +'.ljust(width)}  ! Unexpected end of input",
    ]


def test_file_mode(tmp_path, capsys):
    path = tmp_path / "budget.txt"
    path.write_text("rent = $1,200\nrent * 12\n", encoding="utf-8")

    assert app_module.run_cli_mode([str(path)]) == 0
    output = capsys.readouterr().out
    assert "= $14,400" in output


def test_file_mode_exit_code_on_errors(tmp_path, capsys):
    path = tmp_path / "broken.txt"
    path.write_text("1 +\n", encoding="utf-8")
    assert app_module.run_cli_mode([str(path)]) == 1
    assert "! Unexpected end of input" in capsys.readouterr().out


def test_file_mode_missing_file(tmp_path, capsys):
    assert app_module.run_cli_mode([str(tmp_path / "missing.txt")]) == 1
    assert "Cannot read" in capsys.readouterr().err


def test_document_variables():
    variables = app_module.document_variables(["a = 2", "b = a + 1", "b * 2"])
    assert list(variables) == ["a", "b"]
    assert app_module.format_value(variables["b"]) == "3"
