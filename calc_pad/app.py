import flask
from flask import request, jsonify
import argparse
import json
import logging
import os
import re
import sqlite3
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from calc_pad.document import LineResult, evaluate_document, parse_line
from calc_pad.editor import EditorState
from calc_pad.expr import Value
from calc_pad.formatting import format_value
from calc_pad.highlight import tokenize_for_highlight

# --- Configuration ---
DATABASE = os.environ.get("CALC_PAD_DATABASE", "documents.db")
DEBUG_MODE = os.environ.get("CALC_PAD_DEBUG", "").lower() in ("1", "true", "yes")
HOST = os.environ.get("CALC_PAD_HOST", "0.0.0.0")
PORT = int(os.environ.get("CALC_PAD_PORT", "5200"))

TITLE_MAX_CHARS = 28
CONFIG_DIR = Path(os.path.expanduser("~")) / ".config" / "calc_pad"

# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# --- Database Setup ---


def get_db():
    """Connects to the document database."""
    db = sqlite3.connect(DATABASE)
    db.row_factory = sqlite3.Row  # Access columns by name
    return db


def init_db():
    """Initializes the database schema."""
    if os.path.exists(DATABASE):
        logger.debug("Database already exists.")
        return

    logger.info(f"Initializing database: {DATABASE}")
    db = None
    try:
        db = get_db()
        db.execute(
            """
            CREATE TABLE documents (
                document_id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_updated TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        db.commit()
        logger.info("Database initialized successfully.")
    except sqlite3.Error as e:
        logger.error(f"Database initialization error: {e}")
        raise  # Halt startup if the database cannot be created
    finally:
        if db:
            db.close()


# --- Document Persistence Functions ---


def derive_document_title(content: str) -> str:
    """Tab title: the first line, without a leading `#`, shortened to fit."""
    title = content.split("\n")[0].strip()
    if title.startswith("#"):
        title = title[1:].lstrip()
    if not title:
        title = "Untitled"
    if len(title) > TITLE_MAX_CHARS:
        return f"{title[:TITLE_MAX_CHARS - 1]}…"
    return title


def create_document_db(content: str = "") -> Optional[str]:
    """Creates a new document and returns its ID."""
    document_id = str(uuid.uuid4())
    db = None
    try:
        db = get_db()
        db.execute(
            "INSERT INTO documents (document_id, content) VALUES (?, ?)",
            (document_id, content),
        )
        db.commit()
        logger.info(f"New document created: {document_id}")
        return document_id
    except sqlite3.Error as e:
        logger.error(f"Failed to create document: {e}")
        return None
    finally:
        if db:
            db.close()


def load_document(document_id: str) -> Optional[Dict[str, Any]]:
    """Loads a document, or None if it does not exist or cannot be read."""
    db = None
    try:
        db = get_db()
        row = db.execute(
            "SELECT document_id, content, created_at, last_updated FROM documents WHERE document_id = ?",
            (document_id,),
        ).fetchone()
        if row is None:
            return None
        return {
            "document_id": row["document_id"],
            "title": derive_document_title(row["content"]),
            "content": row["content"],
            "created_at": row["created_at"],
            "last_updated": row["last_updated"],
        }
    except sqlite3.Error as e:
        logger.error(f"Failed to load document {document_id}: {e}")
        return None
    finally:
        if db:
            db.close()


def save_document(document_id: str, content: str) -> bool:
    """Updates a document's content. Returns False if it does not exist or on error."""
    db = None
    try:
        db = get_db()
        cursor = db.execute(
            """
            UPDATE documents SET content = ?, last_updated = CURRENT_TIMESTAMP
            WHERE document_id = ?
        """,
            (content, document_id),
        )
        db.commit()
        saved = cursor.rowcount > 0
        logger.debug(f"Document {document_id} saved: {saved}")
        return saved
    except sqlite3.Error as e:
        logger.error(f"Failed to save document {document_id}: {e}")
        return False
    finally:
        if db:
            db.close()


def delete_document_db(document_id: str) -> bool:
    """Deletes a document. Returns True if deleted, False otherwise."""
    db = None
    try:
        db = get_db()
        cursor = db.execute("DELETE FROM documents WHERE document_id = ?", (document_id,))
        db.commit()
        deleted = cursor.rowcount > 0
        logger.info(f"Document {document_id} deleted: {deleted}")
        return deleted
    except sqlite3.Error as e:
        logger.error(f"Failed to delete document {document_id}: {e}")
        return False
    finally:
        if db:
            db.close()


def list_documents_db() -> List[Dict[str, Any]]:
    """Lists all documents, most recently updated first."""
    db = None
    try:
        db = get_db()
        rows = db.execute(
            "SELECT document_id, content, last_updated FROM documents ORDER BY last_updated DESC, rowid DESC"
        ).fetchall()
        return [
            {
                "document_id": row["document_id"],
                "title": derive_document_title(row["content"]),
                "last_updated": row["last_updated"],
            }
            for row in rows
        ]
    except sqlite3.Error as e:
        logger.error(f"Failed to list documents: {e}")
        return []
    finally:
        if db:
            db.close()


# --- Evaluation Helpers ---


def results_payload(results: List[LineResult]) -> Dict[str, Any]:
    # Trailing blank lines reset the block, report the last block that has code
    totals = [result.block_total for result in results if result.code.strip()]
    total = totals[-1] if totals else Value(0.0)
    return {
        "lines": [result.to_dict() for result in results],
        "total": format_value(total),
    }


# In-memory editor state per document, rebuilt after a restart
EDITOR_STATES: Dict[str, EditorState] = {}

# --- Flask App Setup ---

app = flask.Flask(__name__)
app.config["DEBUG"] = DEBUG_MODE


def _json_text(data: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    if not isinstance(data, dict) or not isinstance(data.get(key), str):
        return None
    return data[key]


# --- API Endpoints ---


@app.route("/evaluate", methods=["POST"])
def evaluate():
    """Evaluates a whole document without storing it."""
    text = _json_text(request.get_json(silent=True), "text")
    if text is None:
        logger.warning("Evaluate request without 'text'")
        return jsonify({"error": "Missing 'text' in JSON payload"}), 400

    try:
        results = evaluate_document(text)
    except Exception as e:
        # Unexpected errors in the evaluator itself
        logger.error(f"Internal error while evaluating document: {e}", exc_info=True)
        return jsonify({"error": "An internal server error occurred during evaluation."}), 500
    logger.info(f"Evaluated {len(results)} lines, {sum(r.has_error for r in results)} with errors")
    return jsonify(results_payload(results)), 200


@app.route("/highlight", methods=["POST"])
def highlight():
    """Returns highlight tokens for the code part of every line."""
    text = _json_text(request.get_json(silent=True), "text")
    if text is None:
        logger.warning("Highlight request without 'text'")
        return jsonify({"error": "Missing 'text' in JSON payload"}), 400

    lines = []
    for raw in text.split("\n"):
        line = parse_line(raw)
        tokens = []
        for node in line.nodes:
            if node.type == "comment":
                tokens.append({"type": "comment", "text": node.text})
                continue
            tokens.extend({"type": kind, "text": part} for kind, part in tokenize_for_highlight(node.text))
        lines.append(tokens)
    return jsonify({"lines": lines}), 200


@app.route("/documents", methods=["POST"])
def create_document():
    """Creates a new document."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        logger.warning("Create request with a non-object JSON body")
        return jsonify({"error": "JSON payload must be an object"}), 400
    content = data.get("content", "")
    if not isinstance(content, str):
        return jsonify({"error": "'content' must be a string"}), 400

    document_id = create_document_db(content)
    if document_id:
        return jsonify({"document_id": document_id, "title": derive_document_title(content)}), 201
    return jsonify({"error": "Failed to create document"}), 500


@app.route("/documents", methods=["GET"])
def list_documents():
    return jsonify({"documents": list_documents_db()}), 200


@app.route("/documents/<string:document_id>", methods=["GET"])
def get_document(document_id):
    document = load_document(document_id)
    if document is None:
        return jsonify({"error": f"Document '{document_id}' not found"}), 404
    return jsonify(document), 200


@app.route("/documents/<string:document_id>", methods=["PUT"])
def update_document(document_id):
    content = _json_text(request.get_json(silent=True), "content")
    if content is None:
        return jsonify({"error": "Missing 'content' in JSON payload"}), 400

    if not save_document(document_id, content):
        return jsonify({"error": f"Document '{document_id}' not found"}), 404
    return jsonify({"document_id": document_id, "title": derive_document_title(content)}), 200


@app.route("/documents/<string:document_id>", methods=["DELETE"])
def delete_document(document_id):
    if delete_document_db(document_id):
        EDITOR_STATES.pop(document_id, None)
        return "", 204  # No Content
    return jsonify({"error": f"Failed to delete document '{document_id}' (may not exist)"}), 404


@app.route("/documents/<string:document_id>/evaluate", methods=["POST"])
def evaluate_stored_document(document_id):
    document = load_document(document_id)
    if document is None:
        return jsonify({"error": f"Document '{document_id}' not found"}), 404
    try:
        results = evaluate_document(document["content"])
    except Exception as e:
        logger.error(f"Document {document_id}: internal error while evaluating: {e}", exc_info=True)
        return jsonify({"error": "An internal server error occurred during evaluation."}), 500
    return jsonify(results_payload(results)), 200


@app.route("/documents/<string:document_id>/sync", methods=["POST"])
def sync_document(document_id):
    """Stores the editor's text and returns what the editor should display."""
    data = request.get_json(silent=True)
    content = _json_text(data, "content")
    if content is None:
        return jsonify({"error": "Missing 'content' in JSON payload"}), 400

    active_line = data.get("active_line", 0)
    has_focus = data.get("has_focus", True)
    if not isinstance(active_line, int) or not isinstance(has_focus, bool):
        logger.warning(f"Document {document_id}: invalid sync payload {data}")
        return jsonify({"error": "'active_line' must be an integer and 'has_focus' a boolean"}), 400

    if not save_document(document_id, content):
        return jsonify({"error": f"Document '{document_id}' not found"}), 404

    state = EDITOR_STATES.setdefault(document_id, EditorState())
    views = state.sync(content, active_line=active_line, has_focus=has_focus)
    return jsonify({"lines": [view.to_dict() for view in views]}), 200


# --- CLI Interface ---

HELP_TEXT = """
Usage examples:
  2 + 3               - Basic arithmetic
  rent = $1,200       - Assign a variable (dollars)
  rent * 12           - Use it on a later line
  total               - Sum of the current block (a blank line starts a new block)
  5 m + 20            - Units: m, cm, km, ft, sq m, cm2, gal, l, c, f, k ...
  5 ft to cm          - Convert units ('to' or 'in')
  15% + 5             - Percentages
  max($5, 7)          - Functions: max, min, round, ceil, floor, abs, sqrt
  # comment           - Comments do not end a block

Commands: help, vars, show, clear, save, exit
"""


def format_result_lines(text: str, results: List[LineResult]) -> List[str]:
    """Renders each line of `text`, comments included, with its value or error aligned in one column."""
    raw_lines = [raw.rstrip() for raw in re.split(r"\r?\n", text)]
    width = max((len(raw) for raw in raw_lines), default=0)
    rows = []
    for code, result in zip(raw_lines, results):
        if result.has_error:
            rows.append(f"{code.ljust(width)}  ! {result.error}")
        elif result.value:
            rows.append(f"{code.ljust(width)}  = {result.value}")
        else:
            rows.append(code)
    return rows


def load_workspace(workspace_file: Path) -> Dict[str, Any]:
    if workspace_file.exists():
        try:
            with open(workspace_file, "r") as f:
                return json.load(f)
        except json.JSONDecodeError:
            return {}
    return {}


def save_workspace(workspace_file: Path, data: Dict[str, Any]):
    with open(workspace_file, "w") as f:
        json.dump(data, f, indent=2)


def setup_readline(lines: List[str]) -> bool:
    """Enables history and tab completion of variable names. Returns False if readline is missing."""
    try:
        import readline
    except ImportError:
        return False

    import atexit

    histfile = str(CONFIG_DIR / "history")
    try:
        readline.read_history_file(histfile)
        readline.set_history_length(1000)
    except (FileNotFoundError, OSError):
        pass
    atexit.register(readline.write_history_file, histfile)

    commands = ["help", "vars", "show", "clear", "save", "exit", "quit"]

    def completer(text, state):
        names = sorted(document_variables(lines))
        matches = [word for word in commands + names + ["total"] if word.startswith(text)]
        if state < len(matches):
            return matches[state]
        return None

    readline.parse_and_bind("tab: complete")
    readline.set_completer(completer)
    return True


def document_variables(lines: List[str]) -> Dict[str, Value]:
    """Variables bound after evaluating `lines`, in assignment order."""
    variables: Dict[str, Value] = {}
    for result in evaluate_document("\n".join(lines)):
        if result.name and result.raw is not None:
            variables[result.name] = result.raw
    return variables


def run_file_mode(path: str) -> int:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        print(f"Error: Cannot read '{path}': {e}", file=sys.stderr)
        return 1

    results = evaluate_document(content)
    for row in format_result_lines(content, results):
        print(row)
    return 1 if any(result.has_error for result in results) else 0


def run_repl(document_id: Optional[str], workspace_file: Path) -> int:
    """Interactive notepad: every input line is appended to the document."""
    workspace = load_workspace(workspace_file)
    lines: List[str] = []

    if document_id:
        document = load_document(document_id)
        if document is not None:
            lines = document["content"].split("\n")
            if lines and lines[-1] == "":
                lines.pop()
            print(f"Loaded document: {document['title']} ({document_id})")
        else:
            print(f"Document {document_id} not found. Starting a new one.")
            document_id = None

    has_readline = setup_readline(lines)
    print("calc_pad - type 'help' for examples, 'exit' to quit")
    if not has_readline:
        print("Note: readline is not available, history and tab completion are disabled")

    def save():
        nonlocal document_id
        content = "\n".join(lines) + "\n"
        if document_id and save_document(document_id, content):
            print(f"Saved document {document_id}")
        else:
            document_id = create_document_db(content)
            if not document_id:
                print("Error: Failed to save document")
                return
            print(f"Saved new document {document_id}")
        workspace["last_document_id"] = document_id
        save_workspace(workspace_file, workspace)

    try:
        while True:
            query = input("calc> ")
            command = query.strip().lower()

            if command in ("exit", "quit", "bye"):
                break
            if command == "help":
                print(HELP_TEXT)
                continue
            if command == "save":
                save()
                continue
            if command == "clear":
                lines.clear()
                print("Document cleared.")
                continue
            if command == "show":
                text = "\n".join(lines)
                for row in format_result_lines(text, evaluate_document(text)):
                    print(row)
                continue
            if command == "vars":
                variables = document_variables(lines)
                if not variables:
                    print("No variables defined.")
                for name, value in variables.items():
                    print(f"  {name} = {format_value(value)}")
                continue

            # "?x" prints a variable without adding a line
            print_var_match = re.match(r"^\s*\?([A-Za-z_][A-Za-z0-9_]*)\s*$", query)
            if print_var_match:
                name = print_var_match.group(1)
                variables = document_variables(lines)
                if name in variables:
                    print(f"{name} = {format_value(variables[name])}")
                else:
                    print(f"Variable '{name}' is not defined")
                continue

            lines.append(query)
            result = evaluate_document("\n".join(lines))[-1]
            if result.has_error:
                print(f"Error: {result.error}")
            elif result.value:
                print(f"= {result.value}")
    except (KeyboardInterrupt, EOFError):
        print()

    if document_id:
        save()
    print("Goodbye!")
    return 0


def run_cli_mode(argv: Optional[List[str]] = None) -> int:
    """Runs the command line interface. Returns the process exit code."""
    parser = argparse.ArgumentParser(description="calc_pad: a line-by-line calculator notepad")
    parser.add_argument("file", nargs="?", help="Evaluate a document file and print every line's result")
    parser.add_argument("--serve", action="store_true", help=f"Start the web API on {HOST}:{PORT}")
    parser.add_argument("--document", "-d", type=str, help="Open a stored document in the notepad")
    parser.add_argument("--last", "-l", action="store_true", help="Reopen the last saved document")
    args = parser.parse_args(argv)

    if args.serve:
        start_web_server()
        return 0

    if args.file:
        return run_file_mode(args.file)

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    workspace_file = CONFIG_DIR / "workspace.json"
    init_db()

    document_id = args.document
    if not document_id and args.last:
        document_id = load_workspace(workspace_file).get("last_document_id")
    return run_repl(document_id, workspace_file)


# --- Entry Points ---
def start_web_server():
    """Entry point for running the web server."""
    init_db()
    logger.info(f"Starting web server on http://{HOST}:{PORT}")
    app.run(host=HOST, port=PORT)


def main():
    """Main entry point for the `calc-pad` command."""
    sys.exit(run_cli_mode())


if __name__ == "__main__":
    main()
