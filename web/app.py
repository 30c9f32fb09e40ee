from __future__ import annotations

import re
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import pandas as pd
import requests
import streamlit as st

from roster_doctor.compiler import compile_plan
from roster_doctor.editor import FIELD_ALL, MODE_REPLACE, TableEditor
from roster_doctor.export import export_rows, write_template
from roster_doctor.loader import ALL_FORMATS, load_import
from roster_doctor.mapping import fields_available, missing_required, set_mapping
from roster_doctor.pipeline import ValidationProgress, run_all
from roster_doctor.schema import FIELDS
from roster_doctor.settings import Settings


MAX_REMOTE_FILE_MB = 50
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024
UNMAPPED = "(unmapped)"
MIME_TYPES = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
    "json": "application/json",
}


def ensure_state() -> None:
    st.session_state.setdefault("parsed", None)
    st.session_state.setdefault("mapping", {})
    st.session_state.setdefault("editor", None)
    st.session_state.setdefault("source_name", None)
    st.session_state.setdefault("public_url_input", "")
    st.session_state.setdefault("fix_phones", False)


def normalize_public_url(raw_url: str) -> str:
    """Rewrite common share links (GitHub, Dropbox, Box, Google, OneDrive) to direct downloads."""
    parsed = urlparse(raw_url.strip())
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("URL must start with http:// or https://")

    host = parsed.netloc.lower()
    query = parse_qs(parsed.query, keep_blank_values=True)

    if host == "github.com" and "/blob/" in parsed.path:
        owner_repo, blob_path = parsed.path.lstrip("/").split("/blob/", 1)
        return f"https://raw.githubusercontent.com/{owner_repo}/{blob_path}"

    if host in {"drive.google.com", "docs.google.com"}:
        sheet = re.search(r"/spreadsheets/d/([^/]+)", parsed.path)
        if sheet:
            gid = query.get("gid", ["0"])[0]
            return f"https://docs.google.com/spreadsheets/d/{sheet.group(1)}/export?format=xlsx&gid={gid}"
        shared = re.search(r"/file/d/([^/]+)", parsed.path)
        file_id = shared.group(1) if shared else query.get("id", [None])[0]
        if file_id:
            return f"https://drive.google.com/uc?export=download&id={file_id}"

    download_flag = None
    if "dropbox.com" in host:
        download_flag = "dl"
    elif "box.com" in host or host.endswith("1drv.ms") or "onedrive.live.com" in host:
        download_flag = "download"
    if download_flag:
        query[download_flag] = ["1"]
        return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))

    return raw_url.strip()


def remote_filename(raw_url: str, response: requests.Response) -> str:
    disposition = response.headers.get("content-disposition", "")
    match = re.search(r'filename="([^"]+)"|filename=([^;]+)', disposition, re.I)
    if match:
        name = next(group for group in match.groups() if group)
        return Path(name.strip().strip('"')).name
    return Path(urlparse(response.url or raw_url).path).name or "roster"


def guess_extension(raw_url: str, response: requests.Response, filename: str, content: bytes) -> str:
    ext = Path(filename).suffix.lower()
    if ext in ALL_FORMATS:
        return ext
    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    by_type = {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
        "application/vnd.ms-excel": ".xls",
        "application/vnd.oasis.opendocument.spreadsheet": ".ods",
        "text/csv": ".csv",
        "text/tab-separated-values": ".tsv",
        "application/json": ".json",
    }
    if content_type in by_type:
        return by_type[content_type]
    if "docs.google.com" in urlparse(raw_url).netloc.lower() or content.startswith(b"PK"):
        return ".xlsx"
    head = content[:512].lstrip()
    if head.startswith(b"[") or head.startswith(b"{"):
        return ".json"
    return ".csv"


def fetch_remote_source(raw_url: str, folder: Path) -> Path:
    url = normalize_public_url(raw_url)
    response = requests.get(url, timeout=60, allow_redirects=True, stream=True)
    try:
        response.raise_for_status()
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > MAX_REMOTE_FILE_BYTES:
            raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            downloaded += len(chunk)
            if downloaded > MAX_REMOTE_FILE_BYTES:
                raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
            chunks.append(chunk)
        content = b"".join(chunks)
    finally:
        response.close()

    filename = remote_filename(raw_url, response)
    ext = guess_extension(raw_url, response, filename, content)
    if not Path(filename).suffix:
        filename = f"{filename}{ext}"
    target = folder / filename
    target.write_bytes(content)
    return target


def load_source(upload, public_url: str) -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        folder = Path(tmpdir)
        if upload is not None:
            path = folder / upload.name
            path.write_bytes(upload.getvalue())
        else:
            path = fetch_remote_source(public_url, folder)
        parsed = load_import(path)
    st.session_state["parsed"] = parsed
    st.session_state["mapping"] = dict(parsed["columnMapping"]["mapped"])
    st.session_state["editor"] = None
    st.session_state["source_name"] = path.name


def export_bytes(editor: TableEditor, fmt: str) -> bytes:
    state = editor.state
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / f"roster.{fmt}"
        export_rows(list(state.rows), path, fmt, list(state.errors), list(state.changes))
        return path.read_bytes()


def template_bytes() -> bytes:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = write_template(Path(tmpdir) / "user-template.xlsx", "xlsx")
        return path.read_bytes()


# ── Renderers ─────────────────────────────────────────────────────────────────

def render_mapping(parsed: dict) -> None:
    st.subheader("Column mapping")
    mapping = st.session_state["mapping"]
    columns = st.columns(3)
    for index, header in enumerate(parsed["headers"]):
        options = [UNMAPPED, *fields_available(mapping, header)]
        current = mapping.get(header, UNMAPPED)
        choice = columns[index % 3].selectbox(
            header,
            options=options,
            index=options.index(current) if current in options else 0,
            key=f"map_{index}_{header}",
        )
        if choice != current:
            st.session_state["mapping"] = set_mapping(mapping, header, None if choice == UNMAPPED else choice)
            st.session_state["editor"] = None
            st.rerun()

    missing = missing_required(mapping)
    if missing:
        st.warning("Required fields not mapped: " + ", ".join(missing))


def run_validation(parsed: dict) -> None:
    settings = Settings(clean_up=st.session_state["fix_phones"])
    bar = st.progress(0.0, text="Validating...")

    def on_progress(progress: ValidationProgress) -> None:
        done = progress.processed_rows / progress.total_rows if progress.total_rows else 1.0
        bar.progress(min(done, 1.0), text=f"{progress.processed_rows} / {progress.total_rows} rows")

    mapping = st.session_state["mapping"]
    progress = run_all(parsed["rows"], mapping, on_progress, settings=settings)
    plan = compile_plan(mapping, structural_checks=settings.structural_checks)
    st.session_state["editor"] = TableEditor.from_progress(
        plan, progress, clean_up=settings.clean_up, settings=settings
    )


def render_errors(editor: TableEditor) -> None:
    state = editor.state
    metrics = st.columns(3)
    metrics[0].metric("Rows", len(state.rows))
    metrics[1].metric("Rows with errors", len(state.grouped_errors))
    metrics[2].metric("Changes", len(state.changes))
    if not state.grouped_errors:
        st.success("Every row passed validation.")
        return
    records = [
        {"row": group["row"] + 1, "field": entry["field"], "messages": "; ".join(entry["messages"]), "value": entry["value"]}
        for group in state.grouped_errors
        for entry in group["fields"]
    ]
    st.dataframe(pd.DataFrame(records), hide_index=True)


def render_row_editor(editor: TableEditor) -> None:
    state = editor.state
    if not state.rows:
        return
    st.subheader("Edit rows")
    row_number = st.number_input("Row", min_value=1, max_value=len(state.rows), value=1, step=1)
    index = int(row_number) - 1
    row = state.rows[index]
    for message in editor.state.errors_for(index):
        st.error(f"{message.field}: {message.message}")
    with st.form(f"edit_row_{index}"):
        edited = {}
        columns = st.columns(2)
        for position, name in enumerate(FIELDS):
            value = row.get(name)
            edited[name] = columns[position % 2].text_input(name, value="" if value is None else str(value))
        submitted = st.form_submit_button("Save row")
    if submitted:
        merged = {**row, **{name: (value or None) for name, value in edited.items()}}
        editor.edit_row(merged, index, MODE_REPLACE)
        st.rerun()

    actions = st.columns(4)
    if actions[0].button("Duplicate row"):
        editor.duplicate_row(index)
        st.rerun()
    if actions[1].button("Delete row"):
        editor.delete_rows([index])
        st.rerun()
    if actions[2].button("Undo", disabled=not editor.history.can_undo):
        editor.undo()
        st.rerun()
    if actions[3].button("Redo", disabled=not editor.history.can_redo):
        editor.redo()
        st.rerun()


def render_find_replace(editor: TableEditor) -> None:
    st.subheader("Find and replace")
    columns = st.columns(4)
    query = columns[0].text_input("Find", placeholder="text or /regex/i")
    replacement = columns[1].text_input("Replace with")
    field = columns[2].selectbox("Field", options=[FIELD_ALL, *FIELDS])
    exact = columns[3].checkbox("Whole cell")
    if query:
        st.caption(f"{len(editor.find(query, field, exact))} matching cells")
    if st.button("Replace all", disabled=not query):
        try:
            cells = editor.find_replace(query, replacement, field, exact)
        except re.error as exc:
            st.error(f"Invalid pattern: {exc}")
            return
        st.info(f"Replaced {cells} cells")
        st.rerun()


def render_downloads(editor: TableEditor) -> None:
    stem = Path(st.session_state.get("source_name") or "roster").stem
    columns = st.columns(3)
    for column, fmt in zip(columns, ("xlsx", "csv", "json")):
        column.download_button(
            f"Download {fmt.upper()}",
            data=export_bytes(editor, fmt),
            file_name=f"{stem}_clean.{fmt}",
            mime=MIME_TYPES[fmt],
            key=f"download_{fmt}",
        )


def main() -> None:
    st.set_page_config(page_title="roster-doctor", layout="wide")
    ensure_state()

    st.title("roster-doctor")
    st.caption("Upload an employee roster or paste a public file URL, confirm the column mapping, then fix what fails validation.")

    upload = st.file_uploader("Upload roster", type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)])
    public_url = st.text_input("Public file URL", key="public_url_input")
    st.caption(f"Public URLs are fetched over the network; files above {MAX_REMOTE_FILE_MB} MB are rejected.")
    st.download_button("Download empty template", data=template_bytes(), file_name="user-template.xlsx", mime=MIME_TYPES["xlsx"])

    if st.button("Load", type="primary", disabled=upload is None and not public_url.strip()):
        try:
            load_source(upload, public_url)
        except (ValueError, ImportError, requests.RequestException) as exc:
            st.error(str(exc))
            return

    parsed: Optional[dict] = st.session_state["parsed"]
    if parsed is None:
        return
    for warning in parsed["warnings"]:
        st.warning(warning)

    render_mapping(parsed)
    st.checkbox("Rewrite invalid phone numbers with the country calling code", key="fix_phones")
    if st.button("Validate", disabled=bool(missing_required(st.session_state["mapping"]))):
        run_validation(parsed)

    editor: Optional[TableEditor] = st.session_state["editor"]
    if editor is None:
        return
    render_errors(editor)
    render_row_editor(editor)
    render_find_replace(editor)
    render_downloads(editor)


if __name__ == "__main__":
    main()
