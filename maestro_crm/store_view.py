"""Routes for browsing the collections held by the in-memory document store."""
from __future__ import annotations

import html
import json
from typing import Any, Dict, Iterable, List, Mapping

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse

from maestro_crm.config import Settings, get_settings
from maestro_crm.services.document_store import COLLECTIONS, get_memory_store

router = APIRouter()


def _stringify(value: Any) -> str:
    """Return a JSON-friendly string representation for table cells."""
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    return json.dumps(value, default=str, ensure_ascii=False)


def _build_table(title: str, rows: Iterable[Mapping[str, Any]]) -> str:
    row_list: List[Dict[str, Any]] = [dict(row) for row in rows]
    parts = [f"<section><h2>{html.escape(title)}</h2>"]
    if not row_list:
        parts.append("<p>No records found.</p></section>")
        return "".join(parts)

    columns: List[str] = []
    for row in row_list:
        for key in row:
            if key not in columns:
                columns.append(key)

    header = "".join(f"<th>{html.escape(column)}</th>" for column in columns)
    body = "".join(
        "<tr>"
        + "".join(f"<td>{html.escape(_stringify(row.get(column)))}</td>" for column in columns)
        + "</tr>"
        for row in row_list
    )
    parts.append(f"<table><thead><tr>{header}</tr></thead><tbody>{body}</tbody></table>")
    parts.append("</section>")
    return "".join(parts)


def _require_memory_store(settings: Settings = Depends(get_settings)) -> None:
    if not settings.use_memory_store and settings.store_base_url:
        raise HTTPException(status_code=404, detail="Store browser is only available for the in-memory store")


@router.get("/store", response_class=HTMLResponse, dependencies=[Depends(_require_memory_store)])
async def view_store() -> HTMLResponse:
    """Render every collection of the in-memory store as HTML tables."""
    contents = get_memory_store().dump()
    sections = "".join(
        _build_table(collection, ({"id": key, **data} for key, data in contents[collection].items()))
        for collection in COLLECTIONS
    )
    html_content = f"""
    <html>
        <head>
            <meta charset="utf-8">
            <title>Store Overview</title>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 2rem; }}
                h1 {{ text-align: center; }}
                section {{ margin-bottom: 2rem; }}
                table {{ border-collapse: collapse; width: 100%; }}
                th, td {{ border: 1px solid #ccc; padding: 0.5rem; text-align: left; }}
                th {{ background-color: #f0f0f0; }}
                tbody tr:nth-child(even) {{ background-color: #fafafa; }}
            </style>
        </head>
        <body>
            <h1>Store Overview</h1>
            {sections}
        </body>
    </html>
    """
    return HTMLResponse(content=html_content)


@router.get("/store/{collection}", dependencies=[Depends(_require_memory_store)])
async def dump_collection(collection: str) -> Dict[str, Any]:
    """Return the raw documents of one collection."""

    if collection not in COLLECTIONS:
        raise HTTPException(status_code=404, detail="Unknown collection")
    documents = get_memory_store().dump()[collection]
    return json.loads(json.dumps(documents, default=str))
