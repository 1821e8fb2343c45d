# ================================================================
# File     : core/reporting.py
# Purpose  : Generate self-contained HTML reports with KPI cards,
#            summary tables and auto-rendered detail tables.
#            Modules may flag rows for attention.
# ================================================================

import os, html, datetime, re, json
from typing import Dict, Any, List, Optional
from core.utils import fncPrintMessage


# ---------- tiny helpers ----------

def _esc(v: Any) -> str:
    return "" if v is None else html.escape(str(v))

def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(name).lower()).strip("-")

def _fmt_cell(val: Any) -> str:
    if isinstance(val, (dict, list)):
        s = json.dumps(val, separators=(",", ":"), ensure_ascii=False, default=str)
        if len(s) > 220:
            s = s[:200] + " … +" + str(len(s) - 200) + " chars"
        return s
    return "" if val is None else str(val)

def _split_camel(name: str) -> str:
    s = re.sub(r"(?<!^)(?=[A-Z])", " ", str(name))
    s = re.sub(r"\s+", " ", s).strip()
    return s

def _pretty_section_name(key: str, section_titles: Dict[str, str] | None = None) -> str:
    section_titles = section_titles or {}
    if key in section_titles:
        return section_titles[key]
    k = _split_camel(key.replace("_", " "))
    return k.title() or key.title()

# ----- status helpers (for coloured pills) -----

def _status_class(status: Any) -> str:
    s = str(status or "").strip().lower()
    if s in ("pass", "ok"):
        return "ok"
    if s in ("fail", "critical", "crit"):
        return "crit"
    if s in ("warn", "warning"):
        return "warn"
    return "unknown"


# ---------- stylesheet ----------

_PROVIDER_NAMES = {"azure": "Microsoft Azure", "ad": "Active Directory"}

_CSS = """
:root{
  --accent:#2b88d8; --accent-dark:#0b4a8b;
  --ink:#1f2933; --page:#eef2f7; --panel:#fff; --rule:#d8dee8; --quiet:#5f6b7a;
  --flag:#fde2e1; --flag-ink:#7a1212;
  --ok:#17803d; --warn:#b45309; --crit:#b91c1c; --none:#64748b;
}
@media (prefers-color-scheme: dark){
  :root{ --ink:#e5ebf3; --page:#10151c; --panel:#19202a; --rule:#2c3542; --quiet:#98a6b8;
         --flag:#4a1d1d; --flag-ink:#ffd7d5; }
}
*{box-sizing:border-box}
body{margin:0;font:14px/1.45 "Segoe UI",Helvetica,Arial,sans-serif;background:var(--page);color:var(--ink)}
.header{background:var(--accent-dark);border-top:6px solid var(--accent);color:#fff;padding:18px 28px;position:relative}
.header h1{margin:0;font-size:1.6rem;font-weight:700}
.header h2{margin:6px 0 0 0;font-size:1.15rem;font-weight:400}
.header p{margin:4px 0 0 0;font-size:.85rem;opacity:.8}
.header .brand{position:absolute;right:24px;top:18px;font-size:.8rem;font-weight:700;
  letter-spacing:.08em;border:1px solid rgba(255,255,255,.4);border-radius:4px;padding:4px 8px}
.container{max-width:1800px;margin:20px auto;padding:0 24px}
h3{margin:22px 0 8px 0;font-size:1.1rem;color:var(--accent-dark);text-transform:uppercase;letter-spacing:.05em}
.card{background:var(--panel);border:1px solid var(--rule);border-radius:6px;padding:14px 16px;margin:16px 0}
.card h4{margin:0 0 10px 0;font-size:1rem}
.tablewrap{overflow-x:auto}
table{width:100%;border-collapse:collapse}
th,td{padding:7px 10px;border-bottom:1px solid var(--rule);text-align:left;vertical-align:top;overflow-wrap:anywhere}
th{background:var(--accent-dark);color:#fff;font-weight:600;white-space:nowrap}
tbody tr:nth-child(odd) td{background:color-mix(in srgb,var(--panel) 94%, var(--accent) 6%)}
tr.flag-risk td{background:var(--flag);color:var(--flag-ink);font-weight:600}
table.summary{width:auto;min-width:420px;background:var(--panel)}
table.summary th{background:transparent;color:var(--quiet);border-right:1px solid var(--rule)}
.pill{display:inline-block;min-width:52px;text-align:center;padding:1px 8px;border-radius:3px;
  font-size:.8rem;font-weight:700;color:#fff}
.pill.ok{background:var(--ok)} .pill.warn{background:var(--warn)}
.pill.crit{background:var(--crit)} .pill.unknown{background:var(--none)}
td.col-status,th.col-status{width:90px;text-align:center}
.kpis{display:flex;flex-wrap:wrap;gap:10px;margin-top:4px}
.kpi{flex:1 1 180px;background:var(--panel);border:1px solid var(--rule);border-left:5px solid var(--none);
  border-radius:4px;padding:10px 14px}
.kpi .label{color:var(--quiet);font-size:.85rem}
.kpi .value{font-size:1.7rem;font-weight:700}
.kpi.primary{border-left-color:var(--accent)} .kpi.info{border-left-color:#0ea5e9}
.kpi.success{border-left-color:var(--ok)} .kpi.warning{border-left-color:var(--warn)}
.kpi.danger{border-left-color:var(--crit)}
.footer{text-align:center;color:var(--quiet);font-size:.8rem;margin:24px 0 14px 0}
"""

# ---------- header ----------

def _header_html(title: str, provider: Optional[str], subtitle_small: Optional[str] = None) -> str:
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    brand = _PROVIDER_NAMES.get(provider or "", provider or "")
    sub_small = f"<p>{_esc(subtitle_small)}</p>" if subtitle_small else ""
    return f"""
  <div class="header">
    <h1>RoleRanger</h1>
    <span class="brand">{_esc(brand.upper())}</span>
    <h2>{_esc(title)}</h2>
    {sub_small}
    <p>Generated {_esc(ts)}</p>
  </div>
"""

# ---------- dashboard ----------

def _render_kpis(kpis: List[Dict[str, Any]]) -> str:
    if not kpis:
        return ""
    cards = "".join(
        f'<div class="kpi {_esc(k.get("tone") or "primary")}">'
        f'<div class="label">{_esc(k.get("label"))}</div>'
        f'<div class="value">{_esc(k.get("value"))}</div></div>'
        for k in kpis
    )
    return f'<div class="kpis">{cards}</div>'


# ---------- table/section renderers ----------

def _row_class(row: Dict[str, Any], highlight: Optional[Dict[str, Any]]) -> str:
    if not highlight:
        return ""
    if row.get(highlight.get("column")) in set(highlight.get("values") or []):
        return highlight.get("class") or "flag-risk"
    return ""

def _cell_html(column: str, value: Any) -> str:
    if column == "status":
        return f"<td class='col-status'><span class='pill {_status_class(value)}'>{_esc(value)}</span></td>"
    return f"<td>{_esc(_fmt_cell(value))}</td>"

def _render_table(rows: List[Dict[str, Any]], title: str, highlight: Optional[Dict[str, Any]] = None) -> str:
    if not rows:
        return f"<div class='card'><h4>{_esc(title)}</h4><p>No data.</p></div>"

    columns = list(rows[0].keys())
    head = "".join(
        "<th class='col-status'>status</th>" if c == "status" else f"<th>{_esc(c)}</th>"
        for c in columns
    )

    lines = []
    for row in rows:
        cls = _row_class(row, highlight)
        opening = f"<tr class='{cls}'>" if cls else "<tr>"
        lines.append(opening + "".join(_cell_html(c, row.get(c, "")) for c in columns) + "</tr>")

    return (
        f"<div class='card'><h4>{_esc(title)}</h4><div class='tablewrap'>"
        f"<table id='tbl-{_slug(title)}'><thead><tr>{head}</tr></thead>"
        f"<tbody>{''.join(lines)}</tbody></table></div></div>"
    )

def _summary_html(summary: Dict[str, Any]) -> str:
    if not summary:
        return "<p>No summary data available.</p>"
    body = "".join(f"<tr><th>{_esc(k)}</th><td>{_esc(v)}</td></tr>" for k, v in summary.items())
    return f"<div class='card'><table class='summary'>{body}</table></div>"

_RESERVED_KEYS = {"summary", "provider", "_title", "_subtitle",
                  "_section_titles", "_kpis", "_highlight"}

def _details_html(data_dict: Dict[str, Any]) -> str:
    titles = data_dict.get("_section_titles") or {}
    highlight = data_dict.get("_highlight")

    # every list of row dicts becomes a table, in insertion order
    sections = [
        _render_table(value, _pretty_section_name(key, titles), highlight)
        for key, value in data_dict.items()
        if key not in _RESERVED_KEYS and isinstance(value, list) and (not value or isinstance(value[0], dict))
    ]
    return "\n".join(sections)


# ================================================================
# Function: fncRenderHTMLReport
# Purpose : Build the full HTML document for one module's data
# Notes   : Inline CSS only; no scripts, fonts or images
# ================================================================
def fncRenderHTMLReport(module_name: str, data_dict: Dict[str, Any]) -> str:
    data_dict = data_dict or {}
    title = data_dict.get("_title") or f"Module: {module_name}"
    year = datetime.datetime.now(datetime.timezone.utc).year

    return f"""<!DOCTYPE html>
<html lang="en"><head>
<meta charset="UTF-8"><title>RoleRanger - {_esc(module_name)}</title>
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<style>{_CSS}</style></head><body>
{_header_html(title, data_dict.get("provider"), data_dict.get("_subtitle"))}
<div class="container">
  {_render_kpis(data_dict.get("_kpis") or [])}
  <h3>Summary</h3>
  {_summary_html(data_dict.get("summary", {}))}
  {_details_html(data_dict)}
</div>
<div class="footer">RoleRanger &middot; {year}</div>
</body></html>"""


# ================================================================
# Function: fncWriteHTMLReport
# Purpose : Render and write a single-module report
# Notes   : OSError propagates; callers decide whether it is fatal
# ================================================================
def fncWriteHTMLReport(filename: str, module_name: str, data_dict: Dict[str, Any]) -> None:
    fncPrintMessage(f"Generating HTML report: {filename}", "debug")
    document = fncRenderHTMLReport(module_name, data_dict)

    folder = os.path.dirname(filename)
    if folder:
        os.makedirs(folder, exist_ok=True)
    with open(filename, "w", encoding="utf-8") as f:
        f.write(document)
    fncPrintMessage(f"HTML report written → {filename}", "success")
