"""HTML and CSS rendering of tables and tabs for a host that runs no script.

Interactivity is a superposition of every reachable view. Each table carries a
group of sort radios and a group of page radios; every row is tagged, through
inline custom properties, with its position and page visibility under every
(column, direction). A handful of ``#radio:checked ~ ...`` rules then pick the
custom properties of the checked sort, and the checked page switches on the
page variable those properties fall through to. Clicking a label only moves
the checked radio; the host echoes the checked radios on the next invocation,
and rendering the same state again reproduces the same view.
"""

import re
from dataclasses import dataclass, field
from html import escape
from typing import List, Optional, Sequence, Tuple

from .model import RadioDrivenState, TableViewModel
from .ranking import ASC, DESC, DIRECTIONS, PAGE_SIZE, Ranking, page_count, page_of, rank_columns

MAIN_TABS = "mainTabs"

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")

BASE_CSS = """
.bv-root{font-family:Amazon Ember,Helvetica,Arial,sans-serif;font-size:13px}
.bv-radio{display:none}
.bv-table{margin:8px 0 16px 0}
.bv-caption{font-weight:bold;margin-bottom:4px}
.bv-tbody{display:flex;flex-direction:column}
.bv-tr{display:none}
.bv-th-row{display:flex;order:-1;font-weight:bold;border-bottom:1px solid #aab7b8}
.bv-tr>.bv-td,.bv-th-row>.bv-th{flex:1 1 0;padding:2px 6px;overflow:hidden;text-overflow:ellipsis}
.bv-th label{cursor:pointer}
.bv-th .bv-to-desc{display:none}
.bv-pager{margin-top:4px}
.bv-pager label{cursor:pointer;padding:0 4px;color:#0073bb}
.bv-empty{color:#687078;font-style:italic;padding:4px 0}
.bv-tab-bar{display:flex;border-bottom:1px solid #aab7b8;margin-bottom:8px}
.bv-tab-bar label{cursor:pointer;padding:4px 12px;color:#0073bb}
.bv-pane{display:none}
.bv-kv td{padding:2px 12px 2px 0;vertical-align:top}
.bv-kv td:first-child{color:#687078}
.bv-bar{display:inline-block;height:8px;background:#eaeded;width:60px;margin-right:4px;vertical-align:middle}
.bv-bar>span{display:block;height:8px}
""".strip()


def css_ident(name: str) -> str:
    """Make ``name`` usable inside ids, classes and custom property names."""
    ident = _UNSAFE.sub("-", name).strip("-")
    if not ident or not ident[0].isalpha():
        ident = f"t{ident}"
    return ident


def sort_group(table: str) -> str:
    return f"{css_ident(table)}-sort"


def sort_option(table: str, column: int, direction: str) -> str:
    return f"{sort_group(table)}-{column}-{direction}"


def page_group(table: str) -> str:
    return f"{css_ident(table)}-page"


def page_option(table: str, page: int) -> str:
    return f"{page_group(table)}-{page}"


def tab_option(group: str, key: str) -> str:
    return f"{css_ident(group)}-{css_ident(key)}"


@dataclass
class Fragment:
    """Markup plus the CSS rules it depends on."""
    html: str
    css: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"<style>{BASE_CSS}\n{''.join(self.css)}</style>{self.html}"


@dataclass(frozen=True)
class TableState:
    column: int = 0
    direction: str = ASC
    page: int = 0


def resolve_table_state(table: TableViewModel, state: Optional[RadioDrivenState]) -> TableState:
    """Pick the checked sort and page for ``table``, defaulting invalid input."""
    state = state or {}
    column, direction, page = 0, ASC, 0

    sort = state.get(sort_group(table.name), "")
    match = re.fullmatch(re.escape(sort_group(table.name)) + r"-(\d+)-(asc|desc)", sort or "")
    if match and int(match.group(1)) < len(table.headers):
        column, direction = int(match.group(1)), match.group(2)

    selected = state.get(page_group(table.name), "")
    match = re.fullmatch(re.escape(page_group(table.name)) + r"-(\d+)", selected or "")
    if match and int(match.group(1)) < page_count(len(table.rows)):
        page = int(match.group(1))

    return TableState(column=column, direction=direction, page=page)


def _radio(group: str, option: str, checked: bool) -> str:
    checked_attr = " checked" if checked else ""
    return f'<input type="radio" class="bv-radio" name="{group}" id="{option}" value="{option}"{checked_attr}>'


def rank_table(table: TableViewModel) -> List[Ranking]:
    return rank_columns(
        table.rows,
        [lambda row, c=c: row.values[c] for c in range(len(table.headers))],
        [header.comparator for header in table.headers],
    )


def _row_style(table_id: str, rankings: Sequence[Ranking], index: int) -> str:
    props = []
    for column, ranking in enumerate(rankings):
        for direction in DIRECTIONS:
            position = ranking.positions(direction)[index]
            props.append(f"--o-{column}-{direction}:{position}")
            props.append(f"--v-{column}-{direction}:var(--{table_id}-pg-{page_of(position, PAGE_SIZE)},none)")
    return ";".join(props)


def render_table(table: TableViewModel, state: Optional[RadioDrivenState] = None) -> Fragment:
    """Render every sort and page state of ``table`` at once.

    Only the state selected by ``state`` (or the default: first column,
    ascending, first page) is visible until the user picks another label.
    """
    table_id = css_ident(table.name)
    caption = f'<div class="bv-caption">{escape(table.title)}</div>' if table.title else ""
    actions = "".join(table.actions)
    actions_html = f'<div class="bv-actions">{actions}</div>' if actions else ""

    if not table.rows:
        return Fragment(
            html=(
                f'<div class="bv-table" id="bv-{table_id}">{caption}'
                f'<div class="bv-empty">{escape(table.empty)}</div>{actions_html}</div>'
            ),
        )

    current = resolve_table_state(table, state)
    pages = page_count(len(table.rows))
    rankings = rank_table(table)
    css: List[str] = []

    radios = []
    headers = []
    for column, header in enumerate(table.headers):
        for direction in DIRECTIONS:
            option = sort_option(table.name, column, direction)
            checked = (column, direction) == (current.column, current.direction)
            radios.append(_radio(sort_group(table.name), option, checked))
            css.append(
                f"#{option}:checked~.bv-tbody>.bv-tr"
                f"{{order:var(--o-{column}-{direction});display:var(--v-{column}-{direction})}}\n"
            )
        asc_option = sort_option(table.name, column, ASC)
        desc_option = sort_option(table.name, column, DESC)
        th = f".bv-tbody .bv-th-{column}"
        css.append(f"#{asc_option}:checked~{th} .bv-to-asc{{display:none}}\n")
        css.append(f"#{asc_option}:checked~{th} .bv-to-desc{{display:inline}}\n")
        css.append(f'#{desc_option}:checked~{th} .bv-to-asc::after{{content:" \\25BC"}}\n')
        name = escape(header.name)
        headers.append(
            f'<span class="bv-th bv-th-{column}">'
            f'<label class="bv-to-asc" for="{asc_option}">{name}</label>'
            f'<label class="bv-to-desc" for="{desc_option}">{name} &#9650;</label>'
            f'</span>'
        )

    pager = []
    for page in range(pages):
        option = page_option(table.name, page)
        radios.append(_radio(page_group(table.name), option, page == current.page))
        css.append(f"#{option}:checked~.bv-tbody{{--{table_id}-pg-{page}:flex}}\n")
        css.append(f"#{option}:checked~.bv-pager .bv-pl-{page}{{font-weight:bold;text-decoration:underline}}\n")
        pager.append(f'<label class="bv-pl-{page}" for="{option}">{page + 1}</label>')

    rows = []
    for index, row in enumerate(table.rows):
        cells = "".join(f'<span class="bv-td">{cell}</span>' for cell in row.cells)
        rows.append(f'<div class="bv-tr" style="{_row_style(table_id, rankings, index)}">{cells}</div>')

    pager_html = f'<div class="bv-pager">{"".join(pager)}</div>' if pages > 1 else ""
    html = (
        f'<div class="bv-table" id="bv-{table_id}">{caption}'
        f'{"".join(radios)}'
        f'<div class="bv-tbody"><div class="bv-th-row">{"".join(headers)}</div>{"".join(rows)}</div>'
        f'{pager_html}{actions_html}</div>'
    )
    return Fragment(html=html, css=css)


@dataclass
class Tab:
    key: str
    title: str
    content: Fragment


def resolve_tab(group: str, tabs: Sequence[Tab], state: Optional[RadioDrivenState]) -> int:
    selected = (state or {}).get(group)
    for index, tab in enumerate(tabs):
        if tab_option(group, tab.key) == selected:
            return index
    return 0


def render_tabs(tabs: Sequence[Tab], state: Optional[RadioDrivenState] = None, group: str = MAIN_TABS) -> Fragment:
    """Mutually exclusive panes; the checked radio of ``group`` picks the pane."""
    if not tabs:
        return Fragment(html="")

    active = resolve_tab(group, tabs, state)
    group_id = css_ident(group)
    radios, labels, panes = [], [], []
    css: List[str] = []
    for index, tab in enumerate(tabs):
        option = tab_option(group, tab.key)
        radios.append(_radio(group, option, index == active))
        labels.append(f'<label class="{option}-label" for="{option}">{escape(tab.title)}</label>')
        panes.append(f'<div class="bv-pane {option}-pane">{tab.content.html}</div>')
        css.append(f"#{option}:checked~.{option}-pane{{display:block}}\n")
        css.append(
            f"#{option}:checked~.bv-tab-bar .{option}-label"
            f"{{font-weight:bold;border-bottom:2px solid #0073bb}}\n"
        )
        css.extend(tab.content.css)

    html = (
        f'<div class="bv-tabs" id="bv-{group_id}">{"".join(radios)}'
        f'<div class="bv-tab-bar">{"".join(labels)}</div>{"".join(panes)}</div>'
    )
    return Fragment(html=html, css=css)


def render_key_values(title: str, pairs: Sequence[Tuple[str, str]]) -> Fragment:
    """A static two column table; values are expected to be escaped HTML."""
    rows = "".join(f"<tr><td>{escape(key)}</td><td>{value}</td></tr>" for key, value in pairs)
    caption = f'<div class="bv-caption">{escape(title)}</div>' if title else ""
    return Fragment(html=f'<div class="bv-table">{caption}<table class="bv-kv">{rows}</table></div>')


def join(*fragments: Fragment) -> Fragment:
    return Fragment(
        html="".join(f.html for f in fragments),
        css=[rule for f in fragments for rule in f.css],
    )


def render_document(body: Fragment, header: str = "") -> str:
    """The single string handed back to the host: one style block plus markup."""
    return f'<style>{BASE_CSS}\n{"".join(body.css)}</style><div class="bv-root">{header}{body.html}</div>'
