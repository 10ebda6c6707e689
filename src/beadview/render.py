"""Rich rendering of the visible rows, the status bar and the detail panel.

Styling comes from an explicit Theme value; nothing here reads global state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from beadview.graph import Forest
from beadview.models import Status
from beadview.ordering import (
    count_open_blockers,
    sort_blocked,
    sort_blockers,
    sort_subtasks,
)
from beadview.refresh import Notification, RefreshDelta
from beadview.search import ViewMode
from beadview.tree_state import Stats, TreeStateManager, VisibleRow


@dataclass(frozen=True)
class Theme:
    status_styles: dict[str, str] = field(
        default_factory=lambda: {
            Status.OPEN.value: "white",
            Status.IN_PROGRESS.value: "bold cyan",
            Status.BLOCKED.value: "red",
            Status.DEFERRED.value: "dim yellow",
            Status.CLOSED.value: "dim green",
        }
    )
    status_icons: dict[str, str] = field(
        default_factory=lambda: {
            Status.OPEN.value: "○",
            Status.IN_PROGRESS.value: "◐",
            Status.BLOCKED.value: "⊘",
            Status.DEFERRED.value: "❄",
            Status.CLOSED.value: "✔",
        }
    )
    unknown_status_style: str = "magenta"
    unknown_status_icon: str = "?"
    cursor_style: str = "reverse"
    blocked_style: str = "bold red"
    dim_style: str = "dim"
    id_style: str = "bold"
    expanded_glyph: str = "▾"
    collapsed_glyph: str = "▸"
    leaf_glyph: str = " "
    indent: str = "  "
    level_styles: dict[str, str] = field(
        default_factory=lambda: {"info": "green", "warning": "yellow", "error": "bold red"}
    )

    def status_style(self, status: str) -> str:
        return self.status_styles.get(status, self.unknown_status_style)

    def status_icon(self, status: str) -> str:
        return self.status_icons.get(status, self.unknown_status_icon)


DEFAULT_THEME = Theme()


# ── Tree rows ─────────────────────────────────────────────────────────


def render_row(row: VisibleRow, forest: Forest, theme: Theme, selected: bool = False) -> Text:
    issue = forest.nodes[row.node_index].issue
    line = Text(theme.indent * row.depth)

    if not row.has_children:
        glyph = theme.leaf_glyph
    elif row.expanded:
        glyph = theme.expanded_glyph
    else:
        glyph = theme.collapsed_glyph
    line.append(f"{glyph} ")
    line.append(f"{theme.status_icon(issue.status)} ", style=theme.status_style(issue.status))
    line.append(issue.id, style=theme.id_style)
    line.append(" ")
    line.append(issue.title, style=theme.status_style(issue.status) if row.matches else theme.dim_style)
    if row.blocked:
        line.append(" [blocked]", style=theme.blocked_style)
    if row.hidden_children:
        line.append(f" (+{row.hidden_children})", style=theme.dim_style)

    if selected:
        line.stylize(theme.cursor_style)
    return line


def render_tree(state: TreeStateManager, theme: Theme = DEFAULT_THEME, height: int | None = None) -> Text:
    """Render visible rows, scrolled so the cursor stays on screen."""
    rows = state.visible_rows
    if not rows:
        message = "No issues match the filter." if state.filter_active else "No issues."
        return Text(message, style=theme.dim_style)

    start, end = 0, len(rows)
    if height is not None and height > 0 and len(rows) > height:
        start = max(0, min(state.cursor - height // 2, len(rows) - height))
        end = start + height

    out = Text()
    for idx in range(start, end):
        if idx > start:
            out.append("\n")
        out.append_text(render_row(rows[idx], state.forest, theme, selected=idx == state.cursor))
    return out


# ── Status bar ────────────────────────────────────────────────────────


def render_status_bar(
    stats: Stats,
    state: TreeStateManager,
    delta: RefreshDelta | None = None,
    notifications: list[Notification] | None = None,
    theme: Theme = DEFAULT_THEME,
) -> Text:
    bar = Text()
    bar.append(f"{stats.total} issues", style=theme.id_style)
    bar.append(f"  ◐ {stats.in_progress}", style=theme.status_style(Status.IN_PROGRESS.value))
    bar.append(f"  ○ {stats.ready}", style=theme.status_style(Status.OPEN.value))
    bar.append(f"  ⊘ {stats.blocked}", style=theme.status_style(Status.BLOCKED.value))
    bar.append(f"  ✔ {stats.closed}", style=theme.status_style(Status.CLOSED.value))

    if state.filter_text:
        bar.append(f"  filter: {state.filter_text!r}", style="yellow")
    if state.view_mode is not ViewMode.ALL:
        bar.append(f"  view: {state.view_mode.value}", style="yellow")
    if delta is not None and delta.has_changes:
        bar.append(f"  Δ {delta.summary()}", style=theme.dim_style)
    for note in notifications or []:
        bar.append(f"  {note.message}", style=theme.level_styles.get(note.level, ""))
    return bar


# ── Detail panel ──────────────────────────────────────────────────────


def _issue_line(forest: Forest, issue_id: str, theme: Theme) -> Text:
    record = forest.records[issue_id]
    line = Text()
    line.append(f"{theme.status_icon(record.status)} ", style=theme.status_style(record.status))
    line.append(issue_id, style=theme.id_style)
    line.append(f" P{record.priority} ", style=theme.dim_style)
    line.append(record.title)
    open_blockers = count_open_blockers(forest, issue_id)
    if open_blockers and not record.is_closed:
        line.append(f" ({open_blockers} open blockers)", style=theme.blocked_style)
    return line


def render_detail(forest: Forest, issue_id: str, theme: Theme = DEFAULT_THEME) -> Panel:
    """Detail panel for one issue with its related lists in work order."""
    record = forest.records.get(issue_id)
    if record is None:
        return Panel(Text(f"Unknown issue {issue_id}", style=theme.blocked_style), title="Issue")

    fields = Table.grid(padding=(0, 2))
    fields.add_column(style=theme.dim_style, no_wrap=True)
    fields.add_column()
    fields.add_row("Status", Text(record.status, style=theme.status_style(record.status)))
    fields.add_row("Priority", f"P{record.priority}")
    fields.add_row("Type", record.issue_type)
    if record.assignee:
        fields.add_row("Assignee", record.assignee)
    if record.labels:
        fields.add_row("Labels", ", ".join(sorted(record.labels)))
    if record.created_at:
        fields.add_row("Created", record.created_at.strftime("%Y-%m-%d %H:%M"))
    if record.updated_at:
        fields.add_row("Updated", record.updated_at.strftime("%Y-%m-%d %H:%M"))
    if record.closed_at:
        fields.add_row("Closed", record.closed_at.strftime("%Y-%m-%d %H:%M"))
    parents = forest.parents_of.get(issue_id, [])
    if parents:
        fields.add_row("Parent", ", ".join(parents))

    parts: list = [fields]
    if record.description:
        parts += [Text(""), Text(record.description)]

    sections = [
        ("Subtasks", sort_subtasks(forest, list(forest.children_of.get(issue_id, [])))),
        ("Blocked by", sort_blockers(forest, list(forest.blocked_by.get(issue_id, [])))),
        ("Blocks", sort_blocked(forest, list(forest.blocks.get(issue_id, [])))),
        ("Related", sorted(forest.related.get(issue_id, []))),
        ("Discovered from", list(forest.discovered_from.get(issue_id, []))),
    ]
    for title, ids in sections:
        if not ids:
            continue
        parts += [Text(""), Text(f"{title} ({len(ids)})", style="bold underline")]
        parts += [_issue_line(forest, i, theme) for i in ids]

    return Panel(
        Group(*parts),
        title=Text.assemble((record.id, "bold"), " ", record.title),
        border_style=theme.status_style(record.status),
    )


def render_view(
    state: TreeStateManager,
    delta: RefreshDelta | None = None,
    notifications: list[Notification] | None = None,
    theme: Theme = DEFAULT_THEME,
    height: int | None = None,
) -> Group:
    """Tree plus status bar, the full frame of the live viewer."""
    tree_height = None if height is None else max(1, height - 2)
    return Group(
        render_tree(state, theme, tree_height),
        Text(""),
        render_status_bar(state.stats(), state, delta, notifications, theme),
    )
