import logging
import tkinter as tk
from datetime import date
from tkinter import simpledialog, ttk
from typing import Dict, List, Optional, Tuple

from ttkbootstrap import Style

from core.inventory import InventoryValidationError
from core.logging_config import get_log_path
from core.models import AreaInventory, InventoryState, Snapshot
from core.synchronizer import (
    STATUS_ERROR,
    STATUS_PENDING,
    STATUS_SYNCED,
    STATUS_SYNCING,
    SyncError,
    Synchronizer,
)
from settings import HISTORY_MODE_AREA_INVENTORIES, AppSettings
from ui import dialogs
from ui.sync_settings import SyncSettingsWindow

logger = logging.getLogger(__name__)

LOW_STOCK_COLOR = "#f8d7da"
NORMAL_COLOR = "#ffffff"

_STATUS_TEXT = {
    "idle": "Idle",
    STATUS_PENDING: "Pending changes…",
    STATUS_SYNCING: "Syncing…",
    STATUS_SYNCED: "Synced",
    STATUS_ERROR: "Sync error",
}


class ScrollableFrame(ttk.Frame):
    """A simple scrollable container for the quantity matrix."""

    def __init__(self, master: tk.Misc, *, padding: int = 0) -> None:
        super().__init__(master, padding=padding)
        self.columnconfigure(0, weight=1)
        self.rowconfigure(0, weight=1)

        self._canvas = tk.Canvas(self, borderwidth=0, highlightthickness=0)
        self._canvas.grid(row=0, column=0, sticky="nsew")

        self._scrollbar = ttk.Scrollbar(self, orient=tk.VERTICAL, command=self._canvas.yview)
        self._scrollbar.grid(row=0, column=1, sticky="ns")
        self._hscrollbar = ttk.Scrollbar(self, orient=tk.HORIZONTAL, command=self._canvas.xview)
        self._hscrollbar.grid(row=1, column=0, sticky="ew")

        self._canvas.configure(
            yscrollcommand=self._scrollbar.set, xscrollcommand=self._hscrollbar.set
        )

        self.content = ttk.Frame(self._canvas, padding=padding)
        self._window_id = self._canvas.create_window((0, 0), window=self.content, anchor="nw")
        self.content.bind("<Configure>", self._on_content_configure)

        for sequence in ("<MouseWheel>", "<Button-4>", "<Button-5>"):
            self._canvas.bind(sequence, self._on_mousewheel, add=True)

    def _on_content_configure(self, event: tk.Event) -> None:
        self._canvas.configure(scrollregion=self._canvas.bbox("all"))

    def _on_mousewheel(self, event: tk.Event) -> None:
        if event.delta:
            self._canvas.yview_scroll(int(-event.delta / 120), "units")
        elif getattr(event, "num", None) == 4:
            self._canvas.yview_scroll(-1, "units")
        elif getattr(event, "num", None) == 5:
            self._canvas.yview_scroll(1, "units")


class MainWindow:
    def __init__(
        self,
        root: tk.Tk,
        synchronizer: Synchronizer,
        *,
        initial_tier: Optional[str] = None,
        initial_error: Optional[str] = None,
    ) -> None:
        self.root = root
        self.sync = synchronizer
        self.settings: AppSettings = synchronizer.settings
        # Newer ttkbootstrap releases reuse the existing root when Style is
        # created after it.
        self.style = Style(theme="flatly")

        self.search_var = tk.StringVar()
        self.search_var.trace_add("write", lambda *_args: self._render_matrix(self.sync.state))
        self.sync_status_badge_var = tk.StringVar(value="Connecting…")
        self.sync_detail_var = tk.StringVar(value=initial_error or "")
        self.history_mode_var = tk.StringVar(value=self.settings.history_mode)
        self.area_choice_var = tk.StringVar()
        self.inventory_date_var = tk.StringVar(value=date.today().isoformat())

        self._cell_vars: Dict[Tuple[int, int], tk.StringVar] = {}
        self._cell_entries: Dict[Tuple[int, int], tk.Entry] = {}
        self._threshold_vars: Dict[int, tk.StringVar] = {}
        self._history_records: Dict[str, object] = {}
        self._detail_window: Optional[tk.Toplevel] = None

        self._build_ui()

        self.sync.add_state_listener(lambda state: self.root.after(0, lambda: self._render_matrix(state)))
        self.sync.add_status_listener(
            lambda status, payload: self.root.after(0, lambda: self._apply_sync_status(status, payload))
        )
        self.sync.add_history_listener(lambda kind: self.root.after(0, lambda: self._on_history_change(kind)))
        self.root.protocol("WM_DELETE_WINDOW", self._on_close)

        self._render_matrix(self.sync.state)
        self._apply_sync_status(self.sync.status, {"dirty": self.sync.dirty})
        if initial_tier:
            self.sync_detail_var.set(initial_error or f"Loaded from {initial_tier} data.")
        self.root.after(0, self._refresh_history)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        self.root.columnconfigure(0, weight=1)
        self.root.rowconfigure(1, weight=1)

        toolbar = ttk.Frame(self.root, padding=(12, 8))
        toolbar.grid(row=0, column=0, columnspan=2, sticky="ew")
        toolbar.columnconfigure(1, weight=1)

        ttk.Entry(toolbar, textvariable=self.search_var, width=24).grid(row=0, column=0, padx=(0, 8))
        actions = ttk.Frame(toolbar)
        actions.grid(row=0, column=1, sticky="w")
        ttk.Button(actions, text="+ Area", command=self._on_add_area).pack(side=tk.LEFT, padx=2)
        ttk.Button(actions, text="+ Item", command=self._on_add_item).pack(side=tk.LEFT, padx=2)
        ttk.Button(actions, text="Save (Excel + snapshot)", command=self._on_save_snapshot).pack(
            side=tk.LEFT, padx=2
        )
        ttk.Button(actions, text="Retry sync", command=self._on_retry).pack(side=tk.LEFT, padx=2)
        ttk.Button(actions, text="Settings", command=self._open_sync_settings_window).pack(
            side=tk.LEFT, padx=2
        )

        badge = ttk.Frame(toolbar)
        badge.grid(row=0, column=2, sticky="e")
        self.status_label = ttk.Label(badge, textvariable=self.sync_status_badge_var, width=18, anchor="e")
        self.status_label.pack(side=tk.TOP, anchor="e")
        ttk.Label(badge, textvariable=self.sync_detail_var, foreground="#6c757d").pack(
            side=tk.TOP, anchor="e"
        )

        self.matrix_frame = ScrollableFrame(self.root, padding=8)
        self.matrix_frame.grid(row=1, column=0, sticky="nsew")

        self._build_history_panel()

    def _build_history_panel(self) -> None:
        panel = ttk.Frame(self.root, padding=8)
        panel.grid(row=1, column=1, sticky="ns")
        panel.rowconfigure(2, weight=1)

        modes = ttk.Frame(panel)
        modes.grid(row=0, column=0, sticky="ew")
        ttk.Radiobutton(
            modes, text="Snapshots", value="snapshots", variable=self.history_mode_var,
            command=self._on_history_mode,
        ).pack(side=tk.LEFT)
        ttk.Radiobutton(
            modes, text="Area inventories", value=HISTORY_MODE_AREA_INVENTORIES,
            variable=self.history_mode_var, command=self._on_history_mode,
        ).pack(side=tk.LEFT, padx=(8, 0))

        area_bar = ttk.Frame(panel)
        area_bar.grid(row=1, column=0, sticky="ew", pady=(8, 4))
        self.area_combo = ttk.Combobox(area_bar, textvariable=self.area_choice_var, state="readonly", width=14)
        self.area_combo.pack(side=tk.LEFT)
        ttk.Entry(area_bar, textvariable=self.inventory_date_var, width=11).pack(side=tk.LEFT, padx=4)
        ttk.Button(area_bar, text="Save area", command=self._on_save_area_inventory).pack(side=tk.LEFT)

        self.history_tree = ttk.Treeview(panel, columns=("name", "created"), show="headings", height=14)
        self.history_tree.heading("name", text="Record")
        self.history_tree.heading("created", text="Created")
        self.history_tree.column("name", width=180)
        self.history_tree.column("created", width=150)
        self.history_tree.grid(row=2, column=0, sticky="nsew")
        self.history_tree.bind("<Double-1>", lambda _event: self._on_view_record())

        buttons = ttk.Frame(panel)
        buttons.grid(row=3, column=0, sticky="ew", pady=(4, 0))
        ttk.Button(buttons, text="View", command=self._on_view_record).pack(side=tk.LEFT)
        ttk.Button(buttons, text="Delete", command=self._on_delete_record).pack(side=tk.LEFT, padx=4)
        ttk.Button(buttons, text="Refresh", command=self._refresh_history).pack(side=tk.LEFT)

    # ------------------------------------------------------------------
    # Matrix rendering
    # ------------------------------------------------------------------
    def _render_matrix(self, state: InventoryState) -> None:
        content = self.matrix_frame.content
        for child in content.winfo_children():
            child.destroy()
        self._cell_vars.clear()
        self._cell_entries.clear()
        self._threshold_vars.clear()

        ttk.Label(content, text="Item", font=("TkDefaultFont", 10, "bold")).grid(row=0, column=0, sticky="w")
        ttk.Label(content, text="Min").grid(row=0, column=1)
        for column, area in enumerate(state.areas):
            header = ttk.Frame(content)
            header.grid(row=0, column=column + 2, padx=2)
            label = ttk.Label(header, text=area, font=("TkDefaultFont", 10, "bold"))
            label.pack(side=tk.TOP)
            label.bind("<Double-1>", lambda _e, c=column: self._on_rename_area(c))
            tools = ttk.Frame(header)
            tools.pack(side=tk.TOP)
            ttk.Button(tools, text="◀", width=2, command=lambda c=column: self._on_move_area(c, -1)).pack(side=tk.LEFT)
            ttk.Button(tools, text="▶", width=2, command=lambda c=column: self._on_move_area(c, 1)).pack(side=tk.LEFT)
            ttk.Button(tools, text="✕", width=2, command=lambda c=column: self._on_remove_area(c)).pack(side=tk.LEFT)
        ttk.Label(content, text="Total", font=("TkDefaultFont", 10, "bold")).grid(
            row=0, column=len(state.areas) + 2, padx=6
        )

        totals = state.row_totals()
        for grid_row, row in enumerate(state.filter_items(self.search_var.get()), start=1):
            item = state.items[row]
            name = ttk.Label(content, text=item.name)
            name.grid(row=grid_row, column=0, sticky="w", padx=(0, 6))
            name.bind("<Double-1>", lambda _e, r=row: self._on_rename_item(r))

            threshold_var = tk.StringVar(value=str(item.threshold))
            self._threshold_vars[row] = threshold_var
            threshold = ttk.Entry(content, textvariable=threshold_var, width=5, justify="right")
            threshold.grid(row=grid_row, column=1, padx=2)
            for sequence in ("<Return>", "<FocusOut>"):
                threshold.bind(sequence, lambda _e, r=row: self._on_threshold_commit(r))

            for column in range(len(state.areas)):
                var = tk.StringVar(value=str(state.quantity(row, column)))
                entry = tk.Entry(content, textvariable=var, width=7, justify="right")
                entry.configure(background=LOW_STOCK_COLOR if state.is_low(row, column) else NORMAL_COLOR)
                entry.grid(row=grid_row, column=column + 2, padx=2, pady=1)
                for sequence in ("<Return>", "<FocusOut>"):
                    entry.bind(sequence, lambda _e, r=row, c=column: self._on_cell_commit(r, c))
                self._cell_vars[(row, column)] = var
                self._cell_entries[(row, column)] = entry

            ttk.Label(content, text=str(totals[row])).grid(row=grid_row, column=len(state.areas) + 2)
            tools = ttk.Frame(content)
            tools.grid(row=grid_row, column=len(state.areas) + 3, padx=(6, 0))
            ttk.Button(tools, text="▲", width=2, command=lambda r=row: self._on_move_item(r, -1)).pack(side=tk.LEFT)
            ttk.Button(tools, text="▼", width=2, command=lambda r=row: self._on_move_item(r, 1)).pack(side=tk.LEFT)
            ttk.Button(tools, text="✕", width=2, command=lambda r=row: self._on_remove_item(r)).pack(side=tk.LEFT)

        footer = len(state.items) + 2
        ttk.Label(content, text="TOTAL", font=("TkDefaultFont", 10, "bold")).grid(row=footer, column=0, sticky="w")
        for column, total in enumerate(state.column_totals()):
            ttk.Label(content, text=str(total)).grid(row=footer, column=column + 2)
        ttk.Label(content, text=str(state.grand_total()), font=("TkDefaultFont", 10, "bold")).grid(
            row=footer, column=len(state.areas) + 2
        )

        self.area_combo.configure(values=list(state.areas))
        if self.area_choice_var.get() not in state.areas:
            self.area_choice_var.set(state.areas[0] if state.areas else "")

    # ------------------------------------------------------------------
    # Sync status
    # ------------------------------------------------------------------
    def _apply_sync_status(self, status: str, payload: Dict[str, object]) -> None:
        text = _STATUS_TEXT.get(status, status)
        if payload.get("dirty") and status != STATUS_SYNCING:
            text += " *"
        self.sync_status_badge_var.set(text)
        if status == STATUS_ERROR:
            self.sync_detail_var.set(str(payload.get("message") or "See log for details"))
        elif status == STATUS_SYNCED:
            self.sync_detail_var.set("")

    def _run(self, action, *args, **kwargs):
        """Run a synchronizer action, reporting validation and sync errors."""

        try:
            return action(*args, **kwargs)
        except InventoryValidationError as exc:
            dialogs.show_error(self.root, str(exc))
        except SyncError as exc:
            logger.warning("Sync action failed: %s", exc)
            dialogs.show_error(self.root, f"{exc}\n\nYour change is kept locally. Log: {get_log_path()}")
        return None

    # ------------------------------------------------------------------
    # Edit handlers
    # ------------------------------------------------------------------
    def _on_cell_commit(self, row: int, column: int) -> None:
        var = self._cell_vars.get((row, column))
        state = self.sync.state
        if var is None or row >= len(state.items) or column >= len(state.areas):
            return
        if var.get().strip() == str(state.quantity(row, column)):
            return
        self._run(self.sync.set_quantity, row, column, var.get())

    def _on_threshold_commit(self, row: int) -> None:
        var = self._threshold_vars.get(row)
        state = self.sync.state
        if var is None or row >= len(state.items):
            return
        if var.get().strip() == str(state.items[row].threshold):
            return
        self._run(self.sync.set_threshold, row, var.get())

    def _ask_name(self, prompt: str, initial: str = "") -> Optional[str]:
        return simpledialog.askstring(dialogs.TITLE, prompt, initialvalue=initial, parent=self.root)

    def _on_add_area(self) -> None:
        name = self._ask_name("New area name:")
        if name is not None:
            self._run(self.sync.add_area, name)

    def _on_add_item(self) -> None:
        name = self._ask_name("New item name:")
        if name is None:
            return
        threshold = self._ask_name("Low-stock threshold (0 for none):", "0")
        if threshold is not None:
            self._run(self.sync.add_item, name, threshold)

    def _on_rename_area(self, column: int) -> None:
        name = self._ask_name("Rename area:", self.sync.state.areas[column])
        if name is not None:
            self._run(self.sync.rename_area, column, name)

    def _on_rename_item(self, row: int) -> None:
        name = self._ask_name("Rename item:", self.sync.state.items[row].name)
        if name is not None:
            self._run(self.sync.rename_item, row, name)

    def _on_move_area(self, column: int, offset: int) -> None:
        target = column + offset
        if 0 <= target < len(self.sync.state.areas):
            self._run(self.sync.move_area, column, target)

    def _on_move_item(self, row: int, offset: int) -> None:
        target = row + offset
        if 0 <= target < len(self.sync.state.items):
            self._run(self.sync.move_item, row, target)

    def _on_remove_area(self, column: int) -> None:
        self._run(self.sync.remove_area, column, choose_destination=dialogs.choose_destination(self.root))

    def _on_remove_item(self, row: int) -> None:
        self._run(self.sync.remove_item, row, confirm=dialogs.confirm(self.root))

    def _on_retry(self) -> None:
        if self._run(self.sync.retry_sync) is False:
            dialogs.show_info(self.root, "Everything is already synced.")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def _on_save_snapshot(self) -> None:
        default_title = date.today().isoformat()
        title = simpledialog.askstring(
            dialogs.TITLE,
            f"Title/notes for this snapshot.\nLeave empty to use today's date: {default_title}",
            initialvalue=default_title,
            parent=self.root,
        )
        if title is None:
            return
        result = self._run(self.sync.save_snapshot, title)
        if result is None:
            return
        if result.export_error:
            dialogs.show_error(self.root, f"Snapshot saved, but the Excel export failed:\n{result.export_error}")
        else:
            dialogs.show_info(self.root, f"Saved state and snapshot.\nExcel: {result.export_path}")

    def _on_save_area_inventory(self) -> None:
        state = self.sync.state
        area = self.area_choice_var.get()
        if area not in state.areas:
            dialogs.show_error(self.root, "Choose an area first.")
            return
        record = self._run(
            self.sync.save_area_inventory, state.areas.index(area), self.inventory_date_var.get()
        )
        if record is not None:
            self.history_mode_var.set(HISTORY_MODE_AREA_INVENTORIES)
            self._render_history()

    def _on_history_mode(self) -> None:
        self._refresh_history()

    def _refresh_history(self) -> None:
        if self.history_mode_var.get() == HISTORY_MODE_AREA_INVENTORIES:
            self.sync.refresh_area_inventories()
        else:
            self.sync.refresh_snapshots()

    def _on_history_change(self, kind: str) -> None:
        if kind == "viewed":
            if self.sync.viewed_record is None and self._detail_window is not None:
                self._detail_window.destroy()
                self._detail_window = None
            return
        self._render_history()

    def _current_records(self) -> List[object]:
        if self.history_mode_var.get() == HISTORY_MODE_AREA_INVENTORIES:
            return list(self.sync.area_inventories)
        return list(self.sync.snapshots)

    def _render_history(self) -> None:
        self.history_tree.delete(*self.history_tree.get_children())
        self._history_records.clear()
        for record in self._current_records():
            iid = self.history_tree.insert("", tk.END, values=(record.display_name(), record.created_at[:19]))
            self._history_records[iid] = record

    def _selected_record(self):
        selection = self.history_tree.selection()
        if not selection:
            return None
        return self._history_records.get(selection[0])

    def _on_view_record(self) -> None:
        record = self._selected_record()
        if record is None:
            return
        self.sync.open_record(record)
        self._show_record(record)

    def _on_delete_record(self) -> None:
        record = self._selected_record()
        if record is None:
            return
        ask = dialogs.ask_text(self.root)
        if isinstance(record, Snapshot):
            deleted = self._run(self.sync.delete_snapshot, record, ask_text=ask)
        else:
            deleted = self._run(self.sync.delete_area_inventory, record, ask_text=ask)
        if deleted is False:
            dialogs.show_info(self.root, "Deletion cancelled.")

    def _show_record(self, record) -> None:
        if self._detail_window is not None:
            self._detail_window.destroy()
        window = tk.Toplevel(self.root)
        window.title(record.display_name())
        window.transient(self.root)
        window.protocol("WM_DELETE_WINDOW", self.sync.close_record)
        self._detail_window = window

        frame = ttk.Frame(window, padding=12)
        frame.pack(fill=tk.BOTH, expand=True)
        if isinstance(record, AreaInventory):
            columns: Tuple[str, ...] = ("item", "qty")
            rows = [(line.name, line.qty) for line in record.items]
            rows.append(("TOTAL", record.total()))
        else:
            data = record.data
            columns = ("item", *data.areas, "total")
            rows = [
                (item.name, *values, total)
                for item, values, total in zip(data.items, data.quantities, data.row_totals())
            ]
            rows.append(("TOTAL", *data.column_totals(), data.grand_total()))

        tree = ttk.Treeview(frame, columns=[f"c{index}" for index in range(len(columns))], show="headings", height=12)
        for index, title in enumerate(columns):
            tree.heading(f"c{index}", text=title.title() if title in ("item", "qty", "total") else title)
            tree.column(f"c{index}", width=90, anchor="e" if index else "w")
        for values in rows:
            tree.insert("", tk.END, values=values)
        tree.pack(fill=tk.BOTH, expand=True)
        ttk.Button(frame, text="Close", command=self.sync.close_record).pack(anchor="e", pady=(8, 0))

    # ------------------------------------------------------------------
    # Window helpers
    # ------------------------------------------------------------------
    def _open_sync_settings_window(self) -> None:
        SyncSettingsWindow(self.root, self.settings)

    def _on_close(self) -> None:
        try:
            self.sync.close()
        finally:
            self.root.destroy()


__all__ = ["MainWindow", "ScrollableFrame"]
