"""Remote backend settings dialog for StockGrid."""

from __future__ import annotations

import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from typing import Callable, Optional

from core.sheets_client import SheetsClientError, SheetsCredentialsError, build_client
from settings import AppSettings, save_settings


class SyncSettingsWindow:
    """Dialog that lets the user point StockGrid at a spreadsheet."""

    def __init__(
        self,
        master: tk.Misc,
        settings: AppSettings,
        *,
        on_saved: Optional[Callable[[AppSettings], None]] = None,
    ) -> None:
        self.window = tk.Toplevel(master)
        self.window.title("Sync Settings")
        self.window.transient(master)
        self.window.resizable(False, False)

        self._settings = settings
        self._on_saved = on_saved
        self.sheet_id_var = tk.StringVar(value=settings.spreadsheet_id)
        self.credentials_var = tk.StringVar(value=settings.credential_path)
        self.realtime_var = tk.BooleanVar(value=settings.realtime_enabled)

        self._build_ui()

    # ------------------------------------------------------------------
    # UI helpers
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        frame = ttk.Frame(self.window, padding=12)
        frame.grid(row=0, column=0, sticky="nsew")
        frame.columnconfigure(0, weight=1)

        ttk.Label(frame, text="Google Sheet ID or .json workbook file:").grid(row=0, column=0, sticky="w")
        ttk.Entry(frame, textvariable=self.sheet_id_var, width=48).grid(
            row=1, column=0, columnspan=2, sticky="ew", pady=(4, 12)
        )

        ttk.Label(frame, text="Service account JSON:").grid(row=2, column=0, sticky="w")
        ttk.Entry(frame, textvariable=self.credentials_var, width=40).grid(
            row=3, column=0, sticky="ew", pady=(4, 12)
        )
        ttk.Button(frame, text="Browse…", command=self._browse_credentials).grid(
            row=3, column=1, padx=(8, 0), pady=(4, 12)
        )

        ttk.Checkbutton(frame, text="Follow remote changes", variable=self.realtime_var).grid(
            row=4, column=0, sticky="w", pady=(0, 12)
        )

        button_bar = ttk.Frame(frame)
        button_bar.grid(row=5, column=0, columnspan=2, sticky="ew")
        button_bar.columnconfigure(1, weight=1)

        ttk.Button(button_bar, text="Test Connection", command=self._on_test_connection).grid(
            row=0, column=0, padx=(0, 8)
        )
        ttk.Button(button_bar, text="Save", command=self._persist).grid(row=0, column=2, padx=(0, 8))
        ttk.Button(button_bar, text="Close", command=self.window.destroy).grid(row=0, column=3)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _browse_credentials(self) -> None:
        path = filedialog.askopenfilename(
            parent=self.window,
            title="Service account JSON",
            filetypes=[("JSON", "*.json"), ("All files", "*.*")],
        )
        if path:
            self.credentials_var.set(path)

    def _persist(self) -> None:
        sheet_id = self.sheet_id_var.get().strip()
        if not sheet_id:
            messagebox.showwarning("Sync Settings", "Please enter a Sheet ID.", parent=self.window)
            return
        self._settings.spreadsheet_id = sheet_id
        self._settings.credential_path = self.credentials_var.get().strip() or self._settings.credential_path
        self._settings.realtime_enabled = bool(self.realtime_var.get())
        save_settings(self._settings)
        if self._on_saved is not None:
            self._on_saved(self._settings)
        messagebox.showinfo(
            "Sync Settings", "Settings saved. Restart StockGrid to reconnect.", parent=self.window
        )

    def _on_test_connection(self) -> None:
        sheet_id = self.sheet_id_var.get().strip()
        if not sheet_id:
            messagebox.showwarning("Sync Settings", "Please enter a Sheet ID.", parent=self.window)
            return

        try:
            build_client(sheet_id, self.credentials_var.get().strip()).health_check()
        except SheetsCredentialsError as exc:
            messagebox.showerror(
                "Sync Settings",
                f"Service account problem:\n{exc}",
                parent=self.window,
            )
        except SheetsClientError as exc:
            messagebox.showerror(
                "Sync Settings",
                f"Connection failed: {exc}",
                parent=self.window,
            )
        else:
            messagebox.showinfo("Sync Settings", "Connection successful.", parent=self.window)


__all__ = ["SyncSettingsWindow"]
