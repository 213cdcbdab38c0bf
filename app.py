import logging
import tkinter as tk
from tkinter import messagebox
from typing import Optional

from core import app_paths
from core.logging_config import configure_logging
from core.sheets_client import SheetsClientError, SheetsCredentialsError
from core.synchronizer import STATUS_ERROR, Synchronizer
from settings import load_settings
from ui_main import MainWindow

logger = logging.getLogger(__name__)


configure_logging()


def main() -> None:
    app_paths.ensure_app_structure()
    settings = load_settings()

    try:
        synchronizer = Synchronizer.from_settings(settings)
    except SheetsCredentialsError as exc:
        logger.error("Service account rejected: %s", exc)
        _show_startup_error(f"The service account file could not be used:\n{exc}")
        return
    except SheetsClientError as exc:
        logger.error("Remote backend unavailable: %s", exc)
        _show_startup_error(f"Could not connect to the spreadsheet:\n{exc}")
        return

    init_error: Optional[str] = None
    tier = synchronizer.load()
    if synchronizer.status == STATUS_ERROR:
        init_error = "Working offline from local data; changes will sync once the sheet is reachable."
    synchronizer.start_realtime()

    root = tk.Tk()
    root.title("StockGrid Inventory")
    root.geometry("1100x640")
    MainWindow(root, synchronizer, initial_tier=tier, initial_error=init_error)
    root.mainloop()


def _show_startup_error(message: str) -> None:
    try:
        root = tk.Tk()
        root.withdraw()
        messagebox.showerror("StockGrid", message)
        root.destroy()
    except tk.TclError:
        print(message)


if __name__ == "__main__":
    main()
