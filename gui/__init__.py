"""
Meeting Recorder GUI package.

PyQt6 dashboard and menu bar tray for the meeting recorder core.
"""


def main():
    """Convenience entry point; delegates to gui.main_window.main()."""
    from gui.main_window import main as _main
    _main()


__all__ = ["main"]
