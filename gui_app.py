"""
Meeting Recorder - macOS GUI Application

Watches the focused window for Zoom, Microsoft Teams and Google Meet calls
and records the screen and microphone while a meeting runs.
"""
from gui.main_window import main

if __name__ == "__main__":
    main()
