"""
Version information for Meeting Recorder.

Single source of truth for the application version; bump_version.py and
setup_py2app.py both read it.
"""

VERSION_MAJOR = 0
VERSION_MINOR = 3
VERSION_PATCH = 0

__version__ = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"

# Shown in the About box and used for the bundle identifier
APP_BUNDLE_ID = "com.meetingrecorder.app"
