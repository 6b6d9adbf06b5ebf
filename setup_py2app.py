"""
py2app setup script for Meeting Recorder

To build the application:
    python setup_py2app.py py2app

To clean build artifacts:
    python setup_py2app.py clean

The built application will be in the 'dist' folder. Place a static ffmpeg
binary at bin/ffmpeg before building to ship it inside the bundle.
"""
import sys
import shutil
from pathlib import Path

ROOT = Path(__file__).parent

# Handle clean command before importing setuptools
if len(sys.argv) > 1 and sys.argv[1] == 'clean':
    for pattern in ['build', 'dist', '.eggs', '*.egg-info', '**/__pycache__']:
        for path in ROOT.glob(pattern):
            if path.is_dir():
                print(f"Removing directory: {path}")
                shutil.rmtree(path, ignore_errors=True)
    for path in ROOT.glob("**/.DS_Store"):
        path.unlink(missing_ok=True)
    print("Clean complete.")
    sys.exit(0)

import os
from setuptools import setup
from version import __version__, APP_BUNDLE_ID as RELEASE_BUNDLE_ID

# SOURCE_BUILD=1 produces a separately identified bundle so macOS privacy
# grants for a dev build don't collide with the installed release app.
IS_SOURCE_BUILD = os.environ.get('SOURCE_BUILD', '0') == '1'

if IS_SOURCE_BUILD:
    APP_NAME = 'Meeting Recorder SourceBuild'
    APP_BUNDLE_ID = f'{RELEASE_BUNDLE_ID}.sourcebuild'
else:
    APP_NAME = 'Meeting Recorder'
    APP_BUNDLE_ID = RELEASE_BUNDLE_ID

APP_VERSION = __version__
APP_SCRIPT = 'gui_app.py'

# Flat files go into Resources/
DATA_FILES = ['config.json']
if (ROOT / 'appicon.icns').exists():
    DATA_FILES.append('appicon.icns')

_ffmpeg = ROOT / 'bin' / 'ffmpeg'
if _ffmpeg.is_file():
    DATA_FILES.append(('bin', [str(_ffmpeg)]))
    print(f"Bundling ffmpeg from {_ffmpeg}")
else:
    print("WARNING: bin/ffmpeg not found; the app will look for ffmpeg on PATH")

OPTIONS = {
    'py2app': {
        'argv_emulation': False,
        'includes': [
            'capture_backend',
            'capture_session',
            'meeting_detector',
            'recorder_utils',
            'recording_coordinator',
            'recording_store',
            'settings_store',
            'version',
            'gui',
            'gui.constants',
            'gui.styles',
            'gui.workers',
            'gui.dialogs',
            'gui.main_window',
            'asyncio',
            'json',
            'logging',
            'pathlib',
            'subprocess',
            'threading',
        ],
        'packages': [
            'PyQt6',
            'psutil',
            'aiofiles',
            'gui',
        ],
        'excludes': [
            'tkinter',
            'matplotlib',
            'numpy',
            'scipy',
            'PIL',
            'pip',
            'setuptools',
            'pkg_resources',
            'wheel',
            '_distutils_hack',
            'pytest',
        ],
        'resources': DATA_FILES,
        'plist': {
            'CFBundleName': APP_NAME,
            'CFBundleDisplayName': APP_NAME,
            'CFBundleGetInfoString': f'{APP_NAME} {APP_VERSION}',
            'CFBundleIdentifier': APP_BUNDLE_ID,
            'CFBundleVersion': APP_VERSION,
            'CFBundleShortVersionString': APP_VERSION,
            'NSPrincipalClass': 'NSApplication',
            'NSRequiresAquaSystemAppearance': False,
            'LSMinimumSystemVersion': '12.0',
            'NSHighResolutionCapable': True,
            'LSApplicationCategoryType': 'public.app-category.productivity',
            'NSScreenCaptureUsageDescription': (
                'Meeting Recorder records your screen while a meeting is in progress.'
            ),
            'NSMicrophoneUsageDescription': (
                'Meeting Recorder records meeting audio from your microphone.'
            ),
            'NSAccessibilityUsageDescription': (
                'Meeting Recorder reads the focused window title to detect meetings.'
            ),
            'LSEnvironment': {
                'PATH': '/usr/bin:/bin:/usr/sbin:/sbin:/usr/local/bin:/opt/homebrew/bin'
            }
        },
    }
}

if (ROOT / 'appicon.icns').exists():
    OPTIONS['py2app']['iconfile'] = 'appicon.icns'

setup(
    name=APP_NAME,
    version=APP_VERSION,
    description='Detects meetings and records screen and microphone while they run',
    app=[APP_SCRIPT],
    data_files=DATA_FILES,
    options=OPTIONS,
)
