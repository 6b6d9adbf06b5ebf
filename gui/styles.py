"""
Application stylesheet for light and dark mode theming.
"""


def get_application_stylesheet(is_dark: bool) -> str:
    """Return a single QSS stylesheet for the whole application.

    Applied once on the QApplication so the dashboard, log viewer and
    config editor all inherit the theme.
    """
    accent_blue = "#7AA2FF" if is_dark else "#4A67AD"
    accent_blue_hover = "#6690E8" if is_dark else "#3F5998"
    record_red = "#E57373" if is_dark else "#C62828"
    record_red_subtle = "rgba(229, 115, 115, 0.1)" if is_dark else "rgba(198, 40, 40, 0.1)"
    meeting_green = "#81C784" if is_dark else "#388E3C"
    # Status line tints
    status_info_bg     = "#1A222F" if is_dark else "#F0F4F8"
    status_info_border = "#3A5A8C" if is_dark else "#B0C4DE"
    status_info_text   = "#A0B0C0" if is_dark else "#4A67AD"
    status_rec_bg      = "#281A1A" if is_dark else "#FFF0F0"
    status_rec_border  = "#633232" if is_dark else "#E8B0B0"
    status_error_text  = "#E57373" if is_dark else "#A94442"
    bg_window = "#1A1A1E" if is_dark else "#F8F9FA"
    bg_widget = "#252529" if is_dark else "#FFFFFF"
    text_main = "#E1E1E6" if is_dark else "#333333"
    text_sec  = "#8E8E93" if is_dark else "#636366"
    border    = "#2C2C2C" if is_dark else "#E0E0E0"
    hover_bg  = "#3A3A3C" if is_dark else "#F0F0F0"
    pressed_bg    = "#2C2C2E" if is_dark else "#E0E0E0"
    disabled_bg   = "#3A3A3C" if is_dark else "#E5E5EA"
    disabled_text = "#636366" if is_dark else "#8E8E93"

    return f"""
        QWidget {{
            background-color: {bg_window};
            color: {text_main};
            font-family: "SF Pro", "Helvetica Neue", sans-serif;
            font-size: 13px;
        }}

        QLabel {{
            background-color: transparent;
        }}

        QLabel#secondary_label {{
            color: {text_sec};
            font-size: 11px;
        }}

        /* Meeting / recording status line */
        QLabel#status_msg {{
            font-size: 15px;
            font-weight: 600;
            border: 1px solid {border};
            border-radius: 6px;
            padding: 6px 10px;
        }}
        QLabel#status_msg[status_state="meeting"] {{
            background-color: {status_info_bg};
            border-color: {status_info_border};
            color: {status_info_text};
        }}
        QLabel#status_msg[status_state="recording"] {{
            background-color: {status_rec_bg};
            border-color: {status_rec_border};
            color: {record_red};
        }}

        QLabel#error_label {{
            color: {status_error_text};
        }}

        QLabel#permission_granted {{
            color: {meeting_green};
        }}
        QLabel#permission_denied {{
            color: {status_error_text};
        }}

        QGroupBox {{
            background-color: transparent;
            border: none;
            margin-top: 20px;
            padding-top: 4px;
            font-weight: 600;
        }}
        QGroupBox::title {{
            subcontrol-origin: margin;
            subcontrol-position: top left;
            padding: 0 4px;
            top: 4px;
        }}

        QTextEdit, QPlainTextEdit {{
            background-color: {bg_widget};
            color: {text_main};
            border: 1px solid {border};
            border-radius: 6px;
            padding: 6px;
            selection-background-color: {accent_blue};
            selection-color: white;
        }}

        QComboBox {{
            background-color: {bg_widget};
            color: {text_main};
            border: 1px solid {border};
            border-radius: 6px;
            padding: 5px 10px;
            min-height: 20px;
        }}
        QComboBox:hover {{
            border-color: {accent_blue};
        }}
        QComboBox QAbstractItemView {{
            background-color: {bg_widget};
            color: {text_main};
            selection-background-color: {accent_blue};
            selection-color: white;
        }}

        QPushButton {{
            background-color: {bg_widget};
            border: 1px solid {border};
            border-radius: 6px;
            padding: 6px 14px;
            font-weight: 500;
        }}
        QPushButton:hover {{
            background-color: {hover_bg};
        }}
        QPushButton:pressed {{
            background-color: {pressed_bg};
        }}

        QPushButton[class="primary"] {{
            background-color: {accent_blue};
            color: white;
            border: none;
        }}
        QPushButton[class="primary"]:hover {{
            background-color: {accent_blue_hover};
        }}

        QPushButton[class="danger-outline"] {{
            background-color: transparent;
            color: {record_red};
            border: 1px solid {record_red};
        }}
        QPushButton[class="danger-outline"]:hover {{
            background-color: {record_red_subtle};
        }}

        QPushButton:disabled {{
            background-color: {disabled_bg};
            color: {disabled_text};
            border: none;
        }}
    """
