import json
import os
from typing import Dict, Any, List, Optional
import logging

import streamlit as st

from .error_handler import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "reconciliation_settings.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "discrepancy_budget": 3,
    "minor_tolerance": 1.0,
    "monetary_fragments": [
        "taxable_value", "igst", "cgst", "sgst",
        "integrated_tax", "central_tax", "state_ut_tax"
    ],
    "date_column_names": ["invoice date"],
    "date_sample_size": 10,
    "identifying_prefix_columns": 2,
    "gst_header_row": 1,
    "tally_header_row": 1,
    "show_progress": False
}


class ReconciliationSettings:
    """Manages reconciliation settings for the GST vs Tally engine."""

    def __init__(self, settings_file: Optional[str] = None):
        self.settings_file = settings_file or os.environ.get("TALLYRECON_SETTINGS", DEFAULT_SETTINGS_FILE)
        self.default_settings = json.loads(json.dumps(DEFAULT_SETTINGS))
        self.settings = self.load_settings()

    def load_settings(self) -> Dict[str, Any]:
        """Load settings from file or return defaults."""
        try:
            if os.path.exists(self.settings_file):
                with open(self.settings_file, 'r') as f:
                    loaded_settings = json.load(f)
                    # Merge with defaults to ensure all keys exist
                    settings = self.default_settings.copy()
                    settings.update(loaded_settings)
                    logger.info("Settings loaded successfully")
                    return settings
            else:
                logger.info("No settings file found, using defaults")
                return self.default_settings.copy()
        except (OSError, ValueError) as e:
            logger.error(f"Error loading settings: {e}")
            return self.default_settings.copy()

    def save_settings(self, settings: Dict[str, Any]) -> bool:
        """Validate and save settings to file."""
        is_valid, message = self.validate_settings(settings)
        if not is_valid:
            logger.error(f"Refusing to save invalid settings: {message}")
            return False
        try:
            with open(self.settings_file, 'w') as f:
                json.dump(settings, f, indent=2)
            self.settings = settings
            logger.info("Settings saved successfully")
            return True
        except OSError as e:
            logger.error(f"Error saving settings: {e}")
            return False

    @staticmethod
    def validate_settings(settings: Dict[str, Any]) -> tuple[bool, str]:
        """Validate settings and return (is_valid, error_message)."""
        budget = settings.get('discrepancy_budget')
        if not isinstance(budget, int) or isinstance(budget, bool):
            return False, "Discrepancy Budget must be an integer"
        if budget < 1:
            return False, "Discrepancy Budget must be at least 1"

        tolerance = settings.get('minor_tolerance')
        if not isinstance(tolerance, (int, float)) or isinstance(tolerance, bool):
            return False, "Minor Tolerance must be a number"
        if tolerance <= 0:
            return False, "Minor Tolerance must be positive"

        fragments = settings.get('monetary_fragments')
        if not isinstance(fragments, list) or not all(isinstance(f, str) and f.strip() for f in fragments):
            return False, "Monetary Fragments must be a list of non-empty strings"

        date_names = settings.get('date_column_names')
        if not isinstance(date_names, list) or not all(isinstance(n, str) and n.strip() for n in date_names):
            return False, "Date Column Names must be a list of non-empty strings"

        for key, label in (('date_sample_size', "Date Sample Size"),
                           ('identifying_prefix_columns', "Identifying Prefix Columns"),
                           ('gst_header_row', "GST Header Row"),
                           ('tally_header_row', "Tally Header Row")):
            value = settings.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                return False, f"{label} must be a positive integer"

        if not isinstance(settings.get('show_progress'), bool):
            return False, "Show Progress must be true or false"

        return True, ""

    def get_discrepancy_budget(self) -> int:
        return self.settings.get('discrepancy_budget', 3)

    def get_minor_tolerance(self) -> float:
        return float(self.settings.get('minor_tolerance', 1.0))

    def get_monetary_fragments(self) -> List[str]:
        return list(self.settings.get('monetary_fragments', DEFAULT_SETTINGS['monetary_fragments']))

    def get_date_column_names(self) -> List[str]:
        return list(self.settings.get('date_column_names', DEFAULT_SETTINGS['date_column_names']))


def resolve_settings(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge caller overrides onto the defaults and validate the result."""
    resolved = json.loads(json.dumps(DEFAULT_SETTINGS))
    if settings:
        unknown = sorted(set(settings) - set(resolved))
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")
        resolved.update(settings)
        for key in ('monetary_fragments', 'date_column_names'):
            if isinstance(resolved[key], tuple):
                resolved[key] = list(resolved[key])
    is_valid, message = ReconciliationSettings.validate_settings(resolved)
    if not is_valid:
        raise ConfigurationError(message)
    return resolved


def get_current_settings(settings_file: Optional[str] = None) -> Dict[str, Any]:
    """Get current settings from the settings file merged with the defaults."""
    return ReconciliationSettings(settings_file).settings


def render_settings_page() -> Dict[str, Any]:
    """Render the settings page and return the settings in effect."""
    st.markdown("## ⚙️ Reconciliation Settings")
    st.markdown("Configure how partial matches are found and how monetary differences are graded.")

    settings_manager = ReconciliationSettings()
    current_settings = settings_manager.settings.copy()

    tab1, tab2 = st.tabs(["Matching", "Input"])

    with tab1:
        col1, col2 = st.columns(2)
        with col1:
            budget = st.number_input(
                "Discrepancy Budget",
                min_value=1,
                max_value=20,
                value=int(current_settings.get('discrepancy_budget', 3)),
                step=1,
                help="Largest number of mismatched mapped columns a partial match may have."
            )
            tolerance = st.number_input(
                "Minor Tolerance (₹)",
                min_value=0.01,
                max_value=100000.0,
                value=float(current_settings.get('minor_tolerance', 1.0)),
                step=0.5,
                help="A monetary difference below this is minor; at or above it the match is major."
            )
        with col2:
            fragments = st.text_area(
                "Monetary Column Fragments",
                value="\n".join(current_settings.get('monetary_fragments', [])),
                help="One per line. A mapped column whose name contains a fragment is treated as an amount."
            )
            show_progress = st.checkbox(
                "Show progress in the console",
                value=bool(current_settings.get('show_progress', False))
            )

    with tab2:
        col1, col2 = st.columns(2)
        with col1:
            date_names = st.text_area(
                "Invoice Date Column Names",
                value="\n".join(current_settings.get('date_column_names', [])),
                help="One per line, compared case-insensitively."
            )
            sample_size = st.number_input(
                "Date Detection Sample Size",
                min_value=1,
                max_value=1000,
                value=int(current_settings.get('date_sample_size', 10)),
                step=1
            )
        with col2:
            gst_header_row = st.number_input(
                "Default GST Header Row", min_value=1, max_value=100,
                value=int(current_settings.get('gst_header_row', 1)), step=1
            )
            tally_header_row = st.number_input(
                "Default Tally Header Row", min_value=1, max_value=100,
                value=int(current_settings.get('tally_header_row', 1)), step=1
            )
            prefix_columns = st.number_input(
                "Identifying Prefix Columns", min_value=1, max_value=20,
                value=int(current_settings.get('identifying_prefix_columns', 2)), step=1,
                help="Leading mapped columns used to pre-select partial-match candidates in the relational view."
            )

    st.markdown("---")
    col1, col2 = st.columns(2)

    with col1:
        if st.button("💾 Save Settings", type="primary"):
            updated_settings = {
                "discrepancy_budget": int(budget),
                "minor_tolerance": float(tolerance),
                "monetary_fragments": [f.strip() for f in fragments.splitlines() if f.strip()],
                "date_column_names": [n.strip() for n in date_names.splitlines() if n.strip()],
                "date_sample_size": int(sample_size),
                "identifying_prefix_columns": int(prefix_columns),
                "gst_header_row": int(gst_header_row),
                "tally_header_row": int(tally_header_row),
                "show_progress": bool(show_progress)
            }

            is_valid, error_message = settings_manager.validate_settings(updated_settings)
            if is_valid and settings_manager.save_settings(updated_settings):
                st.success("✅ Settings saved successfully!")
                st.session_state.reconciliation_settings = updated_settings
                return updated_settings
            elif not is_valid:
                st.error(f"❌ Invalid settings: {error_message}")
            else:
                st.error("❌ Failed to save settings. Please try again.")

    with col2:
        if st.button("🔄 Reset to Defaults"):
            if settings_manager.save_settings(settings_manager.default_settings):
                st.success("✅ Settings reset to defaults!")
                st.session_state.reconciliation_settings = settings_manager.default_settings
                st.rerun()
            else:
                st.error("❌ Failed to reset settings.")

    return current_settings
