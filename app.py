import streamlit as st
import pandas as pd
import plotly.express as px
import logging
import io
from datetime import datetime
from tallyrecon.reconciliation import GSTTallyReconciliation
from tallyrecon.models import ColumnMapping
from tallyrecon.error_handler import ErrorHandler, ReconciliationError, FileParseError
from tallyrecon.file_parser import parse_file, get_columns
from tallyrecon.reports import report_to_frames, export_report_to_excel, export_bucket_to_csv, get_report_summary, BUCKETS
from tallyrecon.settings import render_settings_page, get_current_settings, DEFAULT_SETTINGS

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

st.set_page_config(page_title="GST vs Tally Reconciliation", layout="wide")

BUCKET_COLORS = {
    'Exact Matches': '#43a047',
    'Partial Minor': '#fbc02d',
    'Partial Major': '#fb8c00',
    'GST Only': '#e53935',
    'Tally Only': '#1976d2',
}


def initialize_session_state():
    """Initialize session state variables if they don't exist."""
    if 'gst_records' not in st.session_state:
        st.session_state.gst_records = None
    if 'tally_records' not in st.session_state:
        st.session_state.tally_records = None
    if 'reconciliation' not in st.session_state:
        st.session_state.reconciliation = None
    if 'report' not in st.session_state:
        st.session_state.report = None
    if 'reconciliation_complete' not in st.session_state:
        st.session_state.reconciliation_complete = False
    if 'error_handler' not in st.session_state:
        st.session_state.error_handler = ErrorHandler()
    if 'reconciliation_settings' not in st.session_state:
        st.session_state.reconciliation_settings = get_current_settings()


def reset_results():
    st.session_state.reconciliation = None
    st.session_state.report = None
    st.session_state.reconciliation_complete = False


@st.cache_data
def load_records(data: bytes, filename: str, header_row: int):
    return parse_file(io.BytesIO(data), filename=filename, header_row=header_row)


def engine_settings() -> dict:
    """Session settings restricted to the keys the engine understands."""
    settings = st.session_state.reconciliation_settings or {}
    return {k: v for k, v in settings.items() if k in DEFAULT_SETTINGS}


def render_upload_section(label: str, key: str, default_header_row: int):
    """File uploader plus header row selector; returns parsed records or None."""
    uploaded = st.file_uploader(f"Upload {label} File", type=['xlsx', 'xls', 'csv'], key=f"{key}_upload")
    header_row = st.number_input(
        f"{label} Header Row",
        min_value=1,
        max_value=100,
        value=int(default_header_row),
        step=1,
        key=f"{key}_header_row",
        help="Rows before this one are skipped after the column titles are read."
    )
    if uploaded is None:
        return None

    try:
        records = load_records(uploaded.getvalue(), uploaded.name, int(header_row))
    except FileParseError as e:
        error_log = st.session_state.error_handler.error_log
        if not any(entry.get('file_context') == e.filename and entry['error_type'] == e.error_entry.get('error_type')
                   for entry in error_log):
            error_log.append(e.error_entry)
        st.error(f"❌ {e}")
        for suggestion in st.session_state.error_handler.get_error_suggestions(e.error_entry):
            st.caption(f"• {suggestion}")
        return None

    st.caption(f"{len(records)} rows, {len(get_columns(records))} columns")
    if records:
        st.dataframe(pd.DataFrame(records).head(5), use_container_width=True, hide_index=True)
    else:
        st.warning(f"No data rows found in the {label} file.")
    return records


def render_mapping_section(gst_columns, tally_columns):
    """Paired select boxes; every pair is chosen by the user."""
    st.subheader("Column Mapping")
    st.markdown("Pair each GST column with the Tally column that holds the same field. "
                "Pairs with an empty side are ignored.")

    pair_count = st.number_input("Number of mapped columns", min_value=1,
                                 max_value=max(len(gst_columns), len(tally_columns), 1),
                                 value=min(4, max(len(gst_columns), 1)), step=1)
    pairs = []
    for i in range(int(pair_count)):
        col1, col2 = st.columns(2)
        with col1:
            gst_col = st.selectbox(f"GST column {i + 1}", [""] + gst_columns, index=0, key=f"gst_map_{i}")
        with col2:
            tally_col = st.selectbox(f"Tally column {i + 1}", [""] + tally_columns, index=0, key=f"tally_map_{i}")
        pairs.append((gst_col, tally_col))
    return pairs


def run_reconciliation(gst_records, tally_records, pairs):
    error_handler = st.session_state.error_handler
    try:
        mapping = ColumnMapping.from_pairs(pairs, error_handler)
        reconciliation = GSTTallyReconciliation(gst_records, tally_records, mapping,
                                                engine_settings(), error_handler)
        with st.spinner("Reconciling..."):
            report = reconciliation.run()
    except ReconciliationError as e:
        st.error(f"❌ {e}")
        return

    st.session_state.reconciliation = reconciliation
    st.session_state.report = report
    st.session_state.reconciliation_complete = True
    logger.info(f"Reconciliation finished: {report.counts}")


def render_results():
    report = st.session_state.report
    reconciliation = st.session_state.reconciliation
    summary = get_report_summary(report)
    frames = report_to_frames(report)

    st.markdown("---")
    st.header("Results")

    cols = st.columns(5)
    cols[0].metric("Exact Matches", summary['exact_matches'])
    cols[1].metric("Partial (Minor)", summary['partial_minor'])
    cols[2].metric("Partial (Major)", summary['partial_major'])
    cols[3].metric("GST Only", summary['gst_only'])
    cols[4].metric("Tally Only", summary['tally_only'])
    st.caption(f"GST match rate {summary['gst_match_rate']} · Tally match rate {summary['tally_match_rate']} · "
               f"largest monetary difference {summary['largest_monetary_difference']}")

    # Records per bucket, per source
    chart_rows = []
    for label, gst_count, tally_count in (
        ('Exact Matches', summary['exact_matches'], summary['exact_matches']),
        ('Partial Minor', summary['partial_minor'], summary['partial_minor']),
        ('Partial Major', summary['partial_major'], summary['partial_major']),
        ('GST Only', summary['gst_only'], 0),
        ('Tally Only', 0, summary['tally_only']),
    ):
        chart_rows.append({'Bucket': label, 'Source': 'GST', 'Records': gst_count})
        chart_rows.append({'Bucket': label, 'Source': 'Tally', 'Records': tally_count})
    fig = px.bar(pd.DataFrame(chart_rows), x='Source', y='Records', color='Bucket',
                 color_discrete_map=BUCKET_COLORS, title="Where every record landed")
    st.plotly_chart(fig, use_container_width=True)

    if report.gst_date_columns or report.tally_date_columns:
        st.info(f"Converted date columns. GST: {', '.join(report.gst_date_columns) or 'none'}; "
                f"Tally: {', '.join(report.tally_date_columns) or 'none'}")
    if report.date_failures:
        st.warning(f"{len(report.date_failures)} date values could not be converted and were compared as-is.")

    tabs = st.tabs(list(BUCKETS.values()) + ["Integrity Checks"])
    for tab, (bucket, sheet_name) in zip(tabs, BUCKETS.items()):
        with tab:
            df = frames[sheet_name]
            if df.empty:
                st.info(f"No records in {sheet_name}.")
            else:
                st.dataframe(df, use_container_width=True, hide_index=True)
            st.download_button(
                label=f"⬇️ Download {sheet_name} (CSV)",
                data=export_bucket_to_csv(report, bucket),
                file_name=f"{bucket}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv",
                mime="text/csv",
                key=f"download_{bucket}"
            )
    with tabs[-1]:
        summaries = reconciliation.get_summaries()
        st.dataframe(summaries['integrity_checks'], use_container_width=True, hide_index=True)
        st.dataframe(summaries['recon_summary'], use_container_width=True, hide_index=True)

    st.download_button(
        label="⬇️ Download Full Report (Excel)",
        data=export_report_to_excel(report),
        file_name=f"gst_tally_reconciliation_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )


def render_session_log():
    report = st.session_state.error_handler.get_error_report()
    summary = report['summary']
    with st.expander(f"Session Log ({summary['total_errors']} errors, {summary['total_warnings']} warnings)"):
        for title, key in (("File errors", 'file_errors'), ("Dropped mapping pairs", 'dropped_mappings'),
                           ("Date conversion failures", 'date_failures'), ("Runs", 'runs')):
            entries = report[key]
            if entries:
                st.markdown(f"**{title}**")
                st.dataframe(pd.DataFrame(entries)[['timestamp', 'message']], use_container_width=True,
                             hide_index=True)
        if st.button("🧹 Clear Session Log"):
            st.session_state.error_handler.clear_logs()
            st.rerun()


def render_reconcile_page():
    settings = st.session_state.reconciliation_settings

    st.header("Upload & Reconcile Data")
    col1, col2 = st.columns(2)
    with col1:
        gst_records = render_upload_section("GST", "gst", settings.get('gst_header_row', 1))
    with col2:
        tally_records = render_upload_section("Tally", "tally", settings.get('tally_header_row', 1))

    if gst_records is None or tally_records is None:
        reset_results()
        st.info("Upload both the GST and the Tally file to continue.")
        render_session_log()
        return

    pairs = render_mapping_section(get_columns(gst_records), get_columns(tally_records))

    if st.button("🔄 Run Reconciliation", type="primary"):
        run_reconciliation(gst_records, tally_records, pairs)

    if st.session_state.reconciliation_complete and st.session_state.report is not None:
        render_results()

    render_session_log()


def render_help_page():
    st.markdown("## Help")
    st.markdown("""
    1. Upload the GST portal export and the Tally export (.xlsx, .xls or .csv).
    2. Set the header row for each file if the data starts below the first row.
    3. Pair the columns that hold the same field on both sides.
    4. Run the reconciliation.

    **Buckets**
    - **Exact Matches**: every mapped column agrees.
    - **Partial Minor / Major**: a few mapped columns differ. Minor when every monetary
      difference is below the tolerance set in Settings.
    - **GST Only / Tally Only**: no counterpart found on the other side.
    """)


# Ensure session state is initialized before any logic
initialize_session_state()

st.sidebar.title("GST vs Tally Reconciliation")
st.sidebar.markdown("---")
section = st.sidebar.radio("Navigation", ["Reconcile", "Settings", "Help"], index=0)

if section == "Reconcile":
    render_reconcile_page()
elif section == "Settings":
    render_settings_page()
else:
    render_help_page()
