"""
Options Pulse - Streamlit monitor
Read-only view of the real-time P&L pipeline, risk and performance metrics
"""
from typing import Dict

import streamlit as st
import pandas as pd

# Page config must be first Streamlit command
st.set_page_config(
    page_title="Options Pulse",
    page_icon="📈",
    layout="wide",
    initial_sidebar_state="expanded"
)

from config import configure_logging
from pipeline import RealTimePipeline, build_pipeline, sample_positions, sample_strategies


# ============================================================
# FORMATTING HELPERS
# ============================================================
def format_currency(value, decimals=2):
    """
    Format currency value. Negative values shown as (-$xxx) in red.

    Args:
        value: Numeric value to format
        decimals: Number of decimal places

    Returns:
        Formatted string with HTML styling for negative values
    """
    if value is None or pd.isna(value):
        return "$0.00"
    value = float(value)
    formatted = f"${abs(value):,.{decimals}f}"
    if value < 0:
        return f'<span style="color: #ff4444;">(-{formatted})</span>'
    return formatted


def status_badge(status: str) -> str:
    colors = {"safe": "#2e7d32", "amber": "#f9a825", "red": "#c62828"}
    return f'<span style="color: {colors.get(status, "#555")}; font-weight: 600;">{status.upper()}</span>'


# ============================================================
# PIPELINE (one per Streamlit server process)
# ============================================================
@st.cache_resource
def get_latest() -> Dict:
    """Latest committed summary, written from the engine thread"""
    return {}


@st.cache_resource
def get_pipeline() -> RealTimePipeline:
    configure_logging()
    latest = get_latest()
    pipeline = build_pipeline(positions=sample_positions())
    pipeline.subscriptions.subscribe(lambda summary: latest.update(summary=summary))
    return pipeline


def render_summary(pipeline: RealTimePipeline, latest: Dict) -> None:
    summary = latest.get("summary")
    state = pipeline.state

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.caption("Total Value")
        st.markdown(format_currency(state.total_value), unsafe_allow_html=True)
    with col2:
        st.caption("Unrealized P&L")
        st.markdown(format_currency(state.unrealized_pl), unsafe_allow_html=True)
    with col3:
        st.caption("Day Change")
        st.markdown(format_currency(summary.day_change if summary else 0.0), unsafe_allow_html=True)
    with col4:
        st.caption("Cash")
        st.markdown(format_currency(state.cash_balance), unsafe_allow_html=True)

    if summary is None:
        st.info("Waiting for the first P&L update...")
        return
    st.dataframe(summary.to_dataframe(), use_container_width=True, hide_index=True)


def render_risk(pipeline: RealTimePipeline) -> None:
    risk = pipeline.risk_snapshot()
    st.markdown(
        f"Margin utilization: **{risk.margin_utilization.utilization:.1f}%** "
        f"{status_badge(risk.margin_utilization.status)} &nbsp; | &nbsp; "
        f"Portfolio delta: **{risk.total_delta:,.0f}**",
        unsafe_allow_html=True,
    )
    for alert in risk.alerts:
        st.warning(alert.message)

    rows = []
    for strategy in sample_strategies():
        price = pipeline.engine.price_cache.peek(strategy.symbol)
        if price is None:
            continue
        strategy_risk = pipeline.risk_monitor.calculate_strategy_risk(strategy, price, pipeline.state.cash_balance)
        rows.append({
            "Symbol": strategy.symbol,
            "Strategy": strategy.type,
            "Margin": strategy_risk.margin_requirement,
            "Utilization %": round(strategy_risk.margin_utilization.utilization, 2),
            "Status": strategy_risk.margin_utilization.status,
            "Dividend Risk": round(strategy_risk.dividend_risk, 2),
            "Volatility Impact": round(strategy_risk.volatility_impact, 2),
        })
    if rows:
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)


def render_metrics(pipeline: RealTimePipeline) -> None:
    metrics = pipeline.metrics().as_dict()
    feed_status = pipeline.feed.get_status()
    left, right = st.columns(2)
    with left:
        st.dataframe(pd.DataFrame(list(metrics.items()), columns=["metric", "value"]), hide_index=True)
    with right:
        st.dataframe(
            pd.DataFrame(list(feed_status["performance_metrics"].items()), columns=["feed", "value"]),
            hide_index=True,
        )


def main():
    pipeline = get_pipeline()

    with st.sidebar:
        st.header("Pipeline")
        if not pipeline.is_running:
            connect = st.checkbox("Connect to streaming feed", value=False)
            if st.button("Start"):
                pipeline.start(connect=connect)
                st.rerun()
        else:
            st.success("Running")
            if st.button("Stop"):
                pipeline.stop()
                st.rerun()
        adaptive = st.checkbox("Adaptive update frequency", value=pipeline.engine.adaptive_mode)
        if adaptive != pipeline.engine.adaptive_mode:
            pipeline.engine.set_adaptive_mode(adaptive)
        if st.button("Refresh"):
            st.rerun()
        st.caption(f"Providers: {', '.join(p.name for p in pipeline.quote_source.providers)}")

    st.title("Options Pulse")
    st.subheader("Portfolio P&L")
    render_summary(pipeline, get_latest())
    st.subheader("Risk")
    render_risk(pipeline)
    with st.expander("Performance metrics", expanded=False):
        render_metrics(pipeline)


main()
