"""PnL 与绩效指标工具。"""
