"""行情数据模块（market_data）：历史 K 线 CSV 加载与格式化。"""

from market_data.loader import candles_to_frame, format_display_time, frame_to_candles, load_candles_from_csv

__all__ = [
    "load_candles_from_csv",
    "frame_to_candles",
    "candles_to_frame",
    "format_display_time",
]
