"""技术指标因子：RSI（Wilder）与 EMA。"""
