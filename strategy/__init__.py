"""单方向持仓状态机与入场信号。"""
