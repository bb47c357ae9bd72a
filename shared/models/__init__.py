"""核心数据结构。"""
