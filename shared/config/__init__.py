"""配置加载与 schema。"""
