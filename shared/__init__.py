"""跨模块共享：配置、数据模型、日志。"""
