"""
核心模块包 (Core Module Package)

配置与异常体系。
Configuration and the exception taxonomy.
"""
