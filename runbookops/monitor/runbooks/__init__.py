"""内置 Runbook 定义，每种异常类型一个。"""
