"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 RunbookOps 的所有配置项，支持从 .env 文件和环境变量读取。
涵盖后端选择、目标定位、指标抓取、重启收敛轮询和安全限额。

Uses Pydantic Settings to manage all RunbookOps configuration, read from a .env file
and environment variables. Covers backend selection, target addressing, metrics
scraping, restart convergence polling and safety limits.
"""
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    全局配置类 (Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。
    核心组件不直接读取全局实例，而是在构造时接收配置。

    Field names map to same-named environment variables (case insensitive).
    Core components never read the global instance implicitly; they receive
    settings at construction time.
    """

    # 后端配置 (Backend Configuration)
    backend: Literal["auto", "kubernetes", "docker"] = "auto"  # 编排后端 (Orchestration backend)
    k8s_namespace: str = "default"  # Kubernetes 命名空间 (Kubernetes namespace)
    target_label_selector: str = "app=demo-app"  # 目标 Pod 标签选择器 (Target pod label selector)
    service_name: str = "demo-app"  # 逻辑服务名 / Deployment 名 (Logical service / deployment name)
    docker_base_url: str = ""  # 为空时使用 docker.from_env() (Empty means docker.from_env())

    # 指标配置 (Metrics Configuration)
    metrics_url: str = "http://demo-app:3000/metrics"  # Prometheus 文本格式端点 (Text exposition endpoint)
    metrics_prefix: str = "demo_app_"  # 指标名前缀 (Metric name prefix)
    metrics_timeout_seconds: float = 5.0
    default_memory_limit_bytes: int = 512 * 1024 * 1024  # 未配置内存限制时的默认值 (Default when no limit is set)

    # 重启收敛轮询 (Restart Convergence Polling)
    restart_ready_timeout_ms: int = 15000
    restart_poll_interval_ms: int = 500

    # 安全限额 (Safety Limits)
    min_replicas: int = 1
    max_replicas: int = 5
    max_actions_per_hour: int = 10
    max_restarts_per_target_per_hour: int = 3
    min_action_spacing_ms: int = 5000

    # Runbook 配置 (Runbook Configuration)
    runbook_dir: Optional[str] = None  # Markdown runbook 目录，覆盖内置定义 (Overrides built-in runbooks)

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # 自动加载 .env 文件 (Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()
