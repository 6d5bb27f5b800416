"""
Logging helpers that keep private histogram values out of log output.

Records may carry private values either as ``extra=`` attributes or as a
mapping passed as the single formatting argument. Both are masked when
``RuntimeConfig.mask_sensitive_fields`` is on. Release code logs through a
:class:`ReleaseLogger`, which stamps the release stage on every record.
"""
# 说明：日志工具，保证真实计数、排名等私有取值不会出现在日志输出中。
# 职责：
# - PrivacyFilter：掩码 extra 属性与字典格式化参数中的私有字段（标签、计数、排名、区间等）
# - ReleaseLogger：为发布流程的每条记录附加 stage 字段，并在消息前标注阶段名
# - configure_logging(...)：初始化根 logger，并为根 logger 及其 handler 各挂载一个过滤器
# - get_logger / release_logger：按名称获取 logger，必要时自动完成初始化
# 约定：
# - 是否掩码由 RuntimeConfig.mask_sensitive_fields 控制
# - 日志级别优先级：显式参数 level > 环境变量 DPHIST_LOG_LEVEL > 运行时配置的 log_level

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping, Optional, Tuple

from .config import get_config

MASK = "***"

# 直方图发布中携带私有取值的字段名
SENSITIVE_ATTRIBUTES = (
    "label",
    "labels",
    "count",
    "counts",
    "true_counts",
    "sorted_counts",
    "ranking",
    "ranges",
    "histogram",
    "payload",
)


def _masked(mapping: Mapping[Any, Any]) -> dict:
    return {key: MASK if key in SENSITIVE_ATTRIBUTES else value for key, value in mapping.items()}


class PrivacyFilter(logging.Filter):
    """Mask private histogram values carried by a log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not get_config().mask_sensitive_fields:
            return True
        for attr in SENSITIVE_ATTRIBUTES:
            if hasattr(record, attr):
                setattr(record, attr, MASK)
        # logger.info("%(count)s", {"count": 3}) 形式：单个映射参数
        if isinstance(record.args, Mapping):
            record.args = _masked(record.args)
        return True


class ReleaseLogger(logging.LoggerAdapter):
    """Adapter that tags records with the release stage they belong to."""

    def __init__(self, logger: logging.Logger, stage: str):
        super().__init__(logger, {"stage": stage})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("stage", self.extra["stage"])
        kwargs["extra"] = extra
        return f"[{extra['stage']}] {msg}", kwargs


def configure_logging(level: Optional[str] = None) -> None:
    # 初始化根 logger：确定最终日志级别、设置格式，并挂载 PrivacyFilter
    log_level = level or os.environ.get("DPHIST_LOG_LEVEL", get_config().log_level)
    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(name)s %(asctime)s | %(message)s",
    )
    root = logging.getLogger()
    # handler 上同样挂载过滤器，子 logger 传播上来的记录也会被脱敏
    for target in [root, *root.handlers]:
        if not any(isinstance(existing, PrivacyFilter) for existing in target.filters):
            target.addFilter(PrivacyFilter())


def get_logger(name: str) -> logging.Logger:
    # 获取指定名称的 logger，若尚无 handler，则懒加载方式调用 configure_logging 进行初始化
    logger = logging.getLogger(name)
    if not logger.handlers:
        configure_logging()
    return logger


def release_logger(name: str, stage: str) -> ReleaseLogger:
    return ReleaseLogger(get_logger(name), stage)
