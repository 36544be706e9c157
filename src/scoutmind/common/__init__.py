"""公共基础设施：配置、日志、异常、LLM 网关、浏览器协作者"""

from .config import Config, config
from .exceptions import ScoutMindError
from .logger import get_logger

__all__ = ["Config", "config", "ScoutMindError", "get_logger"]
