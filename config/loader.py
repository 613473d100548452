"""
配置加载 (Config Loader)
加载包内默认的 config.yaml，并与用户的 user_config.yaml 按节合并。
"""
import yaml
import os
import logging
from functools import lru_cache

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.yaml")
USER_CONFIG_PATH = "user_config.yaml"

# 可被环境变量覆盖的配置项
ENV_OVERRIDES = {
    "QUILLBORN_AUTOSAVE_DELAY": ("autosave", "quiet_period", float),
}

def _read_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"解析 {path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 解析 {path} 文件失败: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"错误: {path} 的顶层必须是映射")
    return data

def _merge_configs(base_config: dict, user_config: dict) -> dict:
    """
    合并基础配置和用户配置。
    字典类型的节逐键覆盖，其他值直接替换。
    """
    merged_config = {k: dict(v) if isinstance(v, dict) else v for k, v in base_config.items()}
    for section, value in user_config.items():
        if isinstance(value, dict) and isinstance(merged_config.get(section), dict):
            merged_config[section].update(value)
        else:
            merged_config[section] = value
    return merged_config

def load_config(config_path: str = None, user_config_path: str = None) -> dict:
    """
    加载并解析 config.yaml 和 user_config.yaml 文件，并进行合并。
    """
    config_path = config_path or CONFIG_PATH
    user_config_path = user_config_path or os.getenv("QUILLBORN_CONFIG", USER_CONFIG_PATH)

    if not os.path.exists(config_path):
        logger.warning(f"配置文件 {config_path} 未找到，使用空配置。")
        base_config = {}
    else:
        base_config = _read_yaml(config_path)

    user_config = _read_yaml(user_config_path) if os.path.exists(user_config_path) else {}
    merged_config = _merge_configs(base_config, user_config)

    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            merged_config.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            raise ConfigurationError(f"环境变量 {env_name} 的值无效: {raw!r}")

    return merged_config

@lru_cache(maxsize=1)
def get_config() -> dict:
    """带缓存的全局配置"""
    return load_config()

def get_setting(config: dict, dotted_key: str, default=None):
    """按 "section.key" 读取配置项"""
    value = config
    for part in dotted_key.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value

def save_user_config(user_config_data: dict, path: str = None):
    """
    将用户配置字典写回到 user_config.yaml 文件。
    """
    path = path or os.getenv("QUILLBORN_CONFIG", USER_CONFIG_PATH)
    try:
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(user_config_data, f, allow_unicode=True, sort_keys=False)
        logger.info(f"用户配置已成功保存到 {path}。")
    except OSError as e:
        logger.error(f"写入 {path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 写入 {path} 文件失败: {e}")
    get_config.cache_clear()
