from dotenv import load_dotenv, find_dotenv
import logging

logger = logging.getLogger(__name__)

def load_environment(dotenv_path: str = None) -> bool:
    """
    从.env文件加载环境变量到环境中 (默认从当前工作目录向上查找)。
    """
    path = dotenv_path or find_dotenv(usecwd=True)
    loaded = load_dotenv(path) if path else False
    logger.debug(f"环境变量已从 .env 文件加载: {path or '(未找到)'}")
    return loaded
