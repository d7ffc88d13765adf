"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取对应的 system prompt 文本，
用于构造 ChatMessage(role="system")。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent

_PROMPT_FILES = {
    "recommend": "recommend_system.md",
}


def load_system_prompt(prompt_name: str = "recommend", locale: str = "es") -> str:
    """根据提示词名称和语言加载系统提示词文本。

    目前只有 "recommend" 一种，未知名称抛出 KeyError。
    """

    fname = PROMPTS_DIR / locale / _PROMPT_FILES[prompt_name]
    return fname.read_text(encoding="utf-8")
