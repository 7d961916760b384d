"""Wallcraft 动态壁纸：AI 视频生成后端"""

__version__ = "0.1.0"
