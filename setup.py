"""
VideoKB: setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .

    # With test tooling:
    pip install -e ".[test]"

External tools (not pip-installable): yt-dlp, ffmpeg, ffprobe.
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "videokb"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Video transcript acquisition, segmentation and semantic search",
    packages=find_namespace_packages(include=["videokb", "videokb.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "videokb=main:main",
        ],
    },
)
