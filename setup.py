#!/usr/bin/env python3
"""Setup script for Article Dedup Agent."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="article-dedup-agent",
    version="0.1.0",
    author="Article Dedup Team",
    author_email="team@example.com",
    description="Extracts news articles, detects near-duplicates and tracks citations",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/article-dedup-agent",
    packages=find_packages(include=["article_dedup", "article_dedup.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Information Technology",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
        "Topic :: Text Processing :: Linguistic",
    ],
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "httpx>=0.27",
        "aiohttp>=3.9",
        "selectolax>=0.3.21,<1.0",
        "trafilatura>=1.12",
        "structlog>=24.1",
        "orjson>=3.10",
        "aiosqlite>=0.20",
        "click>=8.1",
        "pyyaml>=6.0",
        "rich>=13.7.1",
        "openai>=1.97.0",
        "google-genai>=0.5.0",
        "numpy",
    ],
    extras_require={
        "dev": [
            "pytest>=8.2",
            "pytest-asyncio>=0.23",
            "ruff>=0.4",
            "mypy>=1.10",
            "coverage>=7.5",
            "pytest-cov>=4.1",
            "aresponses>=3.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "article-dedup=article_dedup.orchestrator:cli",
        ],
    },
)
