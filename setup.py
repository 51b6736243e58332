"""
Survey Engine build configuration.

Usage:
    pip install -e .                 # Core engine
    pip install -e ".[embeddings]"   # + sentence-transformers embeddings
    pip install -e ".[test]"         # + test tooling
"""

from setuptools import setup, find_packages

setup(
    name="survey-engine",
    version="0.1.0",
    description="Adaptive conversation engine for AI-driven survey interviews",
    packages=find_packages(include=["survey_engine", "survey_engine.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "loguru>=0.7",
        "aiosqlite>=0.19",
        "numpy>=1.24",
        "anthropic>=0.30",
    ],
    extras_require={
        "embeddings": [
            "sentence-transformers>=2.2",
        ],
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    python_requires=">=3.11",
)
